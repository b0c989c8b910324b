"""
Launchpad (bonding curve) program provider.

Reads ``BondingCurve`` accounts from the launchpad program, keeps a
mint -> curve index with a short TTL, and builds the program's
``buy_tokens`` / ``sell_tokens`` instructions.

Account layout (Anchor, little endian, after the 8-byte discriminator):
    creator                 Pubkey
    token_mint              Pubkey
    pool                    Option<Pubkey>
    virtual_sol_reserves    u64
    virtual_token_reserves  u64
    real_sol_reserves       u64
    real_token_reserves     u64
    graduated               enum GraduationState (u8: Active, Pending, Graduated)
    bump                    u8
"""

from __future__ import annotations

import logging
import struct
from typing import Any, Dict, List, Optional

import base58
from solana.rpc.types import MemcmpOpts
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..cache import TTLCache
from ..config import settings
from ..core.strategies.dca.models import BondingCurveState
from .base import Provider
from .solana import SolanaRpcProvider, get_solana_rpc

logger = logging.getLogger(__name__)

BONDING_CURVE_DISCRIMINATOR = bytes([23, 183, 248, 55, 96, 216, 172, 96])
BUY_TOKENS_DISCRIMINATOR = bytes([189, 21, 230, 133, 247, 2, 110, 42])
SELL_TOKENS_DISCRIMINATOR = bytes([114, 242, 25, 12, 62, 126, 92, 2])

GLOBAL_CONFIG_SEED = b"global-config"
BONDING_CURVE_SEED = b"bonding-curve"

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
TOKEN_METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
SYSVAR_RENT_ID = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
WSOL_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")

_MINT_OFFSET = 8 + 32
_RESERVES = struct.Struct("<QQQQ")

# Negative lookups are cached too, so unknown mints don't hit RPC on every quote
_NOT_A_CURVE = object()


class LaunchpadDecodeError(ValueError):
    """Account data is not a BondingCurve."""
    pass


def decode_bonding_curve(address: str, data: bytes) -> BondingCurveState:
    """Decode raw ``BondingCurve`` account bytes."""
    if len(data) < 8 or data[:8] != BONDING_CURVE_DISCRIMINATOR:
        raise LaunchpadDecodeError(f"{address} is not a BondingCurve account")

    try:
        offset = 8
        creator = Pubkey.from_bytes(data[offset:offset + 32])
        offset += 32
        mint = Pubkey.from_bytes(data[offset:offset + 32])
        offset += 32

        pool: Optional[str] = None
        has_pool = data[offset]
        offset += 1
        if has_pool:
            pool = str(Pubkey.from_bytes(data[offset:offset + 32]))
            offset += 32

        virtual_sol, virtual_token, real_sol, real_token = _RESERVES.unpack_from(data, offset)
        offset += _RESERVES.size
        graduation_state = data[offset]
    except (IndexError, struct.error, ValueError) as e:
        raise LaunchpadDecodeError(f"Truncated BondingCurve account {address}: {e}") from e

    return BondingCurveState(
        address=address,
        mint=str(mint),
        creator=str(creator),
        virtual_sol_reserves=virtual_sol,
        virtual_token_reserves=virtual_token,
        real_sol_reserves=real_sol,
        real_token_reserves=real_token,
        graduated=graduation_state != 0,
        pool=pool,
    )


def get_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


class LaunchpadProvider(Provider):
    """
    Bonding-curve state reader and instruction builder.

    ``get_curve(mint)`` is O(1) against the in-memory index; a miss costs one
    filtered ``getProgramAccounts`` call and is cached (hit or miss) for
    ``settings.bonding_curve_cache_ttl_seconds``.
    """

    name = "launchpad"
    timeout_s = 15

    def __init__(
        self,
        rpc: Optional[SolanaRpcProvider] = None,
        program_id: Optional[str] = None,
        cache_ttl_s: Optional[int] = None,
    ) -> None:
        self._rpc = rpc or get_solana_rpc()
        self.program_id = Pubkey.from_string(program_id or settings.launchpad_program_id)
        self.treasury = Pubkey.from_string(settings.launchpad_treasury)
        self.token_decimals = settings.launchpad_token_decimals
        self._index = TTLCache(
            default_ttl=cache_ttl_s or settings.bonding_curve_cache_ttl_seconds,
            max_size=10_000,
        )

    async def ready(self) -> bool:
        return await self._rpc.ready()

    async def health_check(self) -> Dict[str, Any]:
        return {
            "status": "configured" if await self.ready() else "unavailable",
            "program_id": str(self.program_id),
            "indexed_mints": self._index.size(),
        }

    # ---------------------------
    # PDAs
    # ---------------------------
    def global_config_address(self) -> Pubkey:
        address, _ = Pubkey.find_program_address([GLOBAL_CONFIG_SEED], self.program_id)
        return address

    def bonding_curve_address(self, mint: Pubkey, creator: Pubkey) -> Pubkey:
        address, _ = Pubkey.find_program_address(
            [BONDING_CURVE_SEED, bytes(mint), bytes(creator)],
            self.program_id,
        )
        return address

    @staticmethod
    def metadata_address(mint: Pubkey) -> Pubkey:
        address, _ = Pubkey.find_program_address(
            [b"metadata", bytes(TOKEN_METADATA_PROGRAM_ID), bytes(mint)],
            TOKEN_METADATA_PROGRAM_ID,
        )
        return address

    # ---------------------------
    # State
    # ---------------------------
    async def get_curve(self, mint: str) -> Optional[BondingCurveState]:
        """Curve for ``mint`` or None if the mint was not launched here."""
        cached = await self._index.get(mint)
        if cached is _NOT_A_CURVE:
            return None
        if cached is not None:
            return cached

        accounts = await self._rpc.get_program_accounts(
            str(self.program_id),
            filters=[
                MemcmpOpts(offset=0, bytes=base58.b58encode(BONDING_CURVE_DISCRIMINATOR).decode()),
                MemcmpOpts(offset=_MINT_OFFSET, bytes=mint),
            ],
        )

        curve: Optional[BondingCurveState] = None
        for keyed in accounts:
            try:
                curve = decode_bonding_curve(str(keyed.pubkey), bytes(keyed.account.data))
                break
            except LaunchpadDecodeError as e:
                logger.warning(f"Skipping undecodable curve account: {e}")

        await self._index.set(mint, curve if curve is not None else _NOT_A_CURVE)
        return curve

    async def is_active_curve(self, mint: str) -> bool:
        curve = await self.get_curve(mint)
        return curve is not None and not curve.graduated

    async def refresh_index(self) -> List[BondingCurveState]:
        """Load every curve account into the index in one call."""
        accounts = await self._rpc.get_program_accounts(
            str(self.program_id),
            filters=[MemcmpOpts(offset=0, bytes=base58.b58encode(BONDING_CURVE_DISCRIMINATOR).decode())],
        )
        curves: List[BondingCurveState] = []
        for keyed in accounts:
            try:
                curve = decode_bonding_curve(str(keyed.pubkey), bytes(keyed.account.data))
            except LaunchpadDecodeError as e:
                logger.warning(f"Skipping undecodable curve account: {e}")
                continue
            await self._index.set(curve.mint, curve)
            curves.append(curve)

        logger.info(f"Indexed {len(curves)} bonding curves")
        return curves

    async def invalidate(self, mint: str) -> None:
        await self._index.invalidate(mint)

    # ---------------------------
    # Instructions
    # ---------------------------
    def build_buy_instruction(
        self,
        buyer: Pubkey,
        curve: BondingCurveState,
        lamports: int,
    ) -> Instruction:
        """``buy_tokens(sol_amount: u64)``. The program requires the curve creator to co-sign."""
        mint = Pubkey.from_string(curve.mint)
        creator = Pubkey.from_string(curve.creator)
        bonding_curve = self.bonding_curve_address(mint, creator)
        curve_token_account = get_associated_token_address(bonding_curve, mint)
        pool = Pubkey.from_string(curve.pool) if curve.pool else self.program_id

        accounts = [
            AccountMeta(buyer, is_signer=True, is_writable=True),
            AccountMeta(creator, is_signer=True, is_writable=True),
            AccountMeta(get_associated_token_address(creator, mint), is_signer=False, is_writable=True),
            AccountMeta(self.global_config_address(), is_signer=False, is_writable=True),
            AccountMeta(self.treasury, is_signer=False, is_writable=True),
            AccountMeta(bonding_curve, is_signer=False, is_writable=True),
            AccountMeta(curve_token_account, is_signer=False, is_writable=True),
            AccountMeta(mint, is_signer=False, is_writable=True),
            AccountMeta(self.metadata_address(mint), is_signer=False, is_writable=True),
            AccountMeta(get_associated_token_address(buyer, mint), is_signer=False, is_writable=True),
            AccountMeta(get_associated_token_address(bonding_curve, WSOL_MINT), is_signer=False, is_writable=True),
            AccountMeta(curve_token_account, is_signer=False, is_writable=True),
            AccountMeta(pool, is_signer=False, is_writable=True),
            AccountMeta(WSOL_MINT, is_signer=False, is_writable=False),
            AccountMeta(ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_METADATA_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(SYSVAR_RENT_ID, is_signer=False, is_writable=False),
        ]
        data = BUY_TOKENS_DISCRIMINATOR + struct.pack("<Q", lamports)
        return Instruction(self.program_id, data, accounts)

    def build_sell_instruction(
        self,
        seller: Pubkey,
        curve: BondingCurveState,
        tokens_in: int,
    ) -> Instruction:
        """``sell_tokens(tokens_in: u64)``."""
        mint = Pubkey.from_string(curve.mint)
        bonding_curve = self.bonding_curve_address(mint, Pubkey.from_string(curve.creator))

        accounts = [
            AccountMeta(seller, is_signer=True, is_writable=True),
            AccountMeta(bonding_curve, is_signer=False, is_writable=True),
            AccountMeta(self.global_config_address(), is_signer=False, is_writable=True),
            AccountMeta(self.treasury, is_signer=False, is_writable=True),
            AccountMeta(get_associated_token_address(seller, mint), is_signer=False, is_writable=True),
            AccountMeta(get_associated_token_address(bonding_curve, mint), is_signer=False, is_writable=True),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = SELL_TOKENS_DISCRIMINATOR + struct.pack("<Q", tokens_in)
        return Instruction(self.program_id, data, accounts)


_launchpad: Optional[LaunchpadProvider] = None


def get_launchpad_provider() -> LaunchpadProvider:
    """Get the singleton launchpad provider."""
    global _launchpad
    if _launchpad is None:
        _launchpad = LaunchpadProvider()
    return _launchpad


__all__ = [
    "BONDING_CURVE_DISCRIMINATOR",
    "BUY_TOKENS_DISCRIMINATOR",
    "SELL_TOKENS_DISCRIMINATOR",
    "LaunchpadDecodeError",
    "LaunchpadProvider",
    "WSOL_MINT",
    "decode_bonding_curve",
    "get_associated_token_address",
    "get_launchpad_provider",
]
