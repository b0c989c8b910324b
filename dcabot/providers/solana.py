"""Solana JSON-RPC provider: balances, account reads, and transaction submission."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from ..config import settings
from .base import Provider

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


class SolanaRpcError(Exception):
    """RPC call failed."""
    pass


class SolanaTransactionError(SolanaRpcError):
    """Transaction was rejected, failed on chain, or never confirmed."""
    pass


class SolanaRpcProvider(Provider):
    """
    Thin async wrapper over ``solana.rpc.async_api.AsyncClient``.

    Usage:
        rpc = SolanaRpcProvider()
        lamports = await rpc.get_balance("9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin")
        signature = await rpc.send_instructions(keypair, [ix])
    """

    name = "solana_rpc"
    timeout_s = 20

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        client: Optional[AsyncClient] = None,
        confirm_timeout_s: Optional[float] = None,
    ) -> None:
        self.rpc_url = rpc_url or settings.solana_rpc_url
        self._client = client
        self._confirm_timeout_s = confirm_timeout_s or settings.solana_confirm_timeout_seconds

    @property
    def client(self) -> AsyncClient:
        if self._client is None:
            self._client = AsyncClient(self.rpc_url, commitment=Confirmed, timeout=self.timeout_s)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def ready(self) -> bool:
        return bool(self.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "unavailable", "reason": "RPC URL not configured"}
        try:
            connected = await self.client.is_connected()
            return {"status": "healthy" if connected else "error", "rpc_url": self.rpc_url}
        except Exception as e:
            return {"status": "error", "reason": str(e)}

    # ---------------------------
    # Reads
    # ---------------------------
    async def get_balance(self, pubkey: str) -> int:
        """Native balance in lamports."""
        try:
            resp = await self.client.get_balance(Pubkey.from_string(pubkey))
        except Exception as e:
            raise SolanaRpcError(f"get_balance failed for {pubkey}: {e}") from e
        return int(resp.value)

    async def get_token_balance(self, owner: str, mint: str) -> int:
        """Sum of ``owner``'s token accounts for ``mint``, in smallest units."""
        try:
            resp = await self.client.get_token_accounts_by_owner_json_parsed(
                Pubkey.from_string(owner),
                TokenAccountOpts(mint=Pubkey.from_string(mint)),
            )
        except Exception as e:
            raise SolanaRpcError(f"token balance lookup failed for {owner}/{mint}: {e}") from e

        total = 0
        for keyed in resp.value or []:
            parsed = keyed.account.data.parsed
            amount = parsed.get("info", {}).get("tokenAmount", {}).get("amount", "0")
            total += int(amount)
        return total

    async def get_account_data(self, pubkey: str) -> Optional[bytes]:
        try:
            resp = await self.client.get_account_info(Pubkey.from_string(pubkey))
        except Exception as e:
            raise SolanaRpcError(f"get_account_info failed for {pubkey}: {e}") from e
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def get_program_accounts(
        self,
        program_id: str,
        filters: Optional[Sequence[Any]] = None,
    ) -> List[Any]:
        """Raw keyed accounts owned by ``program_id`` (``.pubkey``, ``.account.data``)."""
        try:
            resp = await self.client.get_program_accounts(
                Pubkey.from_string(program_id),
                encoding="base64",
                filters=list(filters or []),
            )
        except Exception as e:
            raise SolanaRpcError(f"get_program_accounts failed for {program_id}: {e}") from e
        return list(resp.value or [])

    # ---------------------------
    # Submission
    # ---------------------------
    async def send_instructions(self, signer: Keypair, instructions: Sequence[Instruction]) -> str:
        """Compile, sign, submit, and confirm; returns the base58 signature."""
        try:
            blockhash = (await self.client.get_latest_blockhash()).value.blockhash
        except Exception as e:
            raise SolanaRpcError(f"get_latest_blockhash failed: {e}") from e

        message = MessageV0.try_compile(signer.pubkey(), list(instructions), [], blockhash)
        tx = VersionedTransaction(message, [signer])
        return await self._send_and_confirm(tx)

    async def send_versioned(self, signer: Keypair, tx_bytes: bytes) -> str:
        """Re-sign a prebuilt (e.g. aggregator) transaction and submit it."""
        try:
            unsigned = VersionedTransaction.from_bytes(tx_bytes)
        except Exception as e:
            raise SolanaTransactionError(f"Malformed transaction bytes: {e}") from e
        tx = VersionedTransaction(unsigned.message, [signer])
        return await self._send_and_confirm(tx)

    async def _send_and_confirm(self, tx: VersionedTransaction) -> str:
        opts = TxOpts(skip_preflight=False, preflight_commitment=Confirmed, max_retries=3)
        try:
            resp = await self.client.send_transaction(tx, opts=opts)
        except Exception as e:
            raise SolanaTransactionError(f"send_transaction failed: {e}") from e

        signature = resp.value
        if signature is None:
            raise SolanaTransactionError("send_transaction returned no signature")

        await self.confirm(signature)
        return str(signature)

    async def confirm(self, signature: Signature, poll_interval: float = 0.5) -> None:
        """Poll signature status until confirmed; raise on error or timeout."""
        deadline = time.monotonic() + self._confirm_timeout_s
        while time.monotonic() < deadline:
            resp = await self.client.get_signature_statuses([signature])
            status = resp.value[0] if resp.value else None
            if status is not None:
                if status.err:
                    raise SolanaTransactionError(f"Transaction {signature} failed: {status.err}")
                confirmation = str(status.confirmation_status or "").lower()
                if "confirmed" in confirmation or "finalized" in confirmation:
                    logger.info(f"Transaction {str(signature)[:16]}... {confirmation}")
                    return
            await asyncio.sleep(poll_interval)

        raise SolanaTransactionError(
            f"Transaction {signature} not confirmed after {self._confirm_timeout_s}s"
        )


_solana_rpc: Optional[SolanaRpcProvider] = None


def get_solana_rpc() -> SolanaRpcProvider:
    """Get the singleton RPC provider."""
    global _solana_rpc
    if _solana_rpc is None:
        _solana_rpc = SolanaRpcProvider()
    return _solana_rpc


__all__ = [
    "LAMPORTS_PER_SOL",
    "SolanaRpcError",
    "SolanaRpcProvider",
    "SolanaTransactionError",
    "get_solana_rpc",
]
