"""
Custodial wallet access for DCA users.

Private keys are stored as Fernet tokens of the base58-encoded 64-byte
secret. Decrypted keypairs live only for the duration of a trade.
"""

from __future__ import annotations

import logging
from typing import Optional

import base58
from cryptography.fernet import Fernet, InvalidToken
from solders.keypair import Keypair

from ..config import settings
from ..core.strategies.dca.models import DcaUser
from .solana import SolanaRpcProvider, get_solana_rpc

logger = logging.getLogger(__name__)


class WalletError(Exception):
    """Key material missing, undecryptable, or mismatched."""
    pass


class WalletCustody:
    """Decrypt user keypairs and read their native balances."""

    def __init__(
        self,
        encryption_key: Optional[str] = None,
        rpc: Optional[SolanaRpcProvider] = None,
    ) -> None:
        key = encryption_key or settings.wallet_encryption_key
        if not key:
            raise WalletError("WALLET_ENCRYPTION_KEY is required")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise WalletError(f"Invalid wallet encryption key: {type(e).__name__}") from e
        self._rpc = rpc or get_solana_rpc()

    def encrypt_keypair(self, keypair: Keypair) -> str:
        secret = base58.b58encode(bytes(keypair))
        return self._fernet.encrypt(secret).decode()

    def decrypt_keypair(self, encrypted: str) -> Keypair:
        try:
            secret = self._fernet.decrypt(encrypted.encode())
        except InvalidToken as e:
            raise WalletError("Stored private key could not be decrypted") from e
        try:
            return Keypair.from_bytes(base58.b58decode(secret))
        except ValueError as e:
            raise WalletError(f"Stored private key is malformed: {e}") from e

    def get_or_create_keypair(self, user: DcaUser) -> Keypair:
        """
        Signer for ``user``.

        Users without key material get a fresh keypair; ``user`` is updated in
        place with the new pubkey and encrypted secret for the caller to persist
        (``DcaService.provision_wallet`` does both).
        """
        if user.encrypted_private_key:
            keypair = self.decrypt_keypair(user.encrypted_private_key)
            if user.wallet_pubkey and str(keypair.pubkey()) != user.wallet_pubkey:
                raise WalletError(f"Stored key does not match wallet {user.wallet_pubkey}")
            return keypair

        keypair = Keypair()
        user.wallet_pubkey = str(keypair.pubkey())
        user.encrypted_private_key = self.encrypt_keypair(keypair)
        logger.info(f"Created wallet {user.wallet_pubkey[:8]}... for user {user.id}")
        return keypair

    async def balance(self, pubkey: str) -> int:
        """Native balance in lamports."""
        return await self._rpc.get_balance(pubkey)


_custody: Optional[WalletCustody] = None


def get_wallet_custody() -> WalletCustody:
    global _custody
    if _custody is None:
        _custody = WalletCustody()
    return _custody


__all__ = ["WalletCustody", "WalletError", "get_wallet_custody"]
