"""
DCA Service

High-level service for managing DCA strategies on behalf of users.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, List, Optional

from .errors import (
    DcaError,
    InvalidAmountError,
    StrategyConflictError,
    StrategyNotFoundError,
    TokenPairNotFoundError,
)
from .fixed_point import AmountLike, to_smallest_unit
from .models import DcaExecution, DcaFrequency, DcaStatus, DcaStrategy, DcaUser, utcnow
from .scheduler import frequency_display, get_next_execution
from .store import StrategyStore

logger = logging.getLogger(__name__)


class DcaService:
    """
    Service for managing DCA strategies.

    Provides high-level operations for:
    - Creating strategies against configured token pairs
    - Pausing/resuming/cancelling
    - Viewing strategies and execution history
    """

    def __init__(self, store: StrategyStore):
        self._store = store

    # =========================================================================
    # Strategy CRUD
    # =========================================================================

    async def create_strategy(
        self,
        user_id: str,
        base_symbol: str,
        target_symbol: str,
        amount: AmountLike,
        frequency: Any = DcaFrequency.DAILY,
    ) -> DcaStrategy:
        """
        Create a new ACTIVE strategy.

        Args:
            user_id: Owner
            base_symbol: Token spent (e.g. "SOL")
            target_symbol: Token bought
            amount: Per-interval amount in base-token units ("0.1")
            frequency: DcaFrequency or its string value

        Returns:
            The stored strategy; the first run is one interval from now

        Raises:
            InvalidFrequencyError: frequency is not a supported schedule
            InvalidAmountError: amount is not positive
            TokenPairNotFoundError: no active pair for the symbols
            StrategyConflictError: user already has an open strategy on the pair
        """
        frequency = DcaFrequency.parse(frequency)

        pair = await self._store.get_token_pair_by_symbols(base_symbol, target_symbol)
        if pair is None or not pair.active:
            raise TokenPairNotFoundError(base_symbol, target_symbol)

        units = to_smallest_unit(amount, pair.base.decimals)
        if units <= 0:
            raise InvalidAmountError(f"Amount must be positive, got {amount}")

        existing = await self._store.get_existing_strategy_for_pair(user_id, base_symbol, target_symbol)
        if existing is not None:
            raise StrategyConflictError(
                f"Strategy {existing.id} already {existing.status.value} for {pair.label}"
            )

        strategy = await self._store.create_strategy(
            user_id=user_id,
            pair=pair,
            frequency=frequency,
            amount_per_interval=units,
            next_execution_time=get_next_execution(frequency, after=utcnow()),
        )
        logger.info(f"Created DCA strategy {strategy.id} ({pair.label}, {frequency.value}) for user {user_id}")
        return strategy

    async def get_strategy(self, strategy_id: str) -> DcaStrategy:
        strategy = await self._store.get_strategy(strategy_id)
        if strategy is None:
            raise StrategyNotFoundError(f"Strategy {strategy_id} not found")
        return strategy

    async def list_strategies(
        self,
        user_id: str,
        status: Optional[DcaStatus] = None,
    ) -> List[DcaStrategy]:
        strategies = await self._store.get_user_strategies(user_id)
        if status is not None:
            strategies = [s for s in strategies if s.status == status]
        return strategies

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def pause(self, strategy_id: str) -> DcaStrategy:
        strategy = await self.get_strategy(strategy_id)
        if strategy.status != DcaStatus.ACTIVE:
            raise StrategyConflictError(f"Cannot pause strategy in {strategy.status.value} status")
        paused = await self._store.pause_strategy(strategy_id)
        logger.info(f"Paused DCA strategy {strategy_id}")
        return paused

    async def resume(self, strategy_id: str) -> DcaStrategy:
        """Reactivate a PAUSED or CANCELLED strategy and clear its failure streak."""
        strategy = await self.get_strategy(strategy_id)
        if strategy.status not in (DcaStatus.PAUSED, DcaStatus.CANCELLED):
            raise StrategyConflictError(f"Cannot resume strategy in {strategy.status.value} status")
        if strategy.status == DcaStatus.CANCELLED:
            existing = await self._store.get_existing_strategy_for_pair(
                strategy.user_id, strategy.base.symbol, strategy.target.symbol
            )
            if existing is not None and existing.id != strategy_id:
                raise StrategyConflictError(f"Strategy {existing.id} is already open for this pair")
        resumed = await self._store.resume_strategy(strategy_id)
        logger.info(f"Resumed DCA strategy {strategy_id}")
        return resumed

    async def cancel(self, strategy_id: str) -> DcaStrategy:
        strategy = await self.get_strategy(strategy_id)
        if strategy.status == DcaStatus.CANCELLED:
            return strategy
        cancelled = await self._store.cancel_strategy(strategy_id)
        logger.info(f"Cancelled DCA strategy {strategy_id}")
        return cancelled

    # =========================================================================
    # Wallets
    # =========================================================================

    async def provision_wallet(self, user_id: str, custody: Any) -> DcaUser:
        """
        Give the user a custodial keypair if they have none, and persist it.

        Ticks only sign with stored keys, so this must run (and the returned
        ``wallet_pubkey`` be funded) before a strategy can buy. Users that
        already hold key material are returned unchanged.
        """
        user = await self._store.get_user(user_id)
        if user is None:
            raise DcaError(f"User {user_id} not found")
        if user.encrypted_private_key:
            return user

        provisioned = replace(user)
        custody.get_or_create_keypair(provisioned)
        await self._store.save_user_wallet(
            user_id, provisioned.wallet_pubkey, provisioned.encrypted_private_key
        )
        logger.info(f"Provisioned wallet {provisioned.wallet_pubkey} for user {user_id}")
        return provisioned

    # =========================================================================
    # History
    # =========================================================================

    async def get_executions(self, strategy_id: str, limit: int = 50) -> List[DcaExecution]:
        return await self._store.get_executions(strategy_id, limit)

    async def get_user_executions(self, user_id: str, limit: int = 50) -> List[DcaExecution]:
        return await self._store.get_user_executions(user_id, limit)

    @staticmethod
    def frequency_display(frequency: Any) -> str:
        return frequency_display(frequency)


__all__ = ["DcaService"]
