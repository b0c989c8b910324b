"""
Strategy Store

Persistence boundary for strategies, executions, token pairs and users.
``ConvexStrategyStore`` is the production backend; ``InMemoryStrategyStore``
backs tests and local runs without a Convex deployment.

Every strategy write bumps ``version``. Read-modify-write updates against
Convex are conditional on the version read and are retried on conflict, so a
scheduler tick and a user pause never overwrite each other.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from dcabot.db.convex_client import ConvexClient, ConvexError, get_convex_client

from .errors import StoreFailure, StrategyNotFoundError
from .models import (
    DcaExecution,
    DcaFrequency,
    DcaStatus,
    DcaStrategy,
    DcaUser,
    DueStrategy,
    NewExecution,
    TokenPair,
    _to_ms,
    utcnow,
)

logger = logging.getLogger(__name__)

_MAX_PATCH_ATTEMPTS = 3


class StrategyStore(ABC):
    """Storage operations the DCA engine depends on."""

    # ---------------------------
    # Scheduler
    # ---------------------------
    @abstractmethod
    async def get_due_strategies(self, now: datetime) -> List[DueStrategy]:
        """ACTIVE strategies with ``next_execution_time <= now``, joined with owners."""
        raise NotImplementedError

    @abstractmethod
    async def record_execution(self, execution: NewExecution) -> DcaExecution:
        raise NotImplementedError

    @abstractmethod
    async def update_after_success(
        self,
        strategy_id: str,
        next_execution_time: datetime,
        amount_invested: int,
    ) -> DcaStrategy:
        """
        Bump ``execution_count``, add to ``total_invested``, reset failures and
        reschedule. Status is left untouched.
        """
        raise NotImplementedError

    @abstractmethod
    async def increment_failures(self, strategy_id: str, max_failures: int) -> DcaStrategy:
        """
        Bump ``consecutive_failures``; an ACTIVE strategy reaching
        ``max_failures`` is set to PAUSED.
        """
        raise NotImplementedError

    # ---------------------------
    # Lifecycle
    # ---------------------------
    @abstractmethod
    async def create_strategy(
        self,
        user_id: str,
        pair: TokenPair,
        frequency: DcaFrequency,
        amount_per_interval: int,
        next_execution_time: datetime,
    ) -> DcaStrategy:
        raise NotImplementedError

    @abstractmethod
    async def get_strategy(self, strategy_id: str) -> Optional[DcaStrategy]:
        raise NotImplementedError

    @abstractmethod
    async def get_user_strategies(self, user_id: str) -> List[DcaStrategy]:
        raise NotImplementedError

    @abstractmethod
    async def get_existing_strategy_for_pair(
        self,
        user_id: str,
        base_symbol: str,
        target_symbol: str,
    ) -> Optional[DcaStrategy]:
        """The user's ACTIVE or PAUSED strategy on this pair, if any."""
        raise NotImplementedError

    async def pause_strategy(self, strategy_id: str) -> DcaStrategy:
        return await self._set_status(strategy_id, DcaStatus.PAUSED)

    async def resume_strategy(self, strategy_id: str) -> DcaStrategy:
        return await self._set_status(strategy_id, DcaStatus.ACTIVE, reset_failures=True)

    async def cancel_strategy(self, strategy_id: str) -> DcaStrategy:
        return await self._set_status(strategy_id, DcaStatus.CANCELLED)

    @abstractmethod
    async def _set_status(
        self,
        strategy_id: str,
        status: DcaStatus,
        reset_failures: bool = False,
    ) -> DcaStrategy:
        raise NotImplementedError

    # ---------------------------
    # History / reference data
    # ---------------------------
    @abstractmethod
    async def get_executions(self, strategy_id: str, limit: int = 50) -> List[DcaExecution]:
        """Most recent first."""
        raise NotImplementedError

    @abstractmethod
    async def get_user_executions(self, user_id: str, limit: int = 50) -> List[DcaExecution]:
        """Most recent first, across all of the user's strategies."""
        raise NotImplementedError

    @abstractmethod
    async def get_token_pair_by_symbols(self, base_symbol: str, target_symbol: str) -> Optional[TokenPair]:
        raise NotImplementedError

    @abstractmethod
    async def get_active_token_pairs(self) -> List[TokenPair]:
        raise NotImplementedError

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[DcaUser]:
        raise NotImplementedError

    @abstractmethod
    async def save_user_wallet(self, user_id: str, wallet_pubkey: str, encrypted_private_key: str) -> None:
        """Persist a newly provisioned custodial key for the user."""
        raise NotImplementedError


# =============================================================================
# In-memory
# =============================================================================


class InMemoryStrategyStore(StrategyStore):
    """Process-local store. All mutations are serialized by one lock."""

    def __init__(self) -> None:
        self._strategies: Dict[str, DcaStrategy] = {}
        self._executions: List[DcaExecution] = []
        self._users: Dict[str, DcaUser] = {}
        self._pairs: Dict[str, TokenPair] = {}
        self._lock = asyncio.Lock()

    # Seeding helpers
    def add_user(self, user: DcaUser) -> DcaUser:
        self._users[user.id] = user
        return user

    def add_token_pair(self, pair: TokenPair) -> TokenPair:
        self._pairs[pair.id] = pair
        return pair

    def add_strategy(self, strategy: DcaStrategy) -> DcaStrategy:
        self._strategies[strategy.id] = strategy
        return strategy

    async def get_due_strategies(self, now: datetime) -> List[DueStrategy]:
        async with self._lock:
            due = []
            for strategy in self._strategies.values():
                if not strategy.is_due(now):
                    continue
                user = self._users.get(strategy.user_id)
                if user is None:
                    logger.warning(f"Strategy {strategy.id} has no owner record, skipping")
                    continue
                due.append(DueStrategy(strategy=replace(strategy), user=user))
            return due

    async def record_execution(self, execution: NewExecution) -> DcaExecution:
        async with self._lock:
            record = DcaExecution(
                id=f"exec_{uuid.uuid4().hex[:12]}",
                strategy_id=execution.strategy_id,
                amount_invested=execution.amount_invested,
                tokens_received=execution.tokens_received,
                execution_price=execution.execution_price,
                status=execution.status,
                tx_hash=execution.tx_hash,
                error_message=execution.error_message,
                execution_time=utcnow(),
            )
            self._executions.append(record)
            return record

    async def update_after_success(
        self,
        strategy_id: str,
        next_execution_time: datetime,
        amount_invested: int,
    ) -> DcaStrategy:
        def apply(s: DcaStrategy) -> None:
            s.execution_count += 1
            s.total_invested += amount_invested
            s.consecutive_failures = 0
            s.next_execution_time = next_execution_time

        return await self._mutate(strategy_id, apply)

    async def increment_failures(self, strategy_id: str, max_failures: int) -> DcaStrategy:
        def apply(s: DcaStrategy) -> None:
            s.consecutive_failures += 1
            if s.status == DcaStatus.ACTIVE and s.consecutive_failures >= max_failures:
                s.status = DcaStatus.PAUSED

        return await self._mutate(strategy_id, apply)

    async def create_strategy(
        self,
        user_id: str,
        pair: TokenPair,
        frequency: DcaFrequency,
        amount_per_interval: int,
        next_execution_time: datetime,
    ) -> DcaStrategy:
        async with self._lock:
            strategy = DcaStrategy(
                id=f"dca_{uuid.uuid4().hex[:12]}",
                user_id=user_id,
                base=replace(pair.base),
                target=replace(pair.target),
                frequency=frequency,
                next_execution_time=next_execution_time,
                amount_per_interval=amount_per_interval,
            )
            self._strategies[strategy.id] = strategy
            return replace(strategy)

    async def get_strategy(self, strategy_id: str) -> Optional[DcaStrategy]:
        strategy = self._strategies.get(strategy_id)
        return replace(strategy) if strategy else None

    async def get_user_strategies(self, user_id: str) -> List[DcaStrategy]:
        strategies = [replace(s) for s in self._strategies.values() if s.user_id == user_id]
        return sorted(strategies, key=lambda s: s.created_at, reverse=True)

    async def get_existing_strategy_for_pair(
        self,
        user_id: str,
        base_symbol: str,
        target_symbol: str,
    ) -> Optional[DcaStrategy]:
        for s in self._strategies.values():
            if (
                s.user_id == user_id
                and s.base.symbol == base_symbol
                and s.target.symbol == target_symbol
                and s.status.is_open
            ):
                return replace(s)
        return None

    async def _set_status(
        self,
        strategy_id: str,
        status: DcaStatus,
        reset_failures: bool = False,
    ) -> DcaStrategy:
        def apply(s: DcaStrategy) -> None:
            s.status = status
            if reset_failures:
                s.consecutive_failures = 0

        return await self._mutate(strategy_id, apply)

    async def get_executions(self, strategy_id: str, limit: int = 50) -> List[DcaExecution]:
        rows = [e for e in self._executions if e.strategy_id == strategy_id]
        return sorted(rows, key=lambda e: e.execution_time, reverse=True)[:limit]

    async def get_user_executions(self, user_id: str, limit: int = 50) -> List[DcaExecution]:
        owned = {s.id for s in self._strategies.values() if s.user_id == user_id}
        rows = [e for e in self._executions if e.strategy_id in owned]
        return sorted(rows, key=lambda e: e.execution_time, reverse=True)[:limit]

    async def get_token_pair_by_symbols(self, base_symbol: str, target_symbol: str) -> Optional[TokenPair]:
        for pair in self._pairs.values():
            if pair.active and pair.base.symbol == base_symbol and pair.target.symbol == target_symbol:
                return pair
        return None

    async def get_active_token_pairs(self) -> List[TokenPair]:
        return [p for p in self._pairs.values() if p.active]

    async def get_user(self, user_id: str) -> Optional[DcaUser]:
        return self._users.get(user_id)

    async def save_user_wallet(self, user_id: str, wallet_pubkey: str, encrypted_private_key: str) -> None:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise StoreFailure(f"User {user_id} not found")
            user.wallet_pubkey = wallet_pubkey
            user.encrypted_private_key = encrypted_private_key

    async def _mutate(self, strategy_id: str, apply: Callable[[DcaStrategy], None]) -> DcaStrategy:
        async with self._lock:
            strategy = self._strategies.get(strategy_id)
            if strategy is None:
                raise StrategyNotFoundError(f"Strategy {strategy_id} not found")
            apply(strategy)
            strategy.version += 1
            strategy.updated_at = utcnow()
            return replace(strategy)


# =============================================================================
# Convex
# =============================================================================


class ConvexStrategyStore(StrategyStore):
    """Convex-backed store. Client errors surface as ``StoreFailure``."""

    def __init__(self, client: Optional[ConvexClient] = None) -> None:
        self._client = client or get_convex_client()

    async def _run(self, what: str, awaitable: Any) -> Any:
        try:
            return await awaitable
        except ConvexError as e:
            raise StoreFailure(f"{what} failed: {e}") from e

    async def get_due_strategies(self, now: datetime) -> List[DueStrategy]:
        rows = await self._run("getDueStrategies", self._client.get_due_strategies(_to_ms(now)))
        due = []
        for row in rows:
            user = row.get("user")
            if not user:
                logger.warning(f"Strategy {row.get('_id')} has no owner record, skipping")
                continue
            due.append(DueStrategy(strategy=DcaStrategy.from_convex(row), user=DcaUser.from_convex(user)))
        return due

    async def record_execution(self, execution: NewExecution) -> DcaExecution:
        doc = {
            "strategyId": execution.strategy_id,
            "amountInvested": str(execution.amount_invested),
            "tokensReceived": str(execution.tokens_received),
            "executionPrice": str(execution.execution_price),
            "status": execution.status.value,
            "txHash": execution.tx_hash,
            "errorMessage": execution.error_message,
            "executionTime": _to_ms(utcnow()),
        }
        row = await self._run("recordExecution", self._client.insert_execution(doc))
        return DcaExecution.from_convex(row)

    async def update_after_success(
        self,
        strategy_id: str,
        next_execution_time: datetime,
        amount_invested: int,
    ) -> DcaStrategy:
        def patch(s: DcaStrategy) -> Dict[str, Any]:
            return {
                "executionCount": s.execution_count + 1,
                "totalInvested": str(s.total_invested + amount_invested),
                "consecutiveFailures": 0,
                "nextExecutionTime": _to_ms(next_execution_time),
            }

        return await self._patch(strategy_id, patch)

    async def increment_failures(self, strategy_id: str, max_failures: int) -> DcaStrategy:
        def patch(s: DcaStrategy) -> Dict[str, Any]:
            failures = s.consecutive_failures + 1
            fields: Dict[str, Any] = {"consecutiveFailures": failures}
            if s.status == DcaStatus.ACTIVE and failures >= max_failures:
                fields["status"] = DcaStatus.PAUSED.value
            return fields

        return await self._patch(strategy_id, patch)

    async def create_strategy(
        self,
        user_id: str,
        pair: TokenPair,
        frequency: DcaFrequency,
        amount_per_interval: int,
        next_execution_time: datetime,
    ) -> DcaStrategy:
        now = _to_ms(utcnow())
        doc = {
            "userId": user_id,
            "baseToken": pair.base.symbol,
            "baseTokenMint": pair.base.mint,
            "baseTokenDecimals": pair.base.decimals,
            "targetToken": pair.target.symbol,
            "targetTokenMint": pair.target.mint,
            "targetTokenDecimals": pair.target.decimals,
            "frequency": frequency.value,
            "nextExecutionTime": _to_ms(next_execution_time),
            "amountPerInterval": str(amount_per_interval),
            "status": DcaStatus.ACTIVE.value,
            "consecutiveFailures": 0,
            "executionCount": 0,
            "totalInvested": "0",
            "version": 0,
            "createdAt": now,
            "updatedAt": now,
        }
        row = await self._run("createStrategy", self._client.insert_strategy(doc))
        return DcaStrategy.from_convex(row)

    async def get_strategy(self, strategy_id: str) -> Optional[DcaStrategy]:
        row = await self._run("getStrategy", self._client.get_strategy(strategy_id))
        return DcaStrategy.from_convex(row) if row else None

    async def get_user_strategies(self, user_id: str) -> List[DcaStrategy]:
        rows = await self._run("getUserStrategies", self._client.list_user_strategies(user_id))
        return [DcaStrategy.from_convex(r) for r in rows]

    async def get_existing_strategy_for_pair(
        self,
        user_id: str,
        base_symbol: str,
        target_symbol: str,
    ) -> Optional[DcaStrategy]:
        row = await self._run(
            "getExistingStrategyForTokenPair",
            self._client.get_open_strategy_for_pair(user_id, base_symbol, target_symbol),
        )
        return DcaStrategy.from_convex(row) if row else None

    async def _set_status(
        self,
        strategy_id: str,
        status: DcaStatus,
        reset_failures: bool = False,
    ) -> DcaStrategy:
        def patch(_: DcaStrategy) -> Dict[str, Any]:
            fields: Dict[str, Any] = {"status": status.value}
            if reset_failures:
                fields["consecutiveFailures"] = 0
            return fields

        return await self._patch(strategy_id, patch)

    async def get_executions(self, strategy_id: str, limit: int = 50) -> List[DcaExecution]:
        rows = await self._run("getStrategyExecutions", self._client.list_executions(strategy_id, limit))
        return [DcaExecution.from_convex(r) for r in rows]

    async def get_user_executions(self, user_id: str, limit: int = 50) -> List[DcaExecution]:
        rows = await self._run("getUserExecutions", self._client.list_user_executions(user_id, limit))
        return [DcaExecution.from_convex(r) for r in rows]

    async def get_token_pair_by_symbols(self, base_symbol: str, target_symbol: str) -> Optional[TokenPair]:
        row = await self._run("getTokenPairBySymbols", self._client.get_token_pair(base_symbol, target_symbol))
        return TokenPair.from_convex(row) if row else None

    async def get_active_token_pairs(self) -> List[TokenPair]:
        rows = await self._run("getActiveTokenPairs", self._client.list_active_token_pairs())
        return [TokenPair.from_convex(r) for r in rows]

    async def get_user(self, user_id: str) -> Optional[DcaUser]:
        row = await self._run("getUser", self._client.get_user(user_id))
        return DcaUser.from_convex(row) if row else None

    async def save_user_wallet(self, user_id: str, wallet_pubkey: str, encrypted_private_key: str) -> None:
        await self._run(
            "setUserWallet",
            self._client.set_user_wallet(user_id, wallet_pubkey, encrypted_private_key),
        )

    async def _patch(
        self,
        strategy_id: str,
        build: Callable[[DcaStrategy], Dict[str, Any]],
    ) -> DcaStrategy:
        """Conditional read-modify-write, retried when the version moved underneath."""
        for attempt in range(1, _MAX_PATCH_ATTEMPTS + 1):
            current = await self.get_strategy(strategy_id)
            if current is None:
                raise StrategyNotFoundError(f"Strategy {strategy_id} not found")

            fields = build(current)
            fields["version"] = current.version + 1
            fields["updatedAt"] = _to_ms(utcnow())
            row = await self._run(
                "patchStrategy",
                self._client.patch_strategy(strategy_id, fields, expected_version=current.version),
            )
            if row is not None:
                return DcaStrategy.from_convex(row)
            logger.info(f"Version conflict on strategy {strategy_id} (attempt {attempt}), retrying")

        raise StoreFailure(f"Strategy {strategy_id} kept changing, gave up after {_MAX_PATCH_ATTEMPTS} attempts")


__all__ = [
    "ConvexStrategyStore",
    "InMemoryStrategyStore",
    "StrategyStore",
]
