"""
DCA Executor

Runs one due strategy end to end: balance check against the amount plus a
fee buffer, signer decryption, the buy on whichever route the quoter picks,
then the execution record and strategy bookkeeping.

Outcomes:
- success: SUCCESS record, counters bumped, next time rescheduled from now
- failure: FAILED record, consecutive failures bumped; reaching the limit
  pauses an ACTIVE strategy
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import structlog

from dcabot.config import settings

from .errors import (
    ExecutionFailure,
    InsufficientBalanceError,
    StoreFailure,
    TokenPairNotFoundError,
    bounded,
)
from .fixed_point import format_amount, from_smallest_unit, to_smallest_unit
from .models import (
    SOL_DECIMALS,
    DcaExecution,
    DcaStatus,
    DcaStrategy,
    DueStrategy,
    ExecutionStatus,
    NewExecution,
    TradeResult,
    utcnow,
)
from .scheduler import get_next_execution
from .store import StrategyStore
from .trade import TradeExecutor

logger = logging.getLogger(__name__)
_slog = structlog.stdlib.get_logger("dca.executor")


@dataclass
class ExecutionResult:
    """Result of a DCA execution attempt."""
    strategy_id: str
    success: bool
    skipped: bool = False
    execution: Optional[DcaExecution] = None
    tx_hash: Optional[str] = None
    tokens_received: int = 0
    execution_price: int = 0
    error_message: Optional[str] = None
    next_execution_at: Optional[datetime] = None
    paused: bool = False
    explorer_link: Optional[str] = None


def execution_price(amount_invested: int, tokens_received: int, target_decimals: int) -> int:
    """Base smallest units paid per whole target token; 0 when nothing was received."""
    if tokens_received <= 0:
        return 0
    return amount_invested * 10 ** target_decimals // tokens_received


class DcaExecutor:
    """
    Executes DCA strategy buys.

    Collaborators:
        store: persistence for records and counters
        trader: route-aware trade submission
        wallet: ``await balance(pubkey) -> lamports`` and
            ``get_or_create_keypair(user) -> Keypair``
    """

    def __init__(
        self,
        store: StrategyStore,
        trader: TradeExecutor,
        wallet: Optional[Any],
        fee_buffer_sol: Optional[Decimal] = None,
        slippage_bps: Optional[int] = None,
        max_failures: Optional[int] = None,
        timeout_s: Optional[float] = None,
    ):
        self._store = store
        self._trader = trader
        self._wallet = wallet
        self._fee_buffer = to_smallest_unit(
            fee_buffer_sol if fee_buffer_sol is not None else settings.dca_fee_buffer_sol,
            SOL_DECIMALS,
        )
        self._slippage_bps = slippage_bps if slippage_bps is not None else settings.dca_default_slippage_bps
        self._max_failures = max_failures if max_failures is not None else settings.dca_max_consecutive_failures
        self._timeout_s = timeout_s

    @property
    def max_failures(self) -> int:
        return self._max_failures

    async def execute(self, due: DueStrategy) -> ExecutionResult:
        """Execute a single DCA buy. Never raises for per-strategy failures."""
        strategy = due.strategy
        _start = time.perf_counter()

        # A user may have paused or cancelled since the due set was read.
        current = await self._store.get_strategy(strategy.id)
        if current is None or current.status != DcaStatus.ACTIVE:
            logger.info(f"Strategy {strategy.id} no longer active, skipping")
            return ExecutionResult(strategy_id=strategy.id, success=False, skipped=True)
        strategy = current

        _slog.info(
            "dca_execution_started",
            strategy_id=strategy.id,
            execution_number=strategy.execution_count + 1,
            pair=f"{strategy.base.symbol}/{strategy.target.symbol}",
            amount=str(from_smallest_unit(strategy.amount_per_interval, strategy.base.decimals)),
        )

        try:
            trade = await self._buy(due, strategy)
        except Exception as e:
            duration_ms = round((time.perf_counter() - _start) * 1000, 1)
            _slog.warning(
                "dca_execution_failed",
                strategy_id=strategy.id,
                duration_ms=duration_ms,
                error_type=type(e).__name__,
                error=str(e),
            )
            return await self._fail_execution(strategy, str(e))

        duration_ms = round((time.perf_counter() - _start) * 1000, 1)
        _slog.info(
            "dca_execution_completed",
            strategy_id=strategy.id,
            duration_ms=duration_ms,
            tx_hash=trade.signature,
            route=trade.route_type.value,
            output_amount=str(trade.output_amount),
        )
        return await self._complete_execution(strategy, trade)

    async def _buy(self, due: DueStrategy, strategy: DcaStrategy) -> TradeResult:
        pair = await self._store.get_token_pair_by_symbols(strategy.base.symbol, strategy.target.symbol)
        if pair is None:
            raise TokenPairNotFoundError(strategy.base.symbol, strategy.target.symbol)

        if self._wallet is None:
            raise ExecutionFailure("Wallet custody is not configured")

        # Keys are provisioned outside the tick; see DcaService.provision_wallet.
        if not due.user.encrypted_private_key:
            raise ExecutionFailure(f"User {due.user.id} has no key material for wallet {due.user.wallet_pubkey}")
        signer = self._wallet.get_or_create_keypair(due.user)

        amount = from_smallest_unit(strategy.amount_per_interval, strategy.base.decimals)
        lamports_needed = to_smallest_unit(amount, SOL_DECIMALS) + self._fee_buffer
        balance = await bounded(self._wallet.balance(due.user.wallet_pubkey), "balance lookup", self._timeout_s)
        if balance < lamports_needed:
            raise InsufficientBalanceError(
                required=format_amount(lamports_needed, SOL_DECIMALS),
                current=format_amount(balance, SOL_DECIMALS),
            )

        return await self._trader.execute_buy(
            signer,
            pair.target.mint,
            amount,
            self._slippage_bps,
            output_decimals=pair.target.decimals,
        )

    async def _complete_execution(self, strategy: DcaStrategy, trade: TradeResult) -> ExecutionResult:
        tokens_received = to_smallest_unit(trade.output_amount, strategy.target.decimals)
        price = execution_price(strategy.amount_per_interval, tokens_received, strategy.target.decimals)
        next_at = get_next_execution(strategy.frequency, after=utcnow())

        result = ExecutionResult(
            strategy_id=strategy.id,
            success=True,
            tx_hash=trade.signature,
            tokens_received=tokens_received,
            execution_price=price,
            next_execution_at=next_at,
            explorer_link=trade.explorer_link,
        )
        # Reschedule before recording. A landed trade never gets a FAILED record.
        errors = []
        try:
            await self._store.update_after_success(strategy.id, next_at, strategy.amount_per_interval)
        except StoreFailure as e:
            logger.error(f"Trade {trade.signature} for strategy {strategy.id} landed but rescheduling failed: {e}")
            errors.append(str(e))
        try:
            result.execution = await self._store.record_execution(
                NewExecution(
                    strategy_id=strategy.id,
                    amount_invested=strategy.amount_per_interval,
                    status=ExecutionStatus.SUCCESS,
                    tokens_received=tokens_received,
                    execution_price=price,
                    tx_hash=trade.signature,
                )
            )
        except StoreFailure as e:
            logger.error(f"Trade {trade.signature} for strategy {strategy.id} landed but was not recorded: {e}")
            errors.append(str(e))
        if errors:
            result.error_message = "; ".join(errors)

        logger.info(
            f"DCA {strategy.id}: bought {trade.output_amount} {strategy.target.symbol} "
            f"for {from_smallest_unit(strategy.amount_per_interval, strategy.base.decimals)} "
            f"{strategy.base.symbol} ({trade.signature[:16]}...)"
        )
        return result

    async def _fail_execution(self, strategy: DcaStrategy, error: str) -> ExecutionResult:
        result = ExecutionResult(strategy_id=strategy.id, success=False, error_message=error)
        try:
            result.execution = await self._store.record_execution(
                NewExecution.failed(strategy.id, strategy.amount_per_interval, error)
            )
            updated = await self._store.increment_failures(strategy.id, self._max_failures)
        except StoreFailure as e:
            logger.error(f"Could not record failure for strategy {strategy.id}: {e}")
            return result

        if updated.status == DcaStatus.PAUSED and strategy.status == DcaStatus.ACTIVE:
            result.paused = True
            _slog.warning(
                "dca_strategy_auto_paused",
                strategy_id=strategy.id,
                consecutive_failures=updated.consecutive_failures,
            )
        return result


__all__ = ["DcaExecutor", "ExecutionResult", "execution_price"]
