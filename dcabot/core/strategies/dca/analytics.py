"""
DCA Analytics

PnL for strategies and whole portfolios, valued in the base token by
simulating a full liquidation of the accumulated holdings, plus a wallet
valuator (SOL and token holdings in SOL and USD).

All figures are human-unit Decimals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from .fixed_point import from_smallest_unit
from .models import (
    SOL_DECIMALS,
    DcaExecution,
    DcaStatus,
    DcaStrategy,
    ExecutionStatus,
    TokenInfo,
)
from .quoter import RouteQuoter

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def _pct(part: Decimal, whole: Decimal) -> Decimal:
    return part / whole * _HUNDRED if whole > 0 else _ZERO


@dataclass
class StrategyAnalytics:
    total_invested: Decimal
    total_tokens_received: Decimal
    average_buy_price: Decimal
    current_value: Decimal
    current_price: Decimal
    pnl: Decimal
    pnl_percentage: Decimal
    successful_executions: int
    failed_executions: int
    success_rate: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalInvested": str(self.total_invested),
            "totalTokensReceived": str(self.total_tokens_received),
            "averageBuyPrice": str(self.average_buy_price),
            "currentValue": str(self.current_value),
            "currentPrice": str(self.current_price),
            "pnl": str(self.pnl),
            "pnlPercentage": str(self.pnl_percentage),
            "successfulExecutions": self.successful_executions,
            "failedExecutions": self.failed_executions,
            "successRate": str(self.success_rate),
        }


@dataclass
class PortfolioAnalytics:
    total_invested: Decimal
    total_current_value: Decimal
    overall_pnl: Decimal
    overall_pnl_percentage: Decimal
    total_strategies: int
    active_strategies: int
    paused_strategies: int
    total_executions: int
    successful_executions: int
    success_rate: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalInvested": str(self.total_invested),
            "totalCurrentValue": str(self.total_current_value),
            "overallPnl": str(self.overall_pnl),
            "overallPnlPercentage": str(self.overall_pnl_percentage),
            "totalStrategies": self.total_strategies,
            "activeStrategies": self.active_strategies,
            "pausedStrategies": self.paused_strategies,
            "totalExecutions": self.total_executions,
            "successfulExecutions": self.successful_executions,
            "successRate": str(self.success_rate),
        }


class AnalyticsEngine:
    """Strategy and portfolio PnL against live sell quotes."""

    def __init__(self, quoter: RouteQuoter):
        self._quoter = quoter

    async def strategy_analytics(
        self,
        strategy: DcaStrategy,
        executions: Sequence[DcaExecution],
    ) -> StrategyAnalytics:
        successful = [e for e in executions if e.status == ExecutionStatus.SUCCESS]
        failed = [e for e in executions if e.status == ExecutionStatus.FAILED]

        total_invested = from_smallest_unit(strategy.total_invested, strategy.base.decimals)
        total_tokens = from_smallest_unit(
            sum(e.tokens_received for e in successful), strategy.target.decimals
        )
        average_buy_price = (
            total_invested / total_tokens if total_invested > 0 and total_tokens > 0 else _ZERO
        )

        current_value = _ZERO
        current_price = _ZERO
        if total_tokens > 0:
            quote = await self._quoter.quote_sell(
                strategy.target.mint, total_tokens, token_decimals=strategy.target.decimals
            )
            if quote.has_route:
                current_value = quote.output_amount
                current_price = current_value / total_tokens
            else:
                logger.warning(f"No sell quote for strategy {strategy.id}, valuing at cost")
                current_value = total_invested
                current_price = average_buy_price

        pnl = current_value - total_invested
        return StrategyAnalytics(
            total_invested=total_invested,
            total_tokens_received=total_tokens,
            average_buy_price=average_buy_price,
            current_value=current_value,
            current_price=current_price,
            pnl=pnl,
            pnl_percentage=_pct(pnl, total_invested),
            successful_executions=len(successful),
            failed_executions=len(failed),
            success_rate=_pct(Decimal(len(successful)), Decimal(len(executions))),
        )

    async def portfolio_analytics(
        self,
        strategies: Sequence[DcaStrategy],
        executions: Sequence[DcaExecution],
    ) -> PortfolioAnalytics:
        total_invested = _ZERO
        total_current_value = _ZERO
        successful = 0

        for strategy in strategies:
            own = [e for e in executions if e.strategy_id == strategy.id]
            try:
                analytics = await self.strategy_analytics(strategy, own)
            except Exception as e:
                logger.error(f"Analytics failed for strategy {strategy.id}: {e}")
                flat = from_smallest_unit(strategy.total_invested, strategy.base.decimals)
                total_invested += flat
                total_current_value += flat
                continue
            total_invested += analytics.total_invested
            total_current_value += analytics.current_value
            successful += analytics.successful_executions

        overall_pnl = total_current_value - total_invested
        return PortfolioAnalytics(
            total_invested=total_invested,
            total_current_value=total_current_value,
            overall_pnl=overall_pnl,
            overall_pnl_percentage=_pct(overall_pnl, total_invested),
            total_strategies=len(strategies),
            active_strategies=sum(1 for s in strategies if s.status == DcaStatus.ACTIVE),
            paused_strategies=sum(1 for s in strategies if s.status == DcaStatus.PAUSED),
            total_executions=len(executions),
            successful_executions=successful,
            success_rate=_pct(Decimal(successful), Decimal(len(executions))),
        )


# =============================================================================
# Wallet valuation
# =============================================================================


@dataclass
class TokenValue:
    token: TokenInfo
    balance: Decimal
    value_sol: Decimal
    value_usd: Optional[Decimal] = None


@dataclass
class WalletValue:
    sol_balance: Decimal
    sol_price_usd: Optional[Decimal]
    tokens: List[TokenValue] = field(default_factory=list)

    @property
    def total_token_value_sol(self) -> Decimal:
        return sum((t.value_sol for t in self.tokens), _ZERO)

    @property
    def total_sol(self) -> Decimal:
        return self.sol_balance + self.total_token_value_sol

    @property
    def total_usd(self) -> Optional[Decimal]:
        if self.sol_price_usd is None:
            return None
        return self.total_sol * self.sol_price_usd


class PortfolioValuator:
    """
    Values a wallet's SOL and token holdings.

    Collaborators:
        rpc: ``await get_balance(pubkey)`` and ``await get_token_balance(owner, mint)``
        quoter: sell quotes into SOL
        price_feed: ``await get_sol_price_usd() -> Optional[float]``
    """

    def __init__(self, rpc: Any, quoter: RouteQuoter, price_feed: Any):
        self._rpc = rpc
        self._quoter = quoter
        self._price_feed = price_feed

    async def value_wallet(self, pubkey: str, holdings: Sequence[TokenInfo]) -> WalletValue:
        lamports = await self._rpc.get_balance(pubkey)
        price = await self._price_feed.get_sol_price_usd()
        sol_price_usd = Decimal(str(price)) if price is not None else None

        value = WalletValue(
            sol_balance=from_smallest_unit(lamports, SOL_DECIMALS),
            sol_price_usd=sol_price_usd,
        )
        for token in holdings:
            units = await self._rpc.get_token_balance(pubkey, token.mint)
            if units <= 0:
                continue
            balance = from_smallest_unit(units, token.decimals)
            quote = await self._quoter.quote_sell(token.mint, balance, token_decimals=token.decimals)
            value_sol = quote.output_amount if quote.has_route else _ZERO
            if not quote.has_route:
                logger.warning(f"No price for {token.symbol} ({token.mint}), counting as zero")
            value.tokens.append(
                TokenValue(
                    token=token,
                    balance=balance,
                    value_sol=value_sol,
                    value_usd=value_sol * sol_price_usd if sol_price_usd is not None else None,
                )
            )
        return value


__all__ = [
    "AnalyticsEngine",
    "PortfolioAnalytics",
    "PortfolioValuator",
    "StrategyAnalytics",
    "TokenValue",
    "WalletValue",
]
