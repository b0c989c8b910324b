"""
Tests for DCA analytics and wallet valuation.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from dcabot.core.strategies.dca import (
    SOL_MINT,
    DcaExecution,
    DcaFrequency,
    DcaStatus,
    DcaStrategy,
    ExecutionStatus,
    Quote,
    RouteType,
    TokenInfo,
)
from dcabot.core.strategies.dca.analytics import AnalyticsEngine, PortfolioValuator


# =============================================================================
# Fixtures
# =============================================================================


PUMP = TokenInfo(symbol="PUMP", mint="9BB6NFEcjBCtnNLFko2FqVQBq8HHM13kCyYcdQbgpump", decimals=6)
WIF = TokenInfo(symbol="WIF", mint="EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm", decimals=6)
SOL = TokenInfo(symbol="SOL", mint=SOL_MINT, decimals=9)


def _sell_quote(mint, sol_out):
    raw = int(Decimal(sol_out) * 10 ** 9)
    return Quote(
        input_mint=mint,
        output_mint=SOL_MINT,
        input_amount=Decimal("1"),
        output_amount=Decimal(sol_out),
        output_amount_raw=raw,
        price_impact_pct=Decimal("0.5"),
        route_type=RouteType.EXTERNAL_AMM,
    )


def _strategy(id, target, total_invested, status=DcaStatus.ACTIVE):
    return DcaStrategy(
        id=id,
        user_id="user_1",
        base=SOL,
        target=target,
        frequency=DcaFrequency.DAILY,
        next_execution_time=datetime(2025, 3, 2, tzinfo=timezone.utc),
        amount_per_interval=100_000_000,
        status=status,
        total_invested=total_invested,
    )


def _execution(strategy_id, tokens, status=ExecutionStatus.SUCCESS):
    return DcaExecution(
        id=f"exec_{strategy_id}_{tokens}_{status.value}",
        strategy_id=strategy_id,
        amount_invested=100_000_000,
        tokens_received=tokens,
        execution_price=0,
        status=status,
    )


@pytest.fixture
def mock_quoter():
    quoter = MagicMock()
    quoter.quote_sell = AsyncMock(side_effect=lambda mint, amount, token_decimals=None: _sell_quote(mint, "0.3"))
    return quoter


@pytest.fixture
def engine(mock_quoter):
    return AnalyticsEngine(mock_quoter)


@pytest.fixture
def strategy():
    """0.2 SOL invested over two buys of 100,000 PUMP each, plus one failure."""
    return _strategy("dca_1", PUMP, total_invested=200_000_000)


@pytest.fixture
def executions():
    return [
        _execution("dca_1", 100_000_000_000),
        _execution("dca_1", 100_000_000_000),
        _execution("dca_1", 0, ExecutionStatus.FAILED),
    ]


# =============================================================================
# Strategy analytics
# =============================================================================


class TestStrategyAnalytics:
    """Tests for per-strategy PnL."""

    @pytest.mark.asyncio
    async def test_pnl_from_liquidation_quote(self, engine, mock_quoter, strategy, executions):
        stats = await engine.strategy_analytics(strategy, executions)

        mock_quoter.quote_sell.assert_awaited_once_with(PUMP.mint, Decimal("200000"), token_decimals=6)
        assert stats.total_invested == Decimal("0.2")
        assert stats.total_tokens_received == Decimal("200000")
        assert stats.average_buy_price == Decimal("0.000001")
        assert stats.current_value == Decimal("0.3")
        assert stats.current_price == Decimal("0.0000015")
        assert stats.pnl == Decimal("0.1")
        assert stats.pnl_percentage == Decimal("50")
        assert stats.successful_executions == 2
        assert stats.failed_executions == 1
        assert round(stats.success_rate, 2) == Decimal("66.67")

    @pytest.mark.asyncio
    async def test_no_route_values_at_cost(self, engine, mock_quoter, strategy, executions):
        mock_quoter.quote_sell.side_effect = None
        mock_quoter.quote_sell.return_value = Quote.empty(PUMP.mint, SOL_MINT, Decimal("200000"))

        stats = await engine.strategy_analytics(strategy, executions)

        assert stats.current_value == Decimal("0.2")
        assert stats.current_price == stats.average_buy_price
        assert stats.pnl == 0
        assert stats.pnl_percentage == 0

    @pytest.mark.asyncio
    async def test_no_executions(self, engine, mock_quoter):
        stats = await engine.strategy_analytics(_strategy("dca_new", PUMP, total_invested=0), [])

        mock_quoter.quote_sell.assert_not_awaited()
        assert stats.current_value == 0
        assert stats.pnl == 0
        assert stats.pnl_percentage == 0
        assert stats.success_rate == 0

    @pytest.mark.asyncio
    async def test_to_dict(self, engine, strategy, executions):
        data = (await engine.strategy_analytics(strategy, executions)).to_dict()

        assert data["successfulExecutions"] == 2
        assert Decimal(data["pnl"]) == Decimal("0.1")


# =============================================================================
# Portfolio analytics
# =============================================================================


class TestPortfolioAnalytics:
    """Tests for aggregate PnL across strategies."""

    @pytest.mark.asyncio
    async def test_aggregates(self, engine, strategy, executions):
        wif = _strategy("dca_2", WIF, total_invested=100_000_000, status=DcaStatus.PAUSED)
        all_executions = executions + [_execution("dca_2", 5_000_000)]

        portfolio = await engine.portfolio_analytics([strategy, wif], all_executions)

        assert portfolio.total_invested == Decimal("0.3")
        assert portfolio.total_current_value == Decimal("0.6")
        assert portfolio.overall_pnl == Decimal("0.3")
        assert portfolio.overall_pnl_percentage == Decimal("100")
        assert portfolio.total_strategies == 2
        assert portfolio.active_strategies == 1
        assert portfolio.paused_strategies == 1
        assert portfolio.total_executions == 4
        assert portfolio.successful_executions == 3
        assert portfolio.success_rate == Decimal("75")

    @pytest.mark.asyncio
    async def test_failed_strategy_counts_flat(self, engine, mock_quoter, strategy, executions):
        wif = _strategy("dca_2", WIF, total_invested=100_000_000)

        def quote(mint, amount, token_decimals=None):
            if mint == WIF.mint:
                raise RuntimeError("quoter exploded")
            return _sell_quote(mint, "0.3")

        mock_quoter.quote_sell.side_effect = quote

        portfolio = await engine.portfolio_analytics(
            [strategy, wif], executions + [_execution("dca_2", 5_000_000)]
        )

        assert portfolio.total_invested == Decimal("0.3")
        assert portfolio.total_current_value == Decimal("0.4")
        assert portfolio.overall_pnl == Decimal("0.1")

    @pytest.mark.asyncio
    async def test_empty_portfolio(self, engine):
        portfolio = await engine.portfolio_analytics([], [])

        assert portfolio.total_invested == 0
        assert portfolio.overall_pnl_percentage == 0
        assert portfolio.success_rate == 0


# =============================================================================
# Wallet valuation
# =============================================================================


class TestPortfolioValuator:
    """Tests for SOL + token wallet valuation."""

    @pytest.fixture
    def mock_rpc(self):
        balances = {PUMP.mint: 1_000_000, WIF.mint: 0, "Unpriced111": 5_000_000}
        rpc = MagicMock()
        rpc.get_balance = AsyncMock(return_value=2_500_000_000)
        rpc.get_token_balance = AsyncMock(side_effect=lambda owner, mint: balances[mint])
        return rpc

    @pytest.fixture
    def mock_price_feed(self):
        feed = MagicMock()
        feed.get_sol_price_usd = AsyncMock(return_value=150.25)
        return feed

    @pytest.fixture
    def valuation_quoter(self):
        def quote(mint, amount, token_decimals=None):
            if mint == PUMP.mint:
                return _sell_quote(mint, "0.5")
            return Quote.empty(mint, SOL_MINT, Decimal(amount))

        quoter = MagicMock()
        quoter.quote_sell = AsyncMock(side_effect=quote)
        return quoter

    @pytest.mark.asyncio
    async def test_value_wallet(self, mock_rpc, valuation_quoter, mock_price_feed):
        valuator = PortfolioValuator(mock_rpc, valuation_quoter, mock_price_feed)
        unpriced = TokenInfo(symbol="UNP", mint="Unpriced111", decimals=6)

        value = await valuator.value_wallet("Wallet1", [PUMP, WIF, unpriced])

        assert value.sol_balance == Decimal("2.5")
        assert value.sol_price_usd == Decimal("150.25")
        assert [t.token.symbol for t in value.tokens] == ["PUMP", "UNP"]

        pump = value.tokens[0]
        assert pump.balance == Decimal("1")
        assert pump.value_sol == Decimal("0.5")
        assert pump.value_usd == Decimal("75.125")

        assert value.tokens[1].value_sol == 0
        assert value.total_sol == Decimal("3.0")
        assert value.total_usd == Decimal("450.75")

    @pytest.mark.asyncio
    async def test_no_usd_price(self, mock_rpc, valuation_quoter, mock_price_feed):
        mock_price_feed.get_sol_price_usd.return_value = None
        valuator = PortfolioValuator(mock_rpc, valuation_quoter, mock_price_feed)

        value = await valuator.value_wallet("Wallet1", [PUMP])

        assert value.sol_price_usd is None
        assert value.total_usd is None
        assert value.tokens[0].value_usd is None
        assert value.total_sol == Decimal("3.0")
