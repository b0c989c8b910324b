"""
Tests for route-aware trade execution.
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from dcabot.core.strategies.dca import (
    BondingCurveState,
    ExecutionFailure,
    NoRouteFoundError,
    RouteType,
)
from dcabot.core.strategies.dca.quoter import RouteQuoter
from dcabot.core.strategies.dca.trade import TradeExecutor


# =============================================================================
# Fixtures
# =============================================================================


MINT = "9BB6NFEcjBCtnNLFko2FqVQBq8HHM13kCyYcdQbgpump"
SIGNER_PUBKEY = "SignerPubkey1111111111111111111111111111111"
SIGNATURE = "3kYxA9vJzQ1oM7b2cR5sT8uV4wX6yZ1aB2cD3eF4gH5iJ6kL7mN8oP9qR1sT2uV3"


@pytest.fixture
def curve():
    return BondingCurveState(
        address="CurveAcct1111111111111111111111111111111111",
        mint=MINT,
        creator=SIGNER_PUBKEY,
        virtual_sol_reserves=1_000_000_000,
        virtual_token_reserves=1_000_000_000_000,
    )


@pytest.fixture
def mock_curves(curve):
    curves = MagicMock()
    curves.get_curve = AsyncMock(return_value=curve)
    curves.token_decimals = 6
    return curves


@pytest.fixture
def aggregator_route():
    return SimpleNamespace(out_amount=123_456_789, price_impact_pct=0.3, pool_ref="Whirlpool1111")


@pytest.fixture
def mock_aggregator(aggregator_route):
    aggregator = MagicMock()
    aggregator.best_route = AsyncMock(return_value=aggregator_route)
    aggregator.decimals = AsyncMock(return_value=6)
    aggregator.execute_swap = AsyncMock(
        return_value=SimpleNamespace(signature=SIGNATURE, in_amount=100_000_000, out_amount=120_000_000)
    )
    return aggregator


@pytest.fixture
def mock_launchpad(mock_curves):
    launchpad = MagicMock()
    launchpad.build_buy_instruction = MagicMock(return_value="buy-ix")
    launchpad.build_sell_instruction = MagicMock(return_value="sell-ix")
    launchpad.invalidate = AsyncMock()
    return launchpad


@pytest.fixture
def mock_submitter():
    submitter = MagicMock()
    submitter.send_instructions = AsyncMock(return_value=SIGNATURE)
    return submitter


@pytest.fixture
def signer():
    keypair = MagicMock()
    keypair.pubkey.return_value = SIGNER_PUBKEY
    return keypair


@pytest.fixture
def trader(mock_curves, mock_aggregator, mock_launchpad, mock_submitter):
    quoter = RouteQuoter(curves=mock_curves, aggregator=mock_aggregator)
    return TradeExecutor(
        quoter=quoter,
        launchpad=mock_launchpad,
        submitter=mock_submitter,
        aggregator=mock_aggregator,
    )


# =============================================================================
# Bonding curve fills
# =============================================================================


class TestCurveTrades:
    """Tests for trades built as launchpad instructions."""

    @pytest.mark.asyncio
    async def test_buy(self, trader, signer, curve, mock_launchpad, mock_submitter, mock_aggregator):
        result = await trader.execute_buy(signer, MINT, "0.1", slippage_bps=100)

        mock_launchpad.build_buy_instruction.assert_called_once_with(
            "SignerPubkey1111111111111111111111111111111", curve, 100_000_000
        )
        mock_submitter.send_instructions.assert_awaited_once_with(signer, ["buy-ix"])
        mock_launchpad.invalidate.assert_awaited_once_with(MINT)
        mock_aggregator.execute_swap.assert_not_awaited()

        assert result.signature == SIGNATURE
        assert result.route_type == RouteType.BONDING_CURVE
        assert result.output_amount_raw == 90_909_090_910
        assert result.output_amount == Decimal("90909.09091")
        assert SIGNATURE in result.explorer_link

    @pytest.mark.asyncio
    async def test_buy_needs_creator_signature(self, trader, signer, curve, mock_launchpad, mock_submitter):
        """buy_tokens is co-signed by the curve creator; other wallets fail before submission."""
        curve.creator = "Creator111111111111111111111111111111111111"

        with pytest.raises(ExecutionFailure, match="curve creator Creator1111"):
            await trader.execute_buy(signer, MINT, "0.1", slippage_bps=100)

        mock_launchpad.build_buy_instruction.assert_not_called()
        mock_submitter.send_instructions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sell_by_any_holder(self, trader, signer, curve, mock_launchpad):
        curve.creator = "Creator111111111111111111111111111111111111"

        await trader.execute_sell(signer, MINT, "10000", slippage_bps=100)

        mock_launchpad.build_sell_instruction.assert_called_once()

    @pytest.mark.asyncio
    async def test_sell(self, trader, signer, curve, mock_launchpad):
        result = await trader.execute_sell(signer, MINT, "10000", slippage_bps=100)

        mock_launchpad.build_sell_instruction.assert_called_once_with(
            "SignerPubkey1111111111111111111111111111111", curve, 10_000_000_000
        )
        assert result.output_amount_raw == 9_900_991
        assert result.output_amount == Decimal("0.009900991")

    @pytest.mark.asyncio
    async def test_submission_error_becomes_execution_failure(self, trader, signer, mock_submitter, mock_launchpad):
        mock_submitter.send_instructions.side_effect = RuntimeError("custom program error: 0x1771")

        with pytest.raises(ExecutionFailure, match="0x1771"):
            await trader.execute_buy(signer, MINT, "0.1", slippage_bps=100)

        mock_launchpad.invalidate.assert_not_awaited()


# =============================================================================
# Aggregator fills
# =============================================================================


class TestAggregatorTrades:
    """Tests for trades filled through the aggregator swap."""

    @pytest.mark.asyncio
    async def test_buy_uses_filled_amount(self, trader, signer, curve, aggregator_route, mock_aggregator, mock_submitter):
        curve.graduated = True

        result = await trader.execute_buy(signer, MINT, "0.1", slippage_bps=150, output_decimals=6)

        mock_aggregator.execute_swap.assert_awaited_once_with(aggregator_route, signer, 150)
        mock_submitter.send_instructions.assert_not_awaited()
        assert result.route_type == RouteType.EXTERNAL_AMM
        assert result.output_amount_raw == 120_000_000
        assert result.output_amount == Decimal("120")

    @pytest.mark.asyncio
    async def test_unknown_fill_amount_falls_back_to_quote(self, trader, signer, mock_curves, mock_aggregator):
        mock_curves.get_curve.return_value = None
        mock_aggregator.execute_swap.return_value = SimpleNamespace(signature=SIGNATURE, in_amount=0, out_amount=0)

        result = await trader.execute_buy(signer, MINT, "0.1", slippage_bps=100)

        assert result.output_amount_raw == 123_456_789
        assert result.output_amount == Decimal("123.456789")

    @pytest.mark.asyncio
    async def test_no_route_propagates(self, trader, signer, mock_curves, mock_aggregator):
        mock_curves.get_curve.return_value = None
        mock_aggregator.best_route.side_effect = NoRouteFoundError(MINT, "no direct route")

        with pytest.raises(NoRouteFoundError):
            await trader.execute_buy(signer, MINT, "0.1", slippage_bps=100)

        mock_aggregator.execute_swap.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_swap_error(self, trader, signer, mock_curves, mock_aggregator):
        mock_curves.get_curve.return_value = None
        mock_aggregator.execute_swap.side_effect = ConnectionError("rpc down")

        with pytest.raises(ExecutionFailure, match="aggregator buy failed"):
            await trader.execute_buy(signer, MINT, "0.1", slippage_bps=100)
