"""
Route Quoter

Picks the liquidity source for a mint and prices trades against it:
- non-graduated launchpad mints price off the bonding curve (full
  constant-product simulation on both sides)
- everything else goes to the aggregator, direct routes only

``quote_buy`` / ``quote_sell`` are advisory and never raise: any failure
yields a zero quote with ``route_type=None``. ``best_route_buy`` /
``best_route_sell`` are the transactional variants used before a trade and
raise ``NoRouteFoundError`` / ``ExecutionFailure`` instead.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from .bonding_curve import simulate_buy, simulate_sell
from .errors import InvalidAmountError, NoRouteFoundError, bounded
from .fixed_point import AmountLike, from_smallest_unit, to_smallest_unit
from .models import (
    SOL_DECIMALS,
    SOL_MINT,
    BondingCurveState,
    Quote,
    RouteType,
    fraction_to_decimal,
)

logger = logging.getLogger(__name__)


class RouteQuoter:
    """
    Dual-route quoting engine.

    Collaborators (duck-typed):
        curves: ``await get_curve(mint) -> Optional[BondingCurveState]`` and
            a ``token_decimals`` attribute (launchpad mints share one decimals)
        aggregator: ``await best_route(input_mint, output_mint, amount)``
            returning an object with ``out_amount``, ``price_impact_pct``,
            ``pool_ref``; ``await decimals(mint) -> Optional[int]``
    """

    def __init__(
        self,
        curves: Any,
        aggregator: Any,
        timeout_s: Optional[float] = None,
    ):
        self._curves = curves
        self._aggregator = aggregator
        self._timeout_s = timeout_s

    @property
    def curve_token_decimals(self) -> int:
        return int(getattr(self._curves, "token_decimals", 6))

    async def get_active_curve(self, mint: str) -> Optional[BondingCurveState]:
        """Curve state when ``mint`` still trades on its bonding curve."""
        curve = await bounded(self._curves.get_curve(mint), "bonding curve lookup", self._timeout_s)
        if curve is None or curve.graduated:
            return None
        return curve

    async def classify(self, mint: str) -> RouteType:
        if await self.get_active_curve(mint) is not None:
            return RouteType.BONDING_CURVE
        return RouteType.EXTERNAL_AMM

    # ---------------------------
    # Advisory (soft-fail)
    # ---------------------------
    async def quote_buy(
        self,
        mint: str,
        sol_amount: AmountLike,
        output_decimals: Optional[int] = None,
    ) -> Quote:
        """Quote SOL -> ``mint``. Returns a zero quote when unpriceable."""
        try:
            return await self.best_route_buy(mint, sol_amount, output_decimals)
        except Exception as e:
            logger.warning(f"Buy quote failed for {mint}: {e}")
            return Quote.empty(SOL_MINT, mint, _as_decimal(sol_amount))

    async def quote_sell(
        self,
        mint: str,
        token_amount: AmountLike,
        token_decimals: Optional[int] = None,
    ) -> Quote:
        """Quote ``mint`` -> SOL. Returns a zero quote when unpriceable."""
        try:
            return await self.best_route_sell(mint, token_amount, token_decimals)
        except Exception as e:
            logger.warning(f"Sell quote failed for {mint}: {e}")
            return Quote.empty(mint, SOL_MINT, _as_decimal(token_amount))

    # ---------------------------
    # Transactional (hard-fail)
    # ---------------------------
    async def best_route_buy(
        self,
        mint: str,
        sol_amount: AmountLike,
        output_decimals: Optional[int] = None,
    ) -> Quote:
        lamports = to_smallest_unit(sol_amount, SOL_DECIMALS)
        if lamports <= 0:
            raise InvalidAmountError(f"Buy amount must be positive, got {sol_amount}")
        amount = from_smallest_unit(lamports, SOL_DECIMALS)

        curve = await self.get_active_curve(mint)
        if curve is not None:
            trade = simulate_buy(lamports, curve.virtual_sol_reserves, curve.virtual_token_reserves)
            if trade.is_empty:
                raise NoRouteFoundError(mint, "bonding curve has no liquidity")
            decimals = self.curve_token_decimals
            return Quote(
                input_mint=SOL_MINT,
                output_mint=mint,
                input_amount=amount,
                output_amount=from_smallest_unit(trade.amount_out, decimals),
                output_amount_raw=trade.amount_out,
                # buys push the price up; report the magnitude
                price_impact_pct=abs(fraction_to_decimal(trade.price_impact_pct, 4)),
                route_type=RouteType.BONDING_CURVE,
                pool_ref=curve.address,
                output_decimals=decimals,
                raw=curve,
            )

        route = await bounded(
            self._aggregator.best_route(SOL_MINT, mint, lamports),
            "aggregator quote",
            self._timeout_s,
        )
        decimals = output_decimals if output_decimals is not None else await self._decimals(mint)
        return self._external_quote(SOL_MINT, mint, amount, route, decimals)

    async def best_route_sell(
        self,
        mint: str,
        token_amount: AmountLike,
        token_decimals: Optional[int] = None,
    ) -> Quote:
        curve = await self.get_active_curve(mint)
        if curve is not None:
            decimals = self.curve_token_decimals
            tokens_in = self._positive_units(token_amount, decimals)
            trade = simulate_sell(tokens_in, curve.virtual_sol_reserves, curve.virtual_token_reserves)
            if trade.is_empty:
                raise NoRouteFoundError(mint, "bonding curve has no liquidity")
            return Quote(
                input_mint=mint,
                output_mint=SOL_MINT,
                input_amount=from_smallest_unit(tokens_in, decimals),
                output_amount=from_smallest_unit(trade.amount_out, SOL_DECIMALS),
                output_amount_raw=trade.amount_out,
                price_impact_pct=fraction_to_decimal(trade.price_impact_pct, 4),
                route_type=RouteType.BONDING_CURVE,
                pool_ref=curve.address,
                output_decimals=SOL_DECIMALS,
                raw=curve,
            )

        decimals = token_decimals if token_decimals is not None else await self._decimals(mint)
        tokens_in = self._positive_units(token_amount, decimals)
        route = await bounded(
            self._aggregator.best_route(mint, SOL_MINT, tokens_in),
            "aggregator quote",
            self._timeout_s,
        )
        return self._external_quote(
            mint, SOL_MINT, from_smallest_unit(tokens_in, decimals), route, SOL_DECIMALS
        )

    # ---------------------------
    # Helpers
    # ---------------------------
    @staticmethod
    def _positive_units(amount: AmountLike, decimals: int) -> int:
        units = to_smallest_unit(amount, decimals)
        if units <= 0:
            raise InvalidAmountError(f"Trade amount must be positive, got {amount}")
        return units

    async def _decimals(self, mint: str) -> int:
        decimals = await bounded(self._aggregator.decimals(mint), "token metadata lookup", self._timeout_s)
        if decimals is None:
            raise NoRouteFoundError(mint, "unknown token decimals")
        return int(decimals)

    @staticmethod
    def _external_quote(
        input_mint: str,
        output_mint: str,
        input_amount: Decimal,
        route: Any,
        output_decimals: int,
    ) -> Quote:
        out_raw = int(route.out_amount)
        if out_raw <= 0:
            raise NoRouteFoundError(output_mint, "aggregator returned no output")
        return Quote(
            input_mint=input_mint,
            output_mint=output_mint,
            input_amount=input_amount,
            output_amount=from_smallest_unit(out_raw, output_decimals),
            output_amount_raw=out_raw,
            price_impact_pct=Decimal(str(route.price_impact_pct)),
            route_type=RouteType.EXTERNAL_AMM,
            pool_ref=getattr(route, "pool_ref", None),
            output_decimals=output_decimals,
            raw=route,
        )


def _as_decimal(amount: AmountLike) -> Decimal:
    try:
        return Decimal(str(amount))
    except (ArithmeticError, ValueError):
        return Decimal("0")
