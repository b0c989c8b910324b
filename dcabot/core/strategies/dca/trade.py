"""
Trade Executor

Fills SOL <-> token trades on whichever route the quoter picks. Bonding
curve trades are built as launchpad program instructions and submitted
directly; external trades go through the aggregator's prebuilt swap
transaction. Failures raise; a returned ``TradeResult`` is a confirmed trade.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from dcabot.config import settings

from .errors import DcaError, ExecutionFailure, bounded
from .fixed_point import AmountLike, from_smallest_unit, to_smallest_unit
from .models import SOL_DECIMALS, Quote, RouteType, TradeResult
from .quoter import RouteQuoter

logger = logging.getLogger(__name__)


class TradeExecutor:
    """
    Route-aware trade submission.

    Collaborators (duck-typed):
        launchpad: ``build_buy_instruction`` / ``build_sell_instruction`` and
            ``await invalidate(mint)``
        submitter: ``await send_instructions(signer, instructions) -> signature``
        aggregator: ``await execute_swap(route, signer, slippage_bps)``
            returning an object with ``signature`` and ``out_amount``
    """

    def __init__(
        self,
        quoter: RouteQuoter,
        launchpad: Any,
        submitter: Any,
        aggregator: Any,
        timeout_s: Optional[float] = None,
    ):
        self._quoter = quoter
        self._launchpad = launchpad
        self._submitter = submitter
        self._aggregator = aggregator
        self._timeout_s = timeout_s

    @property
    def quoter(self) -> RouteQuoter:
        return self._quoter

    async def execute_buy(
        self,
        signer: Any,
        mint: str,
        sol_amount: AmountLike,
        slippage_bps: int,
        output_decimals: Optional[int] = None,
    ) -> TradeResult:
        """Buy ``mint`` with ``sol_amount`` SOL (human units)."""
        quote = await self._quoter.best_route_buy(mint, sol_amount, output_decimals)
        logger.info(f"Buying {mint[:8]}... with {quote.input_amount} SOL via {quote.route_type.value}")

        if quote.route_type == RouteType.BONDING_CURVE:
            buyer = signer.pubkey()
            if str(buyer) != quote.raw.creator:
                raise ExecutionFailure(
                    f"Curve buy of {mint[:8]}... needs a signature from the curve creator {quote.raw.creator}"
                )
            # buy_tokens has no minimum-out argument, slippage_bps does not apply
            lamports = to_smallest_unit(quote.input_amount, SOL_DECIMALS)
            ix = self._launchpad.build_buy_instruction(buyer, quote.raw, lamports)
            return await self._fill_on_curve(signer, mint, ix, quote, "curve buy")

        return await self._fill_on_aggregator(signer, quote, slippage_bps, "aggregator buy")

    async def execute_sell(
        self,
        signer: Any,
        mint: str,
        token_amount: AmountLike,
        slippage_bps: int,
        token_decimals: Optional[int] = None,
    ) -> TradeResult:
        """Sell ``token_amount`` of ``mint`` (human units) for SOL."""
        quote = await self._quoter.best_route_sell(mint, token_amount, token_decimals)
        logger.info(f"Selling {quote.input_amount} of {mint[:8]}... via {quote.route_type.value}")

        if quote.route_type == RouteType.BONDING_CURVE:
            tokens_in = to_smallest_unit(quote.input_amount, self._quoter.curve_token_decimals)
            ix = self._launchpad.build_sell_instruction(signer.pubkey(), quote.raw, tokens_in)
            return await self._fill_on_curve(signer, mint, ix, quote, "curve sell")

        return await self._fill_on_aggregator(signer, quote, slippage_bps, "aggregator sell")

    async def _fill_on_curve(self, signer: Any, mint: str, ix: Any, quote: Quote, what: str) -> TradeResult:
        signature = await self._submit(self._submitter.send_instructions(signer, [ix]), what)
        # reserves moved; the next quote must re-read the curve
        await self._launchpad.invalidate(mint)
        return self._result(signature, quote, quote.output_amount_raw)

    async def _fill_on_aggregator(self, signer: Any, quote: Quote, slippage_bps: int, what: str) -> TradeResult:
        fill = await self._submit(self._aggregator.execute_swap(quote.raw, signer, slippage_bps), what)
        out_raw = int(fill.out_amount or 0) or quote.output_amount_raw
        return self._result(fill.signature, quote, out_raw)

    async def _submit(self, awaitable: Any, what: str) -> Any:
        try:
            return await bounded(awaitable, what, self._timeout_s)
        except DcaError:
            raise
        except Exception as e:
            raise ExecutionFailure(f"{what} failed: {e}") from e

    @staticmethod
    def _result(signature: str, quote: Quote, out_raw: int) -> TradeResult:
        if out_raw == quote.output_amount_raw or quote.output_decimals is None:
            output_amount = quote.output_amount
        else:
            output_amount = from_smallest_unit(out_raw, quote.output_decimals)
        return TradeResult(
            signature=signature,
            input_amount=quote.input_amount,
            output_amount=output_amount,
            output_amount_raw=out_raw,
            route_type=quote.route_type,
            explorer_link=settings.explorer_tx_url(signature),
        )
