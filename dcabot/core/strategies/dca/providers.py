"""
DCA Provider Adapters

Thin adapter classes that bridge the engine's duck-typed collaborator
interfaces to the raw providers (Jupiter, launchpad program, Solana RPC,
Convex), plus the factory that wires a production engine from settings.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Optional

from dcabot.config import settings
from dcabot.providers.jupiter import (
    JupiterQuote,
    JupiterQuoteError,
    JupiterSwapProvider,
    get_jupiter_swap_provider,
)
from dcabot.providers.launchpad import LaunchpadProvider, get_launchpad_provider
from dcabot.providers.price import get_sol_price_provider
from dcabot.providers.solana import SolanaRpcProvider, get_solana_rpc
from dcabot.providers.wallet import WalletCustody, get_wallet_custody

from .analytics import AnalyticsEngine, PortfolioValuator
from .errors import NoRouteFoundError
from .executor import DcaExecutor
from .quoter import RouteQuoter
from .scheduler import DcaScheduler
from .service import DcaService
from .store import ConvexStrategyStore, InMemoryStrategyStore, StrategyStore
from .trade import TradeExecutor

logger = logging.getLogger(__name__)


@dataclass
class AggregatorFill:
    """Confirmed aggregator swap."""
    signature: str
    in_amount: int
    out_amount: int


class JupiterAggregator:
    """Wraps JupiterSwapProvider to expose best_route / decimals / execute_swap."""

    def __init__(
        self,
        swap_provider: Optional[JupiterSwapProvider] = None,
        submitter: Optional[SolanaRpcProvider] = None,
        slippage_bps: Optional[int] = None,
    ) -> None:
        self._swap = swap_provider or get_jupiter_swap_provider()
        self._submitter = submitter or get_solana_rpc()
        self._slippage_bps = slippage_bps if slippage_bps is not None else settings.dca_default_slippage_bps

    async def best_route(self, input_mint: str, output_mint: str, amount: int) -> JupiterQuote:
        """Direct-route quote; multi-hop or empty routes are NoRouteFound."""
        try:
            quote = await self._swap.get_swap_quote(
                input_mint=input_mint,
                output_mint=output_mint,
                amount=amount,
                slippage_bps=self._slippage_bps,
                only_direct_routes=True,
            )
        except JupiterQuoteError as e:
            raise NoRouteFoundError(output_mint, str(e)) from e

        if not quote.is_direct:
            raise NoRouteFoundError(output_mint, f"route has {len(quote.route_plan)} hops")
        if quote.out_amount <= 0:
            raise NoRouteFoundError(output_mint, "zero output")
        return quote

    async def decimals(self, mint: str) -> Optional[int]:
        return await self._swap.tokens.get_decimals(mint)

    async def execute_swap(self, route: JupiterQuote, signer: Any, slippage_bps: int) -> AggregatorFill:
        """Re-quote at the caller's slippage, build, sign, submit, confirm."""
        if route.slippage_bps != slippage_bps or not route.is_valid:
            route = await self._swap.get_swap_quote(
                input_mint=route.input_mint,
                output_mint=route.output_mint,
                amount=route.in_amount,
                slippage_bps=slippage_bps,
                only_direct_routes=True,
            )
        swap = await self._swap.build_swap_transaction(route, user_public_key=str(signer.pubkey()))
        signature = await self._submitter.send_versioned(signer, base64.b64decode(swap.swap_transaction))
        return AggregatorFill(signature=signature, in_amount=route.in_amount, out_amount=route.out_amount)


@dataclass
class DcaEngine:
    """Wired engine components."""
    store: StrategyStore
    quoter: RouteQuoter
    trader: TradeExecutor
    executor: DcaExecutor
    scheduler: DcaScheduler
    service: DcaService
    analytics: AnalyticsEngine
    valuator: PortfolioValuator
    wallet: Optional[WalletCustody] = None


def build_engine(
    store: Optional[StrategyStore] = None,
    rpc: Optional[SolanaRpcProvider] = None,
    launchpad: Optional[LaunchpadProvider] = None,
    wallet: Optional[WalletCustody] = None,
) -> DcaEngine:
    """Build the production engine from settings."""
    rpc = rpc or get_solana_rpc()
    launchpad = launchpad or get_launchpad_provider()
    if store is None:
        if settings.has_convex:
            store = ConvexStrategyStore()
        else:
            logger.warning("CONVEX_URL not set, using in-memory strategy store")
            store = InMemoryStrategyStore()

    aggregator = JupiterAggregator(submitter=rpc)
    timeout_s = settings.dca_external_call_timeout_seconds
    quoter = RouteQuoter(launchpad, aggregator, timeout_s=timeout_s)
    trader = TradeExecutor(quoter, launchpad, rpc, aggregator, timeout_s=timeout_s)
    if wallet is None and settings.has_wallet_key:
        wallet = get_wallet_custody()
    executor = DcaExecutor(store, trader, wallet)
    scheduler = DcaScheduler(store, executor)

    return DcaEngine(
        store=store,
        quoter=quoter,
        trader=trader,
        executor=executor,
        scheduler=scheduler,
        service=DcaService(store),
        analytics=AnalyticsEngine(quoter),
        valuator=PortfolioValuator(rpc, quoter, get_sol_price_provider()),
        wallet=wallet,
    )


__all__ = ["AggregatorFill", "DcaEngine", "JupiterAggregator", "build_engine"]
