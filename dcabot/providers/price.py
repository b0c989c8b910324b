"""Best-effort SOL/USD price feed, used only for display and portfolio valuation."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..cache import TTLCache
from ..config import settings
from .base import PriceProvider

logger = logging.getLogger(__name__)


class SolPriceProvider(PriceProvider):
    """Binance ticker price for SOL/USDT, cached briefly. Never raises on lookup."""

    name = "binance"
    timeout_s = 10

    def __init__(self, api_url: Optional[str] = None, symbol: Optional[str] = None) -> None:
        self.api_url = api_url or settings.sol_price_api_url
        self.symbol = symbol or settings.sol_price_symbol
        self._cache = TTLCache(default_ttl=settings.sol_price_cache_ttl_seconds, max_size=4)

    async def ready(self) -> bool:
        return bool(self.api_url)

    async def health_check(self) -> Dict[str, Any]:
        price = await self.get_sol_price_usd()
        if price is None:
            return {"status": "error", "reason": "price unavailable"}
        return {"status": "healthy", "sol_usd": price}

    async def get_sol_price_usd(self) -> Optional[float]:
        cached = await self._cache.get(self.symbol)
        if cached is not None:
            return cached

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                response = await client.get(self.api_url, params={"symbol": self.symbol})
                response.raise_for_status()
                data = response.json()
            price = float(data["price"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"SOL price lookup failed: {e}")
            return None

        await self._cache.set(self.symbol, price)
        return price


_sol_price_provider: Optional[SolPriceProvider] = None


def get_sol_price_provider() -> SolPriceProvider:
    global _sol_price_provider
    if _sol_price_provider is None:
        _sol_price_provider = SolPriceProvider()
    return _sol_price_provider


__all__ = ["SolPriceProvider", "get_sol_price_provider"]
