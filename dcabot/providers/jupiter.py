"""
Jupiter aggregator provider for Solana.

Two pieces:
- ``JupiterProvider``: strict token list, cached in memory, used to resolve
  decimals for mints that are not configured locally.
- ``JupiterSwapProvider``: quote and swap-transaction building against the
  v6 quote API. The DCA engine asks only for direct routes.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .base import Provider
from ..config import settings

NATIVE_SOL_MINT = "So11111111111111111111111111111111111111112"
SOL_DECIMALS = 9


@dataclass
class JupiterToken:
    """Parsed Jupiter token metadata."""

    address: str  # Mint address (Base58)
    symbol: str
    name: str
    decimals: int

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "JupiterToken":
        return cls(
            address=data.get("address", ""),
            symbol=data.get("symbol", ""),
            name=data.get("name", ""),
            decimals=int(data.get("decimals", 9)),
        )


class JupiterProvider(Provider):
    """
    Jupiter token list provider.

    No API key required. The list is cached in memory and refreshed after
    ``settings.jupiter_cache_ttl_seconds``; a failed refresh keeps stale data.
    """

    name = "jupiter"
    timeout_s = 15

    def __init__(self, token_list_url: Optional[str] = None) -> None:
        self._token_list_url = token_list_url or settings.jupiter_token_list_url
        self._tokens: Dict[str, JupiterToken] = {}
        self._cache_loaded: bool = False
        self._cache_lock = asyncio.Lock()
        self._last_refresh: float = 0
        self._cache_ttl_seconds: int = settings.jupiter_cache_ttl_seconds

    async def ready(self) -> bool:
        return bool(self._token_list_url)

    async def health_check(self) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=5) as client:
                resp = await client.get(self._token_list_url)
                resp.raise_for_status()
                return {
                    "status": "healthy",
                    "latency_ms": int(resp.elapsed.total_seconds() * 1000),
                    "cached_tokens": len(self._tokens),
                }
        except Exception as e:
            return {"status": "error", "reason": str(e)}

    async def _ensure_cache(self) -> None:
        async with self._cache_lock:
            now = time.time()
            if self._cache_loaded and (now - self._last_refresh) < self._cache_ttl_seconds:
                return

            try:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    resp = await client.get(self._token_list_url)
                    resp.raise_for_status()
                    tokens_data = resp.json()
            except httpx.HTTPError:
                if not self._cache_loaded:
                    raise
                return

            self._tokens = {}
            for item in tokens_data:
                token = JupiterToken.from_api(item)
                if token.address:
                    self._tokens[token.address] = token

            self._cache_loaded = True
            self._last_refresh = now

    async def get_token_by_mint(self, mint_address: str) -> Optional[JupiterToken]:
        await self._ensure_cache()
        return self._tokens.get(mint_address)

    async def get_decimals(self, mint_address: str) -> Optional[int]:
        if mint_address == NATIVE_SOL_MINT:
            return SOL_DECIMALS
        token = await self.get_token_by_mint(mint_address)
        return token.decimals if token else None

    def clear_cache(self) -> None:
        self._tokens.clear()
        self._cache_loaded = False
        self._last_refresh = 0


# =============================================================================
# Swap Quote and Transaction Building
# =============================================================================


@dataclass
class RoutePlanStep:
    """A single step in the swap route."""
    swap_info: Dict[str, Any]
    percent: int  # Percentage of input going through this route

    @property
    def amm_key(self) -> Optional[str]:
        return self.swap_info.get("ammKey")

    @property
    def label(self) -> Optional[str]:
        return self.swap_info.get("label")


@dataclass
class JupiterQuote:
    """Quote response from Jupiter."""
    input_mint: str
    output_mint: str
    in_amount: int                              # In smallest units (lamports)
    out_amount: int                             # In smallest units
    other_amount_threshold: int                 # Minimum output (with slippage)
    swap_mode: str                              # "ExactIn" or "ExactOut"
    slippage_bps: int
    price_impact_pct: float
    route_plan: List[RoutePlanStep]

    quote_response: Optional[Dict[str, Any]] = None
    fetched_at: float = field(default_factory=time.time)

    @property
    def is_valid(self) -> bool:
        """Quotes older than 30 seconds must be refreshed before swapping."""
        return (time.time() - self.fetched_at) < 30

    @property
    def is_direct(self) -> bool:
        return len(self.route_plan) <= 1

    @property
    def pool_ref(self) -> Optional[str]:
        return self.route_plan[0].amm_key if self.route_plan else None


@dataclass
class JupiterSwapResult:
    """Result of building a swap transaction."""
    swap_transaction: str                       # Base64 encoded transaction
    last_valid_block_height: int
    priority_fee_lamports: int
    compute_unit_limit: int


class JupiterQuoteError(Exception):
    """Failed to get a quote from Jupiter."""
    pass


class JupiterSwapError(Exception):
    """Failed to build swap transaction."""
    pass


class JupiterSwapProvider:
    """
    Jupiter swap provider for Solana token swaps.

    Usage:
        provider = JupiterSwapProvider()

        quote = await provider.get_swap_quote(
            input_mint=NATIVE_SOL_MINT,
            output_mint="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
            amount=100_000_000,  # 0.1 SOL in lamports
            slippage_bps=100,
            only_direct_routes=True,
        )

        swap = await provider.build_swap_transaction(quote, user_public_key="...")
        # swap.swap_transaction is signed and submitted by SolanaRpcProvider.send_versioned
    """

    def __init__(
        self,
        token_provider: Optional[JupiterProvider] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 30.0,
    ):
        self._token_provider = token_provider or JupiterProvider()
        self._base_url = (base_url or settings.jupiter_quote_api_url).rstrip("/")
        self._timeout_s = timeout_s

    @property
    def tokens(self) -> JupiterProvider:
        return self._token_provider

    async def get_swap_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 50,
        swap_mode: str = "ExactIn",
        only_direct_routes: bool = False,
    ) -> JupiterQuote:
        """
        Get a swap quote from Jupiter.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Amount in smallest units (lamports for SOL)
            slippage_bps: Slippage tolerance in basis points (50 = 0.5%)
            swap_mode: "ExactIn" or "ExactOut"
            only_direct_routes: Only use direct routes (no multi-hop)

        Returns:
            JupiterQuote with route and amounts
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
            "swapMode": swap_mode,
            "onlyDirectRoutes": str(only_direct_routes).lower(),
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                response = await client.get(f"{self._base_url}/quote", params=params)
                response.raise_for_status()
                data = response.json()

            if "error" in data:
                raise JupiterQuoteError(f"Jupiter quote error: {data['error']}")

            route_plan = [
                RoutePlanStep(
                    swap_info=step.get("swapInfo", {}),
                    percent=step.get("percent", 100),
                )
                for step in data.get("routePlan", [])
            ]

            return JupiterQuote(
                input_mint=data["inputMint"],
                output_mint=data["outputMint"],
                in_amount=int(data["inAmount"]),
                out_amount=int(data["outAmount"]),
                other_amount_threshold=int(data.get("otherAmountThreshold", data["outAmount"])),
                swap_mode=data.get("swapMode", swap_mode),
                slippage_bps=slippage_bps,
                price_impact_pct=float(data.get("priceImpactPct", 0)),
                route_plan=route_plan,
                quote_response=data,
            )

        except httpx.HTTPStatusError as e:
            raise JupiterQuoteError(f"HTTP error: {e.response.status_code}") from e
        except JupiterQuoteError:
            raise
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise JupiterQuoteError(str(e)) from e

    async def build_swap_transaction(
        self,
        quote: JupiterQuote,
        user_public_key: str,
        wrap_and_unwrap_sol: bool = True,
        priority_level: str = "medium",  # "low", "medium", "high", "veryHigh"
    ) -> JupiterSwapResult:
        """
        Build a swap transaction from a quote.

        Returns:
            JupiterSwapResult with base64 encoded, unsigned transaction
        """
        if not quote.quote_response:
            raise JupiterSwapError("Quote response required for swap transaction")

        if not quote.is_valid:
            raise JupiterSwapError("Quote has expired, please get a new quote")

        payload = {
            "quoteResponse": quote.quote_response,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": wrap_and_unwrap_sol,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": {
                "priorityLevelWithMaxLamports": {
                    "maxLamports": 10_000_000,  # 0.01 SOL max
                    "priorityLevel": priority_level,
                }
            },
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                response = await client.post(f"{self._base_url}/swap", json=payload)
                response.raise_for_status()
                data = response.json()

            if "error" in data:
                raise JupiterSwapError(f"Jupiter swap error: {data['error']}")

            return JupiterSwapResult(
                swap_transaction=data["swapTransaction"],
                last_valid_block_height=data.get("lastValidBlockHeight", 0),
                priority_fee_lamports=data.get("prioritizationFeeLamports", 0),
                compute_unit_limit=data.get("computeUnitLimit", 200_000),
            )

        except httpx.HTTPStatusError as e:
            raise JupiterSwapError(f"HTTP error: {e.response.status_code}") from e
        except JupiterSwapError:
            raise
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise JupiterSwapError(str(e)) from e


# Singleton instances
_jupiter_provider: Optional[JupiterProvider] = None
_jupiter_swap_provider: Optional[JupiterSwapProvider] = None


def get_jupiter_provider() -> JupiterProvider:
    """Get the singleton Jupiter token provider."""
    global _jupiter_provider
    if _jupiter_provider is None:
        _jupiter_provider = JupiterProvider()
    return _jupiter_provider


def get_jupiter_swap_provider() -> JupiterSwapProvider:
    """Get the singleton Jupiter swap provider."""
    global _jupiter_swap_provider
    if _jupiter_swap_provider is None:
        _jupiter_swap_provider = JupiterSwapProvider(
            token_provider=get_jupiter_provider()
        )
    return _jupiter_swap_provider


__all__ = [
    "JupiterProvider",
    "JupiterToken",
    "JupiterSwapProvider",
    "JupiterQuote",
    "JupiterSwapResult",
    "JupiterQuoteError",
    "JupiterSwapError",
    "RoutePlanStep",
    "get_jupiter_provider",
    "get_jupiter_swap_provider",
    "NATIVE_SOL_MINT",
    "SOL_DECIMALS",
]
