"""
Tests for the Jupiter token list and swap providers.
"""

import pytest

from dcabot.providers import jupiter as jup


USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


class _DummyResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class _DummyClient:
    """Stands in for httpx.AsyncClient; replays ``payload`` for every call."""

    payload = None
    requests = []

    def __init__(self, *_, **__):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def get(self, url, params=None):
        _DummyClient.requests.append({"url": url, "params": params})
        return _DummyResponse(_DummyClient.payload)

    async def post(self, url, json):
        _DummyClient.requests.append({"url": url, "json": json})
        return _DummyResponse(_DummyClient.payload)


@pytest.fixture
def dummy_http(monkeypatch):
    _DummyClient.payload = None
    _DummyClient.requests = []
    monkeypatch.setattr(jup.httpx, "AsyncClient", _DummyClient)
    return _DummyClient


def _quote_payload(hops=1, out_amount="123456789"):
    return {
        "inputMint": jup.NATIVE_SOL_MINT,
        "outputMint": USDC,
        "inAmount": "100000000",
        "outAmount": out_amount,
        "otherAmountThreshold": "122222222",
        "swapMode": "ExactIn",
        "priceImpactPct": "0.0123",
        "routePlan": [
            {"swapInfo": {"ammKey": f"Amm{i}", "label": "Whirlpool"}, "percent": 100}
            for i in range(hops)
        ],
    }


# =============================================================================
# Token list
# =============================================================================


class TestJupiterTokenList:
    """Tests for decimals lookups."""

    @pytest.mark.asyncio
    async def test_sol_needs_no_lookup(self, dummy_http):
        provider = jup.JupiterProvider(token_list_url="https://tokens.test")

        assert await provider.get_decimals(jup.NATIVE_SOL_MINT) == 9
        assert dummy_http.requests == []

    @pytest.mark.asyncio
    async def test_decimals_from_list(self, dummy_http):
        dummy_http.payload = [
            {"address": USDC, "symbol": "USDC", "name": "USD Coin", "decimals": 6},
            {"symbol": "NOADDR", "decimals": 3},
        ]
        provider = jup.JupiterProvider(token_list_url="https://tokens.test")

        assert await provider.get_decimals(USDC) == 6
        assert await provider.get_decimals("UnknownMint") is None
        # second lookup served from cache
        assert len(dummy_http.requests) == 1


# =============================================================================
# Swap quotes
# =============================================================================


class TestJupiterSwapQuote:
    """Tests for quote parsing."""

    @pytest.mark.asyncio
    async def test_quote(self, dummy_http):
        dummy_http.payload = _quote_payload()
        provider = jup.JupiterSwapProvider(base_url="https://quote.test/v6/")

        quote = await provider.get_swap_quote(
            jup.NATIVE_SOL_MINT, USDC, 100_000_000, slippage_bps=100, only_direct_routes=True
        )

        request = dummy_http.requests[0]
        assert request["url"] == "https://quote.test/v6/quote"
        assert request["params"]["onlyDirectRoutes"] == "true"
        assert request["params"]["amount"] == "100000000"
        assert quote.out_amount == 123_456_789
        assert quote.other_amount_threshold == 122_222_222
        assert quote.price_impact_pct == pytest.approx(0.0123)
        assert quote.is_direct
        assert quote.is_valid
        assert quote.pool_ref == "Amm0"

    @pytest.mark.asyncio
    async def test_multi_hop_is_not_direct(self, dummy_http):
        dummy_http.payload = _quote_payload(hops=2)
        provider = jup.JupiterSwapProvider(base_url="https://quote.test/v6")

        quote = await provider.get_swap_quote(jup.NATIVE_SOL_MINT, USDC, 100_000_000)

        assert not quote.is_direct

    @pytest.mark.asyncio
    async def test_error_payload(self, dummy_http):
        dummy_http.payload = {"error": "Could not find any route"}
        provider = jup.JupiterSwapProvider(base_url="https://quote.test/v6")

        with pytest.raises(jup.JupiterQuoteError, match="Could not find any route"):
            await provider.get_swap_quote(jup.NATIVE_SOL_MINT, USDC, 100_000_000)

    @pytest.mark.asyncio
    async def test_malformed_payload(self, dummy_http):
        dummy_http.payload = {"inputMint": jup.NATIVE_SOL_MINT}
        provider = jup.JupiterSwapProvider(base_url="https://quote.test/v6")

        with pytest.raises(jup.JupiterQuoteError):
            await provider.get_swap_quote(jup.NATIVE_SOL_MINT, USDC, 100_000_000)


# =============================================================================
# Swap transactions
# =============================================================================


class TestJupiterSwapTransaction:
    """Tests for swap transaction building."""

    @pytest.mark.asyncio
    async def test_build(self, dummy_http):
        dummy_http.payload = _quote_payload()
        provider = jup.JupiterSwapProvider(base_url="https://quote.test/v6")
        quote = await provider.get_swap_quote(jup.NATIVE_SOL_MINT, USDC, 100_000_000)

        dummy_http.payload = {"swapTransaction": "AQID", "lastValidBlockHeight": 1234}
        swap = await provider.build_swap_transaction(quote, user_public_key="User111")

        body = dummy_http.requests[-1]["json"]
        assert body["userPublicKey"] == "User111"
        assert body["quoteResponse"]["outAmount"] == "123456789"
        assert swap.swap_transaction == "AQID"
        assert swap.last_valid_block_height == 1234

    @pytest.mark.asyncio
    async def test_expired_quote(self, dummy_http):
        dummy_http.payload = _quote_payload()
        provider = jup.JupiterSwapProvider(base_url="https://quote.test/v6")
        quote = await provider.get_swap_quote(jup.NATIVE_SOL_MINT, USDC, 100_000_000)
        quote.fetched_at -= 60

        with pytest.raises(jup.JupiterSwapError, match="expired"):
            await provider.build_swap_transaction(quote, user_public_key="User111")
