"""
Tests for the SOL/USD display price feed.
"""

import httpx
import pytest

from dcabot.providers import price as price_module


class _DummyResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class _DummyClient:
    payload = None
    calls = 0

    def __init__(self, *_, **__):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def get(self, url, params=None):
        _DummyClient.calls += 1
        if isinstance(_DummyClient.payload, Exception):
            raise _DummyClient.payload
        return _DummyResponse(_DummyClient.payload)


@pytest.fixture
def dummy_http(monkeypatch):
    _DummyClient.payload = None
    _DummyClient.calls = 0
    monkeypatch.setattr(price_module.httpx, "AsyncClient", _DummyClient)
    return _DummyClient


@pytest.mark.asyncio
async def test_price_is_cached(dummy_http):
    dummy_http.payload = {"symbol": "SOLUSDT", "price": "150.25000000"}
    provider = price_module.SolPriceProvider(api_url="https://prices.test")

    assert await provider.get_sol_price_usd() == 150.25
    assert await provider.get_sol_price_usd() == 150.25
    assert dummy_http.calls == 1


@pytest.mark.asyncio
async def test_network_error_returns_none(dummy_http):
    dummy_http.payload = httpx.ConnectError("unreachable")
    provider = price_module.SolPriceProvider(api_url="https://prices.test")

    assert await provider.get_sol_price_usd() is None
    assert (await provider.health_check())["status"] == "error"


@pytest.mark.asyncio
async def test_malformed_payload_returns_none(dummy_http):
    dummy_http.payload = {"code": -1121, "msg": "Invalid symbol."}
    provider = price_module.SolPriceProvider(api_url="https://prices.test", symbol="NOPE")

    assert await provider.get_sol_price_usd() is None
