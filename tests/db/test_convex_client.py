"""
Tests for the Convex HTTP client.
"""

import json

import httpx
import pytest

from dcabot.db import convex_client
from dcabot.db.convex_client import (
    ConvexAuthError,
    ConvexClient,
    ConvexError,
    ConvexMutationError,
    ConvexQueryError,
)


def _client_with(handler):
    client = ConvexClient(deployment_url="https://happy-otter-123.convex.cloud/", deploy_key="prod:key")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler), headers=client.headers)
    return client


def test_requires_deployment_url(monkeypatch):
    monkeypatch.setattr(convex_client.settings, "convex_url", "")

    with pytest.raises(ConvexError):
        ConvexClient(deployment_url="")


@pytest.mark.asyncio
async def test_query_payload():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"status": "success", "value": [{"_id": "dca_1"}]})

    client = _client_with(handler)

    rows = await client.get_due_strategies(1_740_830_400_000)

    assert rows == [{"_id": "dca_1"}]
    assert seen["url"] == "https://happy-otter-123.convex.cloud/api/query"
    assert seen["body"]["path"] == "dca:getDueStrategies"
    assert seen["body"]["args"] == {"now": 1_740_830_400_000}
    assert seen["auth"] == "Convex prod:key"
    await client.close()


@pytest.mark.asyncio
async def test_conditional_patch_args():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "success", "value": None})

    client = _client_with(handler)

    result = await client.patch_strategy("dca_1", {"status": "paused"}, expected_version=4)

    assert result is None
    assert seen["body"]["path"] == "dca:patchStrategy"
    assert seen["body"]["args"] == {"strategyId": "dca_1", "patch": {"status": "paused"}, "expectedVersion": 4}


@pytest.mark.asyncio
async def test_set_user_wallet_args():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "success", "value": None})

    client = _client_with(handler)

    await client.set_user_wallet("user_1", "FreshWa11et", "gAAAAABn-fresh")

    assert seen["url"].endswith("/api/mutation")
    assert seen["body"]["path"] == "users:setWallet"
    assert seen["body"]["args"] == {
        "userId": "user_1",
        "walletPubkey": "FreshWa11et",
        "encryptedPrivateKey": "gAAAAABn-fresh",
    }
    await client.close()


@pytest.mark.asyncio
async def test_error_payload():
    client = _client_with(
        lambda request: httpx.Response(200, json={"status": "error", "errorMessage": "Strategy not found"})
    )

    with pytest.raises(ConvexMutationError, match="Strategy not found"):
        await client.insert_execution({"strategyId": "dca_1"})


@pytest.mark.asyncio
async def test_unauthorized():
    client = _client_with(lambda request: httpx.Response(401))

    with pytest.raises(ConvexAuthError):
        await client.get_strategy("dca_1")


@pytest.mark.asyncio
async def test_server_error():
    client = _client_with(lambda request: httpx.Response(500, text="internal"))

    with pytest.raises(ConvexQueryError, match="internal"):
        await client.list_active_token_pairs()
