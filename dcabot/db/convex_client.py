"""
Convex client for interacting with the Convex database from Python.

This client provides async methods to call Convex queries, mutations, and actions
via the Convex HTTP API, plus the DCA-specific function paths used by
``ConvexStrategyStore``.
"""

import httpx
from typing import Any, Dict, List, Optional

from ..config import settings


class ConvexError(Exception):
    """Base exception for Convex errors."""
    pass


class ConvexAuthError(ConvexError):
    """Authentication error when calling Convex."""
    pass


class ConvexQueryError(ConvexError):
    """Error executing a Convex query."""
    pass


class ConvexMutationError(ConvexError):
    """Error executing a Convex mutation."""
    pass


class ConvexClient:
    """
    Async client for interacting with Convex from Python.

    Example usage:
        client = ConvexClient(
            deployment_url="https://your-deployment.convex.cloud",
            deploy_key="prod:your-deploy-key"
        )

        due = await client.query("dca:getDueStrategies", {"now": 1718000000000})
        await client.mutation("dca:pauseStrategy", {"strategyId": "..."})
    """

    def __init__(
        self,
        deployment_url: Optional[str] = None,
        deploy_key: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.deployment_url = deployment_url or settings.convex_url
        self.deploy_key = deploy_key or settings.convex_deploy_key
        self.timeout = timeout

        if not self.deployment_url:
            raise ConvexError("CONVEX_URL is required")

        self.deployment_url = self.deployment_url.rstrip("/")

        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.deploy_key:
            headers["Authorization"] = f"Convex {self.deploy_key}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.headers,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _call(
        self,
        kind: str,
        function_name: str,
        args: Optional[Dict[str, Any]],
        error_cls: type,
    ) -> Any:
        client = await self._get_client()

        try:
            response = await client.post(
                f"{self.deployment_url}/api/{kind}",
                json={
                    "path": function_name,
                    "args": args or {},
                    "format": "json",
                },
            )

            if response.status_code == 401:
                raise ConvexAuthError("Invalid or missing deploy key")

            response.raise_for_status()
            data = response.json()

            if data.get("status") == "error" or "error" in data:
                raise error_cls(data.get("errorMessage") or data.get("error"))

            return data.get("value")

        except httpx.HTTPStatusError as e:
            raise error_cls(f"{kind.title()} {function_name} failed: {e.response.text}") from e
        except httpx.RequestError as e:
            raise error_cls(f"Request failed: {str(e)}") from e

    async def query(
        self,
        function_name: str,
        args: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Execute a Convex query function.

        Args:
            function_name: The query function path (e.g., "dca:getStrategy")
            args: Arguments to pass to the query function

        Raises:
            ConvexQueryError: If the query fails
        """
        return await self._call("query", function_name, args, ConvexQueryError)

    async def mutation(
        self,
        function_name: str,
        args: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Execute a Convex mutation function.

        Returns:
            The mutation result (usually the created/updated document or ID)

        Raises:
            ConvexMutationError: If the mutation fails
        """
        return await self._call("mutation", function_name, args, ConvexMutationError)

    async def action(
        self,
        function_name: str,
        args: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Execute a Convex action function (may call external services)."""
        return await self._call("action", function_name, args, ConvexError)

    # =========================================================================
    # DCA function paths
    # =========================================================================

    async def get_due_strategies(self, now_ms: int) -> List[Dict[str, Any]]:
        """ACTIVE strategies with nextExecutionTime <= now, each with a ``user``."""
        return await self.query("dca:getDueStrategies", {"now": now_ms}) or []

    async def get_strategy(self, strategy_id: str) -> Optional[Dict[str, Any]]:
        return await self.query("dca:getStrategy", {"strategyId": strategy_id})

    async def list_user_strategies(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.query("dca:getUserStrategies", {"userId": user_id}) or []

    async def get_open_strategy_for_pair(
        self,
        user_id: str,
        base_token: str,
        target_token: str,
    ) -> Optional[Dict[str, Any]]:
        return await self.query(
            "dca:getExistingStrategyForTokenPair",
            {"userId": user_id, "baseToken": base_token, "targetToken": target_token},
        )

    async def insert_strategy(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return await self.mutation("dca:createStrategy", doc)

    async def patch_strategy(
        self,
        strategy_id: str,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        """Apply ``patch``; when ``expected_version`` is set the write is conditional."""
        args: Dict[str, Any] = {"strategyId": strategy_id, "patch": patch}
        if expected_version is not None:
            args["expectedVersion"] = expected_version
        return await self.mutation("dca:patchStrategy", args)

    async def insert_execution(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return await self.mutation("dca:recordExecution", doc)

    async def list_executions(self, strategy_id: str, limit: int) -> List[Dict[str, Any]]:
        return await self.query(
            "dca:getStrategyExecutions",
            {"strategyId": strategy_id, "limit": limit},
        ) or []

    async def list_user_executions(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        return await self.query(
            "dca:getUserExecutions",
            {"userId": user_id, "limit": limit},
        ) or []

    async def get_token_pair(self, base_token: str, target_token: str) -> Optional[Dict[str, Any]]:
        return await self.query(
            "dca:getTokenPairBySymbols",
            {"baseToken": base_token, "targetToken": target_token},
        )

    async def list_active_token_pairs(self) -> List[Dict[str, Any]]:
        return await self.query("dca:getActiveTokenPairs", {}) or []

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.query("users:get", {"userId": user_id})

    async def set_user_wallet(self, user_id: str, wallet_pubkey: str, encrypted_private_key: str) -> Any:
        return await self.mutation(
            "users:setWallet",
            {
                "userId": user_id,
                "walletPubkey": wallet_pubkey,
                "encryptedPrivateKey": encrypted_private_key,
            },
        )


_convex_client: Optional[ConvexClient] = None


def get_convex_client() -> ConvexClient:
    """Get the shared Convex client."""
    global _convex_client
    if _convex_client is None:
        _convex_client = ConvexClient()
    return _convex_client
