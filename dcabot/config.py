import os

from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Ensure we pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.solana_rpc_url:
            fallback = os.getenv("SOLANA_RPC_ENDPOINT") or os.getenv("RPC_URL")
            object.__setattr__(
                self,
                "solana_rpc_url",
                fallback or "https://api.mainnet-beta.solana.com",
            )

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="auto",
        description="json, console, or auto (console at DEBUG, json otherwise)",
    )

    # Solana
    solana_rpc_url: str = Field(
        default="",
        description="Solana JSON-RPC endpoint used for balances and submission",
    )
    solana_cluster: str = Field(
        default="mainnet-beta",
        description="Cluster name used when building explorer links",
    )
    solana_confirm_timeout_seconds: int = Field(
        default=30,
        ge=1,
        description="Max seconds to wait for a submitted signature to confirm",
    )

    # Launchpad (bonding curve program)
    launchpad_program_id: str = Field(
        default="3fWbxmqbqFzvewGqJ9iNqyC22RuFhJ8Yof1nEWbgHimF",
        description="Bonding-curve launchpad program id",
    )
    launchpad_treasury: str = Field(
        default="8UoRQ1rBqwgf19vBadmG842k4t6TuqmgcVkEp5S28Rm2",
        description="Fee treasury account passed to buy and sell instructions",
    )
    launchpad_token_decimals: int = Field(
        default=6,
        description="Decimals for every token minted by the launchpad",
    )
    bonding_curve_cache_ttl_seconds: int = Field(
        default=15,
        ge=1,
        description="TTL for the mint -> bonding curve index",
    )

    # Jupiter
    jupiter_quote_api_url: str = Field(
        default="https://quote-api.jup.ag/v6",
        description="Jupiter quote/swap API base URL",
    )
    jupiter_token_list_url: str = Field(
        default="https://token.jup.ag/strict",
        description="Jupiter token list used for decimals lookups",
    )
    jupiter_cache_ttl_seconds: int = Field(
        default=3600,
        description="TTL for Jupiter token list cache (default: 1 hour)",
    )

    # Price feed
    sol_price_api_url: str = Field(
        default="https://api.binance.com/api/v3/ticker/price",
        description="Ticker endpoint used for SOL/USD display pricing",
    )
    sol_price_symbol: str = Field(default="SOLUSDT", description="Ticker symbol for SOL/USD")
    sol_price_cache_ttl_seconds: int = Field(default=60, description="SOL/USD price cache TTL")

    # Convex
    convex_url: str = Field(default="", description="Convex deployment URL")
    convex_deploy_key: str = Field(default="", description="Convex deploy key")

    # Wallet custody
    wallet_encryption_key: str = Field(
        default="",
        description="Fernet key used to decrypt stored user keypairs",
        validation_alias=AliasChoices("wallet_encryption_key", "WALLET_ENCRYPTION_KEY", "ENCRYPTION_KEY"),
    )

    # DCA engine
    dca_tick_interval_seconds: int = Field(
        default=60,
        ge=1,
        description="How often the scheduler polls for due strategies",
    )
    dca_pacing_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Sleep between consecutive strategy executions within a tick",
    )
    dca_fee_buffer_sol: Decimal = Field(
        default=Decimal("0.01"),
        description="Base-token buffer required on top of the purchase amount",
    )
    dca_max_consecutive_failures: int = Field(
        default=3,
        ge=1,
        description="Consecutive failures that auto-pause a strategy",
    )
    dca_default_slippage_bps: int = Field(
        default=100,
        ge=0,
        le=10_000,
        description="Slippage tolerance for scheduled buys (basis points)",
    )
    dca_external_call_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for each quote, balance, or submission call",
    )

    # Agent Runtime
    agent_runtime_enabled: bool = Field(
        default=True,
        description="Start the background agent runtime",
    )
    agent_runtime_default_interval_seconds: int = Field(
        default=60,
        description="Default tick interval for background strategies",
    )
    agent_runtime_tick_timeout_seconds: int = Field(
        default=600,
        ge=1,
        description="Max seconds to allow a strategy tick to run before timing out",
    )

    @property
    def has_convex(self) -> bool:
        return bool(self.convex_url)

    @property
    def has_wallet_key(self) -> bool:
        return bool(self.wallet_encryption_key)

    def explorer_tx_url(self, signature: str) -> str:
        suffix = "" if self.solana_cluster == "mainnet-beta" else f"?cluster={self.solana_cluster}"
        return f"https://solscan.io/tx/{signature}{suffix}"


# Global settings instance
settings = Settings()
