from decimal import Decimal

from dcabot.config import Settings


def test_rpc_url_legacy_alias(monkeypatch):
    """RPC URL should load from legacy aliases when the primary is empty."""

    monkeypatch.setenv("SOLANA_RPC_URL", "")
    monkeypatch.setenv("SOLANA_RPC_ENDPOINT", "https://rpc.example.org")

    settings = Settings(_env_file=None)

    assert settings.solana_rpc_url == "https://rpc.example.org"


def test_rpc_url_direct_env(monkeypatch):
    """Environment-provided RPC URL remains the primary source."""

    monkeypatch.setenv("SOLANA_RPC_URL", "https://primary.example.org")
    monkeypatch.setenv("SOLANA_RPC_ENDPOINT", "https://rpc.example.org")

    settings = Settings(_env_file=None)

    assert settings.solana_rpc_url == "https://primary.example.org"


def test_rpc_url_default(monkeypatch):
    for name in ("SOLANA_RPC_URL", "SOLANA_RPC_ENDPOINT", "RPC_URL"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.solana_rpc_url == "https://api.mainnet-beta.solana.com"


def test_wallet_key_alias(monkeypatch):
    monkeypatch.delenv("WALLET_ENCRYPTION_KEY", raising=False)
    monkeypatch.setenv("ENCRYPTION_KEY", "legacy-key")

    settings = Settings(_env_file=None)

    assert settings.wallet_encryption_key == "legacy-key"
    assert settings.has_wallet_key


def test_dca_defaults(monkeypatch):
    for name in ("DCA_FEE_BUFFER_SOL", "DCA_MAX_CONSECUTIVE_FAILURES", "DCA_TICK_INTERVAL_SECONDS", "CONVEX_URL"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.dca_fee_buffer_sol == Decimal("0.01")
    assert settings.dca_max_consecutive_failures == 3
    assert settings.dca_tick_interval_seconds == 60
    assert settings.launchpad_token_decimals == 6
    assert not settings.has_convex


def test_explorer_link_cluster(monkeypatch):
    monkeypatch.setenv("SOLANA_CLUSTER", "devnet")

    settings = Settings(_env_file=None)

    assert settings.explorer_tx_url("abc") == "https://solscan.io/tx/abc?cluster=devnet"


def test_explorer_link_mainnet(monkeypatch):
    monkeypatch.delenv("SOLANA_CLUSTER", raising=False)

    settings = Settings(_env_file=None)

    assert settings.explorer_tx_url("abc") == "https://solscan.io/tx/abc"
