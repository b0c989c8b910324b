"""
Tests for the user-facing DCA service.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from dcabot.core.strategies.dca import (
    SOL_MINT,
    DcaError,
    DcaFrequency,
    DcaService,
    DcaStatus,
    DcaUser,
    InMemoryStrategyStore,
    InvalidAmountError,
    InvalidFrequencyError,
    StrategyConflictError,
    StrategyNotFoundError,
    TokenInfo,
    TokenPair,
    TokenPairNotFoundError,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store():
    store = InMemoryStrategyStore()
    store.add_user(DcaUser(id="user_1", telegram_id=1, wallet_pubkey="Wallet1"))
    store.add_token_pair(
        TokenPair(
            id="pair_1",
            base=TokenInfo(symbol="SOL", mint=SOL_MINT, decimals=9),
            target=TokenInfo(symbol="PUMP", mint="9BB6NFEcjBCtnNLFko2FqVQBq8HHM13kCyYcdQbgpump", decimals=6),
        )
    )
    return store


@pytest.fixture
def service(store):
    return DcaService(store)


# =============================================================================
# Creation
# =============================================================================


class TestCreateStrategy:
    """Tests for strategy creation rules."""

    @pytest.mark.asyncio
    async def test_create(self, service):
        before = datetime.now(timezone.utc)

        strategy = await service.create_strategy("user_1", "SOL", "PUMP", "0.1", "weekly")

        assert strategy.status == DcaStatus.ACTIVE
        assert strategy.frequency == DcaFrequency.WEEKLY
        assert strategy.amount_per_interval == 100_000_000
        assert strategy.target.decimals == 6
        assert strategy.next_execution_time >= before + timedelta(weeks=1)
        assert strategy.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_unknown_pair(self, service):
        with pytest.raises(TokenPairNotFoundError):
            await service.create_strategy("user_1", "SOL", "NOPE", "0.1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "0.0000000001", "-1", "abc"])
    async def test_bad_amount(self, service, amount):
        with pytest.raises(InvalidAmountError):
            await service.create_strategy("user_1", "SOL", "PUMP", amount)

    @pytest.mark.asyncio
    async def test_unknown_frequency(self, service, store):
        with pytest.raises(InvalidFrequencyError):
            await service.create_strategy("user_1", "SOL", "PUMP", "0.1", "hourli")

        assert await store.get_user_strategies("user_1") == []

    @pytest.mark.asyncio
    async def test_one_open_strategy_per_pair(self, service):
        first = await service.create_strategy("user_1", "SOL", "PUMP", "0.1")
        await service.pause(first.id)

        with pytest.raises(StrategyConflictError):
            await service.create_strategy("user_1", "SOL", "PUMP", "0.2")

        await service.cancel(first.id)
        second = await service.create_strategy("user_1", "SOL", "PUMP", "0.2")
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_other_users_do_not_conflict(self, service):
        await service.create_strategy("user_1", "SOL", "PUMP", "0.1")
        other = await service.create_strategy("user_2", "SOL", "PUMP", "0.1")

        assert other.user_id == "user_2"


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for pause/resume/cancel transitions."""

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, service, store):
        strategy = await service.create_strategy("user_1", "SOL", "PUMP", "0.1")
        await store.increment_failures(strategy.id, max_failures=3)

        paused = await service.pause(strategy.id)
        assert paused.status == DcaStatus.PAUSED
        assert paused.consecutive_failures == 1

        resumed = await service.resume(strategy.id)
        assert resumed.status == DcaStatus.ACTIVE
        assert resumed.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_pause_requires_active(self, service):
        strategy = await service.create_strategy("user_1", "SOL", "PUMP", "0.1")
        await service.pause(strategy.id)

        with pytest.raises(StrategyConflictError):
            await service.pause(strategy.id)

    @pytest.mark.asyncio
    async def test_resume_requires_paused_or_cancelled(self, service):
        strategy = await service.create_strategy("user_1", "SOL", "PUMP", "0.1")

        with pytest.raises(StrategyConflictError):
            await service.resume(strategy.id)

    @pytest.mark.asyncio
    async def test_resume_cancelled(self, service):
        strategy = await service.create_strategy("user_1", "SOL", "PUMP", "0.1")
        await service.cancel(strategy.id)

        resumed = await service.resume(strategy.id)

        assert resumed.status == DcaStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_resume_cancelled_blocked_by_open_strategy(self, service):
        old = await service.create_strategy("user_1", "SOL", "PUMP", "0.1")
        await service.cancel(old.id)
        await service.create_strategy("user_1", "SOL", "PUMP", "0.2")

        with pytest.raises(StrategyConflictError):
            await service.resume(old.id)

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, service):
        strategy = await service.create_strategy("user_1", "SOL", "PUMP", "0.1")

        first = await service.cancel(strategy.id)
        second = await service.cancel(strategy.id)

        assert second.status == DcaStatus.CANCELLED
        assert second.version == first.version

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, service):
        with pytest.raises(StrategyNotFoundError):
            await service.pause("dca_missing")


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    """Tests for listing and display helpers."""

    @pytest.mark.asyncio
    async def test_list_with_status_filter(self, service, store):
        store.add_token_pair(
            TokenPair(
                id="pair_2",
                base=TokenInfo(symbol="SOL", mint=SOL_MINT, decimals=9),
                target=TokenInfo(symbol="WIF", mint="EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm", decimals=6),
            )
        )
        pump = await service.create_strategy("user_1", "SOL", "PUMP", "0.1")
        await service.create_strategy("user_1", "SOL", "WIF", "0.1", DcaFrequency.HOURLY)
        await service.pause(pump.id)

        assert len(await service.list_strategies("user_1")) == 2
        paused = await service.list_strategies("user_1", status=DcaStatus.PAUSED)
        assert [s.id for s in paused] == [pump.id]
        assert await service.list_strategies("user_2") == []

    @pytest.mark.asyncio
    async def test_empty_history(self, service):
        strategy = await service.create_strategy("user_1", "SOL", "PUMP", "0.1")

        assert await service.get_executions(strategy.id) == []
        assert await service.get_user_executions("user_1") == []

    def test_frequency_display(self, service):
        assert service.frequency_display("hourly") == "Every hour"
        assert service.frequency_display(DcaFrequency.WEEKLY) == "Every week"


# =============================================================================
# Wallets
# =============================================================================


@pytest.fixture
def custody():
    """Custody that mints a fixed key into the user it is handed."""

    def create(user):
        user.wallet_pubkey = "FreshWa11et"
        user.encrypted_private_key = "gAAAAABn-fresh-token"
        return MagicMock(name="keypair")

    custody = MagicMock()
    custody.get_or_create_keypair = MagicMock(side_effect=create)
    return custody


class TestProvisionWallet:
    """Tests for custodial key provisioning."""

    @pytest.mark.asyncio
    async def test_creates_and_persists(self, service, store, custody):
        user = await service.provision_wallet("user_1", custody)

        assert user.wallet_pubkey == "FreshWa11et"
        custody.get_or_create_keypair.assert_called_once()

        stored = await store.get_user("user_1")
        assert stored.wallet_pubkey == "FreshWa11et"
        assert stored.encrypted_private_key == "gAAAAABn-fresh-token"

    @pytest.mark.asyncio
    async def test_existing_key_is_kept(self, service, store, custody):
        store.add_user(
            DcaUser(id="user_2", telegram_id=2, wallet_pubkey="OldWa11et", encrypted_private_key="gAAAAABn-old")
        )

        user = await service.provision_wallet("user_2", custody)

        assert user.wallet_pubkey == "OldWa11et"
        assert user.encrypted_private_key == "gAAAAABn-old"
        custody.get_or_create_keypair.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_user(self, service, custody):
        with pytest.raises(DcaError, match="ghost"):
            await service.provision_wallet("ghost", custody)

        custody.get_or_create_keypair.assert_not_called()
