"""Tests for the per-wallet trading status gate."""

from datetime import UTC, datetime, timedelta

import pytest
from conftest import SOURCE_WALLET, InMemoryStore

from copytrade_replicator.trading.models import TradingState
from copytrade_replicator.trading.status import WalletTradingStatus


class TestWalletTradingStatus:
    """Tests for WalletTradingStatus."""

    @pytest.mark.asyncio
    async def test_missing_record_is_active(self, store: InMemoryStore) -> None:
        status = WalletTradingStatus(store)

        assert await status.is_active("u1", SOURCE_WALLET)
        record = await status.get("u1", SOURCE_WALLET)
        assert record.state == TradingState.ACTIVE

    @pytest.mark.asyncio
    async def test_stopped_is_inactive(self, store: InMemoryStore) -> None:
        status = WalletTradingStatus(store)

        await status.stop("u1", SOURCE_WALLET)

        assert not await status.is_active("u1", SOURCE_WALLET)

    @pytest.mark.asyncio
    async def test_pause_until_future_is_inactive(self, store: InMemoryStore) -> None:
        status = WalletTradingStatus(store)

        record = await status.pause("u1", SOURCE_WALLET, duration=timedelta(hours=1))

        assert record.resume_at is not None
        assert not await status.is_active("u1", SOURCE_WALLET)

    @pytest.mark.asyncio
    async def test_expired_pause_resumes(self, store: InMemoryStore) -> None:
        status = WalletTradingStatus(store)
        resume_at = datetime.now(UTC) + timedelta(minutes=5)
        await status.pause("u1", SOURCE_WALLET, resume_at=resume_at)

        later = resume_at + timedelta(seconds=1)
        assert await status.is_active("u1", SOURCE_WALLET, now=later)

        record = await status.get("u1", SOURCE_WALLET)
        assert record.state == TradingState.ACTIVE
        assert record.resume_at is None

    @pytest.mark.asyncio
    async def test_indefinite_pause_stays_inactive(self, store: InMemoryStore) -> None:
        status = WalletTradingStatus(store)
        await status.pause("u1", SOURCE_WALLET)

        far_future = datetime.now(UTC) + timedelta(days=365)
        assert not await status.is_active("u1", SOURCE_WALLET, now=far_future)

    @pytest.mark.asyncio
    async def test_resume_clears_pause(self, store: InMemoryStore) -> None:
        status = WalletTradingStatus(store)
        await status.pause("u1", SOURCE_WALLET, duration=timedelta(hours=1))

        await status.resume("u1", SOURCE_WALLET)

        assert await status.is_active("u1", SOURCE_WALLET)

    @pytest.mark.asyncio
    async def test_resume_at_only_kept_for_pause(self, store: InMemoryStore) -> None:
        status = WalletTradingStatus(store)
        when = datetime.now(UTC) + timedelta(hours=1)

        record = await status.set_state("u1", SOURCE_WALLET, TradingState.STOPPED, when)

        assert record.resume_at is None

    @pytest.mark.asyncio
    async def test_naive_resume_at_rejected(self, store: InMemoryStore) -> None:
        status = WalletTradingStatus(store)

        with pytest.raises(ValueError):
            await status.pause("u1", SOURCE_WALLET, resume_at=datetime(2030, 1, 1))

    @pytest.mark.asyncio
    async def test_pause_rejects_both_deadline_forms(self, store: InMemoryStore) -> None:
        status = WalletTradingStatus(store)

        with pytest.raises(ValueError):
            await status.pause(
                "u1",
                SOURCE_WALLET,
                resume_at=datetime.now(UTC),
                duration=timedelta(minutes=1),
            )

    @pytest.mark.asyncio
    async def test_status_is_per_user(self, store: InMemoryStore) -> None:
        status = WalletTradingStatus(store)

        await status.stop("u1", SOURCE_WALLET)

        assert await status.is_active("u2", SOURCE_WALLET)
