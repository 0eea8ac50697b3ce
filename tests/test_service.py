"""Tests for the copy-trading service orchestrator."""

from __future__ import annotations

from decimal import Decimal

import pytest
from conftest import (
    SOURCE_WALLET,
    TOKEN,
    FakeExecutor,
    InMemoryStore,
    RecordingNotifier,
    StaticMetadata,
    healthy_token,
)

from copytrade_replicator.config import Settings
from copytrade_replicator.models import (
    Network,
    NotificationKind,
    TradeAction,
    TradeIntent,
    TradeOrigin,
)
from copytrade_replicator.service import CopyTradingService, ServiceState
from copytrade_replicator.trading import ManualTradeParams, TradingState
from copytrade_replicator.trading.models import CopySettings
from copytrade_replicator.trading.trailing_stop import SellRecommendation


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.chdir("/")
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.delenv("REDIS_URL", raising=False)
    return Settings()


@pytest.fixture
async def service(
    settings: Settings,
    store: InMemoryStore,
    metadata: StaticMetadata,
    notifier: RecordingNotifier,
    executor: FakeExecutor,
) -> CopyTradingService:
    svc = CopyTradingService(
        settings,
        store=store,
        executor=executor,
        notifier=notifier,
        metadata=metadata,
        sources={},
    )
    async with svc:
        yield svc


def buy_intent(amount: str = "0.5") -> TradeIntent:
    return TradeIntent(
        source_wallet=SOURCE_WALLET,
        network=Network.SOLANA,
        action=TradeAction.BUY,
        token_address=TOKEN,
        native_amount=Decimal(amount),
        tx_id="sig1",
    )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, settings: Settings, store: InMemoryStore) -> None:
        service = CopyTradingService(
            settings, dry_run=True, store=store, metadata=StaticMetadata(), sources={}
        )
        assert service.state == ServiceState.STOPPED

        await service.start()
        assert service.is_running
        assert service.stats.started_at is not None
        assert service.pollers == []

        with pytest.raises(RuntimeError):
            await service.start()

        await service.stop()
        await service.stop()
        assert service.state == ServiceState.STOPPED

    def test_live_mode_requires_executor(self, settings: Settings) -> None:
        with pytest.raises(ValueError, match="trade executor"):
            CopyTradingService(settings, dry_run=False, store=InMemoryStore())

    def test_components_unavailable_before_start(self, settings: Settings) -> None:
        service = CopyTradingService(settings, store=InMemoryStore(), sources={})

        with pytest.raises(RuntimeError, match="Service is not running"):
            _ = service.replicator


class TestOperations:
    @pytest.mark.asyncio
    async def test_activity_is_replicated_for_each_owner(
        self,
        service: CopyTradingService,
        store: InMemoryStore,
        notifier: RecordingNotifier,
        executor: FakeExecutor,
    ) -> None:
        await service.track_wallet("u2", SOURCE_WALLET, Network.SOLANA)
        await service.track_wallet("u1", SOURCE_WALLET, Network.SOLANA)
        await store.save_copy_settings("u2", SOURCE_WALLET, CopySettings(enabled=False))

        results = await service.on_tracked_activity(buy_intent())

        assert [r.success for r in results] == [True, False]
        assert [user for user, _ in executor.buys] == ["u1"]
        assert service.stats.intents_received == 2
        assert service.stats.replications_succeeded == 1
        assert service.stats.replications_rejected == 1
        assert NotificationKind.TRADE_EXECUTED.value in notifier.kinds()

    @pytest.mark.asyncio
    async def test_untracked_wallet_is_ignored(self, service: CopyTradingService) -> None:
        await service.track_wallet("u1", SOURCE_WALLET, Network.SOLANA)
        assert await service.untrack_wallet("u1", SOURCE_WALLET, Network.SOLANA)

        assert await service.on_tracked_activity(buy_intent()) == []

    @pytest.mark.asyncio
    async def test_paused_wallet_rejects(self, service: CopyTradingService) -> None:
        await service.track_wallet("u1", SOURCE_WALLET, Network.SOLANA)
        await service.set_wallet_status("u1", SOURCE_WALLET, TradingState.PAUSED)

        [result] = await service.on_tracked_activity(buy_intent())

        assert not result.success
        assert result.reason == "Trading paused or stopped for this wallet"

    @pytest.mark.asyncio
    async def test_trailing_stop_sells_whole_position(
        self, service: CopyTradingService, executor: FakeExecutor
    ) -> None:
        await service.track_wallet("u1", SOURCE_WALLET, Network.SOLANA)
        await service.on_tracked_activity(buy_intent())
        await service.add_trailing_stop("u1", TOKEN, Network.SOLANA, Decimal("0.5"), Decimal("20"))

        result = await service._on_trailing_stop(
            SellRecommendation(
                user_id="u1",
                token_address=TOKEN,
                network=Network.SOLANA,
                sell_price=Decimal("0.4"),
                profit_percent=Decimal("-20"),
            )
        )

        assert result.success
        assert result.request.origin == TradeOrigin.TRAILING_STOP
        assert executor.sells[0][1]["percentage"] == Decimal("100")
        assert await service.positions.get("u1", TOKEN) is None
        assert service.stats.trailing_stop_sells == 1
        assert not await service.remove_trailing_stop("u1", TOKEN)

    @pytest.mark.asyncio
    async def test_manual_trade_confirm_and_cancel(
        self, service: CopyTradingService, executor: FakeExecutor
    ) -> None:
        params = ManualTradeParams(
            trade_type=TradeAction.BUY,
            network=Network.SOLANA,
            token_address=TOKEN,
            amount=Decimal("1"),
        )

        staged = await service.stage_manual_trade("u1", params)
        assert staged.success
        assert staged.trade_id is not None

        confirmed = await service.confirm_trade(staged.trade_id)
        assert confirmed.success
        assert len(executor.buys) == 1

        second = await service.stage_manual_trade("u1", params)
        cancelled = await service.cancel_trade(second.trade_id)
        assert cancelled.success
        assert not (await service.confirm_trade(second.trade_id)).success
        assert len(executor.buys) == 1

    @pytest.mark.asyncio
    async def test_closed_position_drops_its_trailing_stop(
        self,
        service: CopyTradingService,
        metadata: StaticMetadata,
        executor: FakeExecutor,
    ) -> None:
        buy = ManualTradeParams(
            trade_type=TradeAction.BUY,
            network=Network.SOLANA,
            token_address=TOKEN,
            amount=Decimal("1"),
        )
        sell = ManualTradeParams(
            trade_type=TradeAction.SELL,
            network=Network.SOLANA,
            token_address=TOKEN,
            sell_percentage=Decimal("100"),
        )
        staged = await service.stage_manual_trade("u1", buy)
        await service.confirm_trade(staged.trade_id)
        await service.add_trailing_stop("u1", TOKEN, Network.SOLANA, Decimal("0.5"), Decimal("20"))

        staged = await service.stage_manual_trade("u1", sell)
        assert (await service.confirm_trade(staged.trade_id)).success
        assert await service.positions.get("u1", TOKEN) is None
        assert not await service.remove_trailing_stop("u1", TOKEN)

        staged = await service.stage_manual_trade("u1", buy)
        await service.confirm_trade(staged.trade_id)
        metadata.data[TOKEN] = healthy_token("0.39")

        assert await service._trailing_stop.check_all() == []
        position = await service.positions.get("u1", TOKEN)
        assert position is not None
        assert position.total_amount == Decimal("1.94")
        assert len(executor.sells) == 1
