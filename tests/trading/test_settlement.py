"""Tests for trade settlement."""

from decimal import Decimal

import pytest
from conftest import (
    SOURCE_WALLET,
    TOKEN,
    FakeExecutor,
    InMemoryStore,
    RecordingNotifier,
    StaticMetadata,
)

from copytrade_replicator.models import (
    ExecutionResult,
    Network,
    NotificationKind,
    TradeAction,
    TradeOrigin,
    TradeRequest,
)
from copytrade_replicator.trading.positions import PositionBook
from copytrade_replicator.trading.settlement import TradeSettlement, split_dev_fee


def buy_request(amount: str = "1") -> TradeRequest:
    return TradeRequest(
        user_id="u1",
        trade_type=TradeAction.BUY,
        network=Network.SOLANA,
        token_address=TOKEN,
        amount=Decimal(amount),
        origin=TradeOrigin.COPY,
        source_wallet=SOURCE_WALLET,
    )


def sell_request(percentage: str = "100") -> TradeRequest:
    return TradeRequest(
        user_id="u1",
        trade_type=TradeAction.SELL,
        network=Network.SOLANA,
        token_address=TOKEN,
        sell_percentage=Decimal(percentage),
    )


def make_settlement(store, executor, notifier, metadata) -> TradeSettlement:
    return TradeSettlement(
        executor=executor,
        positions=PositionBook(store),
        store=store,
        notifier=notifier,
        metadata=metadata,
    )


def test_split_dev_fee() -> None:
    assert split_dev_fee(Decimal("2"), Decimal("3")) == (Decimal("0.06"), Decimal("1.94"))


class TestBuySettlement:
    @pytest.mark.asyncio
    async def test_successful_buy_updates_books(
        self,
        store: InMemoryStore,
        executor: FakeExecutor,
        notifier: RecordingNotifier,
        metadata: StaticMetadata,
    ) -> None:
        settlement = make_settlement(store, executor, notifier, metadata)

        result = await settlement.settle(buy_request("1"))

        assert result.success
        assert result.dev_fee == Decimal("0.03")
        assert result.net_amount == Decimal("0.97")
        # The executor is handed the amount after the fee.
        assert executor.buys[0][1]["amount"] == Decimal("0.97")
        assert executor.buys[0][1]["copy_trade"] is True

        position = await store.get_position("u1", TOKEN)
        assert position is not None
        assert position.total_amount == Decimal("1.94")
        assert position.avg_price == Decimal("0.5")
        assert position.source_wallet == SOURCE_WALLET

        assert sum(store.daily.values()) == Decimal("1")
        assert len(store.trades) == 1
        assert store.trades[0][2] == Decimal("0.03")
        assert notifier.kinds() == [NotificationKind.TRADE_EXECUTED.value]

    @pytest.mark.asyncio
    async def test_failed_buy_leaves_books_untouched(
        self,
        store: InMemoryStore,
        notifier: RecordingNotifier,
        metadata: StaticMetadata,
    ) -> None:
        settlement = make_settlement(store, FakeExecutor(fail="slippage exceeded"), notifier, metadata)

        result = await settlement.settle(buy_request())

        assert not result.success
        assert result.execution.error == "slippage exceeded"
        assert store.positions == {}
        assert store.trades == []
        assert sum(store.daily.values()) == Decimal("0")
        assert notifier.kinds() == [NotificationKind.TRADE_FAILED.value]

    @pytest.mark.asyncio
    async def test_executor_exception_becomes_failure(
        self,
        store: InMemoryStore,
        notifier: RecordingNotifier,
        metadata: StaticMetadata,
    ) -> None:
        executor = FakeExecutor()

        async def explode(user_id, params):
            raise ConnectionError("rpc down")

        executor.execute_buy = explode
        settlement = make_settlement(store, executor, notifier, metadata)

        result = await settlement.settle(buy_request())

        assert not result.success
        assert result.execution.error == "rpc down"

    @pytest.mark.asyncio
    async def test_missing_fill_data_uses_market_price(
        self,
        store: InMemoryStore,
        notifier: RecordingNotifier,
        metadata: StaticMetadata,
    ) -> None:
        executor = FakeExecutor()

        async def bare_fill(user_id, params):
            return ExecutionResult(success=True, tx_hash="0xabc")

        executor.execute_buy = bare_fill
        settlement = make_settlement(store, executor, notifier, metadata)

        result = await settlement.settle(buy_request("1"))

        assert result.position is not None
        assert result.position.total_amount == Decimal("1.94")


class TestSellSettlement:
    @pytest.mark.asyncio
    async def test_partial_sell_realizes_pnl(
        self,
        store: InMemoryStore,
        notifier: RecordingNotifier,
        metadata: StaticMetadata,
    ) -> None:
        await settle_buy_at(store, notifier, metadata, price=Decimal("0.5"))
        settlement = make_settlement(store, FakeExecutor(price=Decimal("1")), notifier, metadata)

        result = await settlement.settle(sell_request("50"))

        assert result.success
        assert result.execution.tokens_sold == Decimal("0.97")
        assert result.realized_pnl == Decimal("0.485")
        position = await store.get_position("u1", TOKEN)
        assert position is not None
        assert position.total_amount == Decimal("0.97")
        assert store.trades[-1][2] == Decimal("0")

    @pytest.mark.asyncio
    async def test_full_sell_closes_position(
        self,
        store: InMemoryStore,
        notifier: RecordingNotifier,
        metadata: StaticMetadata,
    ) -> None:
        await settle_buy_at(store, notifier, metadata, price=Decimal("0.5"))
        settlement = make_settlement(store, FakeExecutor(), notifier, metadata)

        result = await settlement.settle(sell_request("100"))

        assert result.success
        assert result.position is None
        assert await store.get_position("u1", TOKEN) is None

    @pytest.mark.asyncio
    async def test_close_hook_only_on_full_sell(
        self,
        store: InMemoryStore,
        notifier: RecordingNotifier,
        metadata: StaticMetadata,
    ) -> None:
        closed: list[tuple[str, str]] = []

        async def on_closed(user_id: str, token_address: str) -> None:
            closed.append((user_id, token_address))

        await settle_buy_at(store, notifier, metadata, price=Decimal("0.5"))
        settlement = TradeSettlement(
            executor=FakeExecutor(),
            positions=PositionBook(store),
            store=store,
            notifier=notifier,
            metadata=metadata,
            on_position_closed=on_closed,
        )

        await settlement.settle(sell_request("50"))
        assert closed == []

        await settlement.settle(sell_request("100"))
        assert closed == [("u1", TOKEN)]

    @pytest.mark.asyncio
    async def test_sell_without_position_fails(
        self,
        store: InMemoryStore,
        executor: FakeExecutor,
        notifier: RecordingNotifier,
        metadata: StaticMetadata,
    ) -> None:
        settlement = make_settlement(store, executor, notifier, metadata)

        result = await settlement.settle(sell_request())

        assert not result.success
        assert result.execution.error == "No position found to sell"
        assert executor.sells == []


async def settle_buy_at(store, notifier, metadata, *, price: Decimal) -> None:
    settlement = make_settlement(store, FakeExecutor(price=price), notifier, metadata)
    await settlement.settle(buy_request("1"))
