"""Tests for position bookkeeping."""

import asyncio
from decimal import Decimal

import pytest
from conftest import TOKEN, InMemoryStore

from copytrade_replicator.models import Network, TradeAction
from copytrade_replicator.trading.positions import (
    PositionBook,
    PositionError,
    apply_buy,
    apply_sell,
)


def first_buy(amount: str = "100", price: str = "1"):
    return apply_buy(
        None,
        user_id="u1",
        token_address=TOKEN,
        network=Network.SOLANA,
        amount=Decimal(amount),
        price=Decimal(price),
    )


class TestApplyBuy:
    """Tests for apply_buy."""

    def test_opens_position(self) -> None:
        position = first_buy()

        assert position.total_amount == Decimal("100")
        assert position.avg_price == Decimal("1")
        assert [t.action for t in position.trades] == [TradeAction.BUY]

    def test_average_price_is_volume_weighted(self) -> None:
        position = apply_buy(
            first_buy("100", "1"),
            user_id="u1",
            token_address=TOKEN,
            network=Network.SOLANA,
            amount=Decimal("100"),
            price=Decimal("2"),
        )

        assert position.total_amount == Decimal("200")
        assert position.avg_price == Decimal("1.5")
        assert len(position.trades) == 2

    def test_rejects_non_positive_amount(self) -> None:
        with pytest.raises(PositionError):
            first_buy("0")


class TestApplySell:
    """Tests for apply_sell."""

    def test_partial_sell_keeps_average(self) -> None:
        outcome = apply_sell(first_buy("100", "1"), amount=Decimal("40"), price=Decimal("1.5"))

        assert outcome.position is not None
        assert outcome.position.total_amount == Decimal("60")
        assert outcome.position.avg_price == Decimal("1")
        assert outcome.realized_pnl == Decimal("20")
        assert not outcome.closed

    def test_full_sell_closes(self) -> None:
        outcome = apply_sell(first_buy("100", "1"), amount=Decimal("100"), price=Decimal("0.5"))

        assert outcome.closed
        assert outcome.realized_pnl == Decimal("-50")

    def test_dust_remainder_closes(self) -> None:
        outcome = apply_sell(first_buy("1", "1"), amount=Decimal("0.9995"), price=Decimal("1"))

        assert outcome.closed

    def test_oversell_rejected(self) -> None:
        with pytest.raises(PositionError, match="Insufficient token balance"):
            apply_sell(first_buy("10"), amount=Decimal("11"), price=Decimal("1"))

    def test_non_positive_sell_rejected(self) -> None:
        with pytest.raises(PositionError):
            apply_sell(first_buy("10"), amount=Decimal("0"), price=Decimal("1"))


class TestPositionBook:
    """Tests for PositionBook."""

    @pytest.mark.asyncio
    async def test_buy_then_sell_round_trip(self, store: InMemoryStore) -> None:
        book = PositionBook(store)

        await book.record_buy(
            user_id="u1",
            token_address=TOKEN,
            network=Network.SOLANA,
            amount=Decimal("10"),
            price=Decimal("2"),
        )
        outcome = await book.record_sell(
            user_id="u1", token_address=TOKEN, amount=Decimal("5"), price=Decimal("3")
        )

        assert outcome.realized_pnl == Decimal("5")
        stored = await book.get("u1", TOKEN)
        assert stored is not None
        assert stored.total_amount == Decimal("5")

    @pytest.mark.asyncio
    async def test_closing_sell_deletes_position(self, store: InMemoryStore) -> None:
        book = PositionBook(store)
        await book.record_buy(
            user_id="u1",
            token_address=TOKEN,
            network=Network.SOLANA,
            amount=Decimal("10"),
            price=Decimal("2"),
        )

        # Slight over-report from the executor is capped at the holding.
        outcome = await book.record_sell(
            user_id="u1", token_address=TOKEN, amount=Decimal("10.0001"), price=Decimal("2")
        )

        assert outcome.closed
        assert await book.get("u1", TOKEN) is None
        assert await book.list("u1") == []

    @pytest.mark.asyncio
    async def test_sell_without_position(self, store: InMemoryStore) -> None:
        book = PositionBook(store)

        with pytest.raises(PositionError, match="No position found"):
            await book.record_sell(
                user_id="u1", token_address=TOKEN, amount=Decimal("1"), price=Decimal("1")
            )


class YieldingStore(InMemoryStore):
    """Store that gives up the event loop between read and write."""

    async def get_position(self, user_id: str, token_address: str):
        await asyncio.sleep(0)
        return await super().get_position(user_id, token_address)

    async def save_position(self, position) -> None:
        await asyncio.sleep(0)
        await super().save_position(position)


@pytest.mark.asyncio
async def test_concurrent_buys_are_serialised() -> None:
    store = YieldingStore()
    book = PositionBook(store)
    fills = [("10", "1"), ("20", "2"), ("30", "3"), ("40", "4")]

    await asyncio.gather(
        *(
            book.record_buy(
                user_id="u1",
                token_address=TOKEN,
                network=Network.SOLANA,
                amount=Decimal(amount),
                price=Decimal(price),
            )
            for amount, price in fills
        )
    )

    position = await store.get_position("u1", TOKEN)
    total = sum(Decimal(a) for a, _ in fills)
    cost = sum(Decimal(a) * Decimal(p) for a, p in fills)
    assert position is not None
    assert position.total_amount == total
    assert abs(position.avg_price - cost / total) < Decimal("1e-20")
    assert len(position.trades) == len(fills)
