"""Trailing stop-loss monitor.

Each entry tracks the highest price seen since the buy. The stop price
trails it by a fixed percentage and never moves down. When the price falls
to or below the stop, a sell recommendation is emitted and the entry is
removed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from copytrade_replicator.metadata import TokenMetadataProvider
from copytrade_replicator.models import Network
from copytrade_replicator.trading.models import TrailingStopEntry, UserSettingsStore
from copytrade_replicator.trading.positions import PositionBook

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL_SECONDS = 10.0
TRAILING_STOP_REASON = "trailing_stop_loss"
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class SellRecommendation:
    """Emitted when a trailing stop triggers."""

    user_id: str
    token_address: str
    network: Network
    sell_price: Decimal
    profit_percent: Decimal
    reason: str = TRAILING_STOP_REASON


def new_entry(
    user_id: str,
    token_address: str,
    network: Network,
    buy_price: Decimal,
    stop_loss_percent: Decimal,
) -> TrailingStopEntry:
    if buy_price <= 0:
        raise ValueError("buy_price must be positive")
    if not Decimal("0") < stop_loss_percent < HUNDRED:
        raise ValueError("stop_loss_percent must be between 0 and 100")
    return TrailingStopEntry(
        user_id=user_id,
        token_address=token_address,
        network=network,
        buy_price=buy_price,
        highest_price=buy_price,
        stop_loss_percent=stop_loss_percent,
        stop_loss_price=buy_price * (1 - stop_loss_percent / HUNDRED),
    )


def advance(entry: TrailingStopEntry, price: Decimal) -> SellRecommendation | None:
    """Feed a price into an entry, raising its stop if the price made a new high."""
    if price > entry.highest_price:
        entry.highest_price = price
        entry.stop_loss_price = price * (1 - entry.stop_loss_percent / HUNDRED)
        return None
    if price <= entry.stop_loss_price:
        return SellRecommendation(
            user_id=entry.user_id,
            token_address=entry.token_address,
            network=entry.network,
            sell_price=price,
            profit_percent=(price - entry.buy_price) / entry.buy_price * HUNDRED,
        )
    return None


TriggerCallback = Callable[[SellRecommendation], Awaitable[Any]]


class TrailingStopMonitor:
    """Periodically prices every entry and reports triggered stops."""

    def __init__(
        self,
        metadata: TokenMetadataProvider,
        on_trigger: TriggerCallback,
        *,
        store: UserSettingsStore | None = None,
        positions: PositionBook | None = None,
        check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
    ) -> None:
        self._metadata = metadata
        self._on_trigger = on_trigger
        self._store = store
        self._positions = positions
        self._interval = check_interval_seconds
        self._entries: dict[tuple[str, str], TrailingStopEntry] = {}
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, user_id: str, token_address: str) -> TrailingStopEntry | None:
        return self._entries.get((user_id, token_address))

    async def load(self) -> int:
        """Restore persisted entries."""
        if self._store is None:
            return 0
        for entry in await self._store.list_trailing_stops():
            self._entries[(entry.user_id, entry.token_address)] = entry
        return len(self._entries)

    async def add(
        self,
        user_id: str,
        token_address: str,
        network: Network,
        buy_price: Decimal,
        stop_loss_percent: Decimal,
    ) -> TrailingStopEntry:
        entry = new_entry(user_id, token_address, network, buy_price, stop_loss_percent)
        self._entries[(user_id, token_address)] = entry
        if self._store is not None:
            await self._store.save_trailing_stop(entry)
        logger.info(
            "Trailing stop set for %s/%s at %s (%s%%)",
            user_id,
            token_address,
            entry.stop_loss_price,
            stop_loss_percent,
        )
        return entry

    async def remove(self, user_id: str, token_address: str) -> bool:
        entry = self._entries.pop((user_id, token_address), None)
        if entry is not None and self._store is not None:
            await self._store.delete_trailing_stop(user_id, token_address)
        return entry is not None

    async def update_price(
        self, user_id: str, token_address: str, price: Decimal
    ) -> SellRecommendation | None:
        entry = self._entries.get((user_id, token_address))
        if entry is None:
            return None
        previous_stop = entry.stop_loss_price
        recommendation = advance(entry, price)
        if recommendation is not None:
            await self.remove(user_id, token_address)
            logger.info(
                "Trailing stop hit for %s/%s at %s (%.2f%%)",
                user_id,
                token_address,
                price,
                recommendation.profit_percent,
            )
        elif entry.stop_loss_price != previous_stop and self._store is not None:
            await self._store.save_trailing_stop(entry)
        return recommendation

    async def check_all(self) -> list[SellRecommendation]:
        """Price every entry once and hand triggered stops to the callback."""
        triggered: list[SellRecommendation] = []
        for user_id, token_address in list(self._entries):
            entry = self._entries.get((user_id, token_address))
            if entry is None:
                continue
            if self._positions is not None and (
                await self._positions.get(user_id, token_address) is None
            ):
                logger.info(
                    "Dropping trailing stop for %s/%s: position closed", user_id, token_address
                )
                await self.remove(user_id, token_address)
                continue
            data = await self._metadata.get_token_data(token_address, entry.network)
            if data is None or data.price_usd <= 0:
                continue
            recommendation = await self.update_price(user_id, token_address, data.price_usd)
            if recommendation is None:
                continue
            triggered.append(recommendation)
            try:
                await self._on_trigger(recommendation)
            except Exception as e:
                logger.error("Trailing stop sell for %s/%s failed: %s", user_id, token_address, e)
        return triggered

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                    break
                except TimeoutError:
                    pass
                if self._entries:
                    await self.check_all()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Trailing stop check error: %s", e)
