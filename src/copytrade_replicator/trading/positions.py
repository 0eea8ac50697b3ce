"""Position bookkeeping.

``apply_buy`` and ``apply_sell`` are pure; ``PositionBook`` serialises
read-modify-write cycles per (user, token) and persists through the store.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from decimal import Decimal

from copytrade_replicator.models import Network, TradeAction
from copytrade_replicator.trading.models import (
    DUST_THRESHOLD,
    Position,
    PositionTrade,
    UserSettingsStore,
)

logger = logging.getLogger(__name__)


class PositionError(Exception):
    """Raised when a position update is not possible."""


@dataclass(frozen=True)
class SellOutcome:
    """Result of applying a sale to a position."""

    position: Position | None
    sold_amount: Decimal
    realized_pnl: Decimal

    @property
    def closed(self) -> bool:
        return self.position is None


def apply_buy(
    position: Position | None,
    *,
    user_id: str,
    token_address: str,
    network: Network,
    amount: Decimal,
    price: Decimal,
    source_wallet: str | None = None,
    tx_hash: str | None = None,
) -> Position:
    """Add ``amount`` tokens bought at ``price`` to a position.

    The average price is volume-weighted over all buys.
    """
    if amount <= 0:
        raise PositionError("Buy amount must be positive")
    trade = PositionTrade(action=TradeAction.BUY, amount=amount, price=price, tx_hash=tx_hash)

    if position is None:
        return Position(
            user_id=user_id,
            token_address=token_address,
            network=network,
            total_amount=amount,
            avg_price=price,
            source_wallet=source_wallet,
            trades=[trade],
        )

    total = position.total_amount + amount
    avg = (position.total_amount * position.avg_price + amount * price) / total
    return replace(
        position,
        total_amount=total,
        avg_price=avg,
        trades=[*position.trades, trade],
    )


def apply_sell(
    position: Position,
    *,
    amount: Decimal,
    price: Decimal,
    tx_hash: str | None = None,
) -> SellOutcome:
    """Remove ``amount`` tokens sold at ``price`` from a position.

    Realised PnL is ``amount * (price - avg_price)``. When the remainder
    falls below the dust threshold the position is closed.

    Raises:
        PositionError: If the amount exceeds the holding.
    """
    if amount <= 0:
        raise PositionError("Sell amount must be positive")
    if amount > position.total_amount:
        raise PositionError("Insufficient token balance")

    pnl = amount * (price - position.avg_price)
    remaining = position.total_amount - amount
    if remaining < DUST_THRESHOLD:
        return SellOutcome(position=None, sold_amount=amount, realized_pnl=pnl)

    trade = PositionTrade(action=TradeAction.SELL, amount=amount, price=price, tx_hash=tx_hash)
    updated = replace(position, total_amount=remaining, trades=[*position.trades, trade])
    return SellOutcome(position=updated, sold_amount=amount, realized_pnl=pnl)


class PositionBook:
    """Persisted positions with per-(user, token) update locks."""

    def __init__(self, store: UserSettingsStore) -> None:
        self._store = store
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _lock(self, user_id: str, token_address: str) -> asyncio.Lock:
        key = (user_id, token_address)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def get(self, user_id: str, token_address: str) -> Position | None:
        return await self._store.get_position(user_id, token_address)

    async def list(self, user_id: str | None = None) -> list[Position]:
        return await self._store.list_positions(user_id)

    async def record_buy(
        self,
        *,
        user_id: str,
        token_address: str,
        network: Network,
        amount: Decimal,
        price: Decimal,
        source_wallet: str | None = None,
        tx_hash: str | None = None,
    ) -> Position:
        async with self._lock(user_id, token_address):
            current = await self._store.get_position(user_id, token_address)
            updated = apply_buy(
                current,
                user_id=user_id,
                token_address=token_address,
                network=network,
                amount=amount,
                price=price,
                source_wallet=source_wallet,
                tx_hash=tx_hash,
            )
            await self._store.save_position(updated)
            logger.debug(
                "Position %s/%s now %s @ %s",
                user_id,
                token_address,
                updated.total_amount,
                updated.avg_price,
            )
            return updated

    async def record_sell(
        self,
        *,
        user_id: str,
        token_address: str,
        amount: Decimal,
        price: Decimal,
        tx_hash: str | None = None,
    ) -> SellOutcome:
        async with self._lock(user_id, token_address):
            current = await self._store.get_position(user_id, token_address)
            if current is None:
                raise PositionError("No position found for this token")
            # Executors may report slightly more than held after rounding.
            outcome = apply_sell(
                current,
                amount=min(amount, current.total_amount),
                price=price,
                tx_hash=tx_hash,
            )
            if outcome.position is None:
                await self._store.delete_position(user_id, token_address)
                logger.info("Position %s/%s closed", user_id, token_address)
            else:
                await self._store.save_position(outcome.position)
            return outcome
