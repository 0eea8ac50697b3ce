"""SQL-backed implementation of the user settings store."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from copytrade_replicator.models import ExecutionResult, Network, TradeRequest
from copytrade_replicator.storage.database import DatabaseManager
from copytrade_replicator.storage.repos import (
    CopySettingsRepository,
    DailySpendRepository,
    ExecutedTradeDTO,
    ExecutedTradeRepository,
    PositionRepository,
    TrackedWalletDTO,
    TrackedWalletRepository,
    TrailingStopRepository,
    WalletStatusRepository,
)
from copytrade_replicator.trading.models import (
    CopySettings,
    Position,
    TrackedWallet,
    TrailingStopEntry,
    WalletStatusRecord,
)


class SqlUserSettingsStore:
    """Opens one session per operation; each call commits on its own."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def list_tracked_wallets(self, network: Network) -> list[TrackedWallet]:
        async with self._db.get_async_session() as session:
            return await TrackedWalletRepository(session).list_for_network(network)

    async def list_user_wallets(self, user_id: str) -> list[TrackedWalletDTO]:
        async with self._db.get_async_session() as session:
            return await TrackedWalletRepository(session).list_for_user(user_id)

    async def add_tracked_wallet(
        self, user_id: str, address: str, network: Network, label: str | None = None
    ) -> None:
        async with self._db.get_async_session() as session:
            await TrackedWalletRepository(session).add(user_id, address, network, label)

    async def remove_tracked_wallet(self, user_id: str, address: str, network: Network) -> bool:
        async with self._db.get_async_session() as session:
            return await TrackedWalletRepository(session).remove(user_id, address, network)

    async def get_wallet_status(self, user_id: str, wallet: str) -> WalletStatusRecord | None:
        async with self._db.get_async_session() as session:
            return await WalletStatusRepository(session).get(user_id, wallet)

    async def save_wallet_status(self, record: WalletStatusRecord) -> None:
        async with self._db.get_async_session() as session:
            await WalletStatusRepository(session).upsert(record)

    async def get_copy_settings(self, user_id: str, source_wallet: str) -> CopySettings:
        async with self._db.get_async_session() as session:
            settings = await CopySettingsRepository(session).get(user_id, source_wallet)
        return settings if settings is not None else CopySettings()

    async def save_copy_settings(
        self, user_id: str, source_wallet: str, settings: CopySettings
    ) -> None:
        async with self._db.get_async_session() as session:
            await CopySettingsRepository(session).upsert(user_id, source_wallet, settings)

    async def get_position(self, user_id: str, token_address: str) -> Position | None:
        async with self._db.get_async_session() as session:
            return await PositionRepository(session).get(user_id, token_address)

    async def save_position(self, position: Position) -> None:
        async with self._db.get_async_session() as session:
            await PositionRepository(session).upsert(position)

    async def delete_position(self, user_id: str, token_address: str) -> None:
        async with self._db.get_async_session() as session:
            await PositionRepository(session).delete(user_id, token_address)

    async def list_positions(self, user_id: str | None = None) -> list[Position]:
        async with self._db.get_async_session() as session:
            return await PositionRepository(session).list(user_id)

    async def get_daily_spent(self, user_id: str, day: date) -> Decimal:
        async with self._db.get_async_session() as session:
            return await DailySpendRepository(session).get(user_id, day)

    async def add_daily_spent(self, user_id: str, day: date, amount: Decimal) -> None:
        async with self._db.get_async_session() as session:
            await DailySpendRepository(session).add(user_id, day, amount)

    async def record_trade(
        self,
        request: TradeRequest,
        result: ExecutionResult,
        *,
        dev_fee: Decimal,
    ) -> None:
        async with self._db.get_async_session() as session:
            await ExecutedTradeRepository(session).insert(request, result, dev_fee=dev_fee)

    async def list_trades(self, user_id: str, *, limit: int = 50) -> list[ExecutedTradeDTO]:
        async with self._db.get_async_session() as session:
            return await ExecutedTradeRepository(session).list_for_user(user_id, limit=limit)

    async def list_trailing_stops(self) -> list[TrailingStopEntry]:
        async with self._db.get_async_session() as session:
            return await TrailingStopRepository(session).list()

    async def save_trailing_stop(self, entry: TrailingStopEntry) -> None:
        async with self._db.get_async_session() as session:
            await TrailingStopRepository(session).upsert(entry)

    async def delete_trailing_stop(self, user_id: str, token_address: str) -> None:
        async with self._db.get_async_session() as session:
            await TrailingStopRepository(session).delete(user_id, token_address)
