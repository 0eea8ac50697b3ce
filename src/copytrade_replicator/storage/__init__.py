"""Storage layer - Database schemas, repositories and the settings store."""

from copytrade_replicator.storage.database import DatabaseManager, async_database_url
from copytrade_replicator.storage.models import (
    Base,
    CopySettingsModel,
    DailySpendModel,
    ExecutedTradeModel,
    PositionModel,
    PositionTradeModel,
    TrackedWalletModel,
    TrailingStopModel,
    WalletStatusModel,
)
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
from copytrade_replicator.storage.store import SqlUserSettingsStore

__all__ = [
    "Base",
    "CopySettingsModel",
    "CopySettingsRepository",
    "DailySpendModel",
    "DailySpendRepository",
    "DatabaseManager",
    "ExecutedTradeDTO",
    "ExecutedTradeModel",
    "ExecutedTradeRepository",
    "PositionModel",
    "PositionRepository",
    "PositionTradeModel",
    "SqlUserSettingsStore",
    "TrackedWalletDTO",
    "TrackedWalletModel",
    "TrackedWalletRepository",
    "TrailingStopModel",
    "TrailingStopRepository",
    "WalletStatusModel",
    "WalletStatusRepository",
    "async_database_url",
]
