"""Trading: status gate, replication, confirmation, settlement and stops."""

from copytrade_replicator.trading.confirmation import (
    ConfirmationResult,
    ManualTradeParams,
    PendingTrade,
    PendingTradeStatus,
    TradeConfirmationWorkflow,
)
from copytrade_replicator.trading.executor import DryRunExecutor, TradeExecutor
from copytrade_replicator.trading.models import (
    AutoBuyChecks,
    CopySettings,
    Position,
    PositionTrade,
    TrackedWallet,
    TradingState,
    TrailingStopEntry,
    UserSettingsStore,
    WalletStatusRecord,
)
from copytrade_replicator.trading.positions import PositionBook, PositionError
from copytrade_replicator.trading.replicator import (
    CopyReplicator,
    FrontrunQueue,
    ReplicationMetrics,
    ReplicationResult,
)
from copytrade_replicator.trading.settlement import SettlementResult, TradeSettlement
from copytrade_replicator.trading.status import WalletTradingStatus
from copytrade_replicator.trading.trailing_stop import SellRecommendation, TrailingStopMonitor

__all__ = [
    "AutoBuyChecks",
    "ConfirmationResult",
    "CopyReplicator",
    "CopySettings",
    "DryRunExecutor",
    "FrontrunQueue",
    "ManualTradeParams",
    "PendingTrade",
    "PendingTradeStatus",
    "Position",
    "PositionBook",
    "PositionError",
    "PositionTrade",
    "ReplicationMetrics",
    "ReplicationResult",
    "SellRecommendation",
    "SettlementResult",
    "TrackedWallet",
    "TradeConfirmationWorkflow",
    "TradeExecutor",
    "TradeSettlement",
    "TradingState",
    "TrailingStopEntry",
    "TrailingStopMonitor",
    "UserSettingsStore",
    "WalletStatusRecord",
    "WalletTradingStatus",
]
