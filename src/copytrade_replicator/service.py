"""Copy-trading service orchestrator.

This module provides the CopyTradingService class that wires together the
chain clients, pollers, replication, confirmation, settlement and trailing
stops, and exposes the operations used by the user-facing surface.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from copytrade_replicator.chain import ChainDataSource, EvmChainClient, SolanaRpcClient
from copytrade_replicator.classifier import TradeClassifier
from copytrade_replicator.config import Settings, get_settings
from copytrade_replicator.metadata import DexScreenerMetadataProvider, TokenMetadataProvider
from copytrade_replicator.models import Network, TradeAction, TradeIntent, TradeOrigin, TradeRequest
from copytrade_replicator.notifier import (
    LoggingNotifier,
    NotificationFormatter,
    NotificationSink,
    TelegramNotifier,
)
from copytrade_replicator.poller import (
    RateLimiterRegistry,
    SlidingWindowRateLimiter,
    TxDeduplicator,
    WalletPoller,
)
from copytrade_replicator.storage import DatabaseManager, SqlUserSettingsStore
from copytrade_replicator.trading import (
    ConfirmationResult,
    CopyReplicator,
    DryRunExecutor,
    ManualTradeParams,
    PositionBook,
    ReplicationResult,
    SellRecommendation,
    TradeConfirmationWorkflow,
    TradeExecutor,
    TradeSettlement,
    TradingState,
    TrailingStopEntry,
    TrailingStopMonitor,
    UserSettingsStore,
    WalletStatusRecord,
    WalletTradingStatus,
)
from copytrade_replicator.trading.settlement import SettlementResult

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    """Service lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class ServiceStats:
    """Statistics for the service."""

    started_at: datetime | None = None
    intents_received: int = 0
    replications_succeeded: int = 0
    replications_rejected: int = 0
    trailing_stop_sells: int = 0
    errors: int = 0
    last_error: str | None = None


class CopyTradingService:
    """Main orchestrator for copy-trade replication.

    Flow:
        WalletPoller -> TradeClassifier -> CopyReplicator
            -> (TradeConfirmationWorkflow) -> TradeSettlement -> Notifier

    Collaborators that are not passed in are built from settings when the
    service starts.

    Example:
        ```python
        from copytrade_replicator.service import CopyTradingService

        async with CopyTradingService() as service:
            await service.track_wallet("12345", "7xKX...", Network.SOLANA)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        store: UserSettingsStore | None = None,
        executor: TradeExecutor | None = None,
        notifier: NotificationSink | None = None,
        metadata: TokenMetadataProvider | None = None,
        sources: Mapping[Network, ChainDataSource] | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: Simulate execution. Overrides settings.dry_run.
            store: Persistence; defaults to the SQL store on settings.database.
            executor: Trade executor; required unless running dry.
            notifier: Notification sink; Telegram when a bot token is set.
            metadata: Token metadata provider; DexScreener by default.
            sources: Chain data sources keyed by network; built from RPC settings.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        if executor is None and not self._dry_run:
            raise ValueError("A trade executor is required when dry_run is disabled")

        self._state = ServiceState.STOPPED
        self._stats = ServiceStats()

        self._store_override = store
        self._executor_override = executor
        self._notifier_override = notifier
        self._metadata_override = metadata
        self._sources_override = dict(sources) if sources is not None else None

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._store: UserSettingsStore | None = None
        self._sources: dict[Network, ChainDataSource] = {}
        self._limiters: RateLimiterRegistry | None = None
        self._dedup: TxDeduplicator | None = None
        self._classifier: TradeClassifier | None = None
        self._status: WalletTradingStatus | None = None
        self._metadata: TokenMetadataProvider | None = None
        self._notifier: NotificationSink | None = None
        self._executor: TradeExecutor | None = None
        self._positions: PositionBook | None = None
        self._settlement: TradeSettlement | None = None
        self._workflow: TradeConfirmationWorkflow | None = None
        self._replicator: CopyReplicator | None = None
        self._trailing_stop: TrailingStopMonitor | None = None
        self._pollers: list[WalletPoller] = []

        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> ServiceState:
        """Current service state."""
        return self._state

    @property
    def stats(self) -> ServiceStats:
        """Current service statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == ServiceState.RUNNING

    @property
    def pollers(self) -> list[WalletPoller]:
        return list(self._pollers)

    @property
    def replicator(self) -> CopyReplicator:
        return self._require(self._replicator)

    @property
    def positions(self) -> PositionBook:
        return self._require(self._positions)

    @property
    def store(self) -> UserSettingsStore:
        return self._require(self._store)

    @staticmethod
    def _require(component: Any) -> Any:
        if component is None:
            raise RuntimeError("Service is not running")
        return component

    async def start(self) -> None:
        """Start the service.

        Raises:
            RuntimeError: If the service is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != ServiceState.STOPPED:
            raise RuntimeError(f"Cannot start service in state {self._state}")

        self._state = ServiceState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting copy-trading service (dry_run=%s)...", self._dry_run)

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = ServiceState.RUNNING
            logger.info("Copy-trading service started")
        except Exception as e:
            self._state = ServiceState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start service: %s", e)
            await self._cleanup()
            self._state = ServiceState.STOPPED
            raise

    async def stop(self) -> None:
        """Stop the service gracefully."""
        if self._state in (ServiceState.STOPPED, ServiceState.STOPPING):
            return

        self._state = ServiceState.STOPPING
        logger.info("Stopping copy-trading service...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = ServiceState.STOPPED
        logger.info("Copy-trading service stopped")

    async def _initialize_components(self) -> None:
        """Initialize all service components."""
        settings = self._settings

        logger.debug("Initializing Redis connection...")
        self._redis = Redis.from_url(settings.redis.url)

        if self._store_override is not None:
            self._store = self._store_override
        else:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager(settings.database.url)
            await self._db_manager.check_connection()
            self._store = SqlUserSettingsStore(self._db_manager)

        if self._sources_override is not None:
            self._sources = dict(self._sources_override)
        else:
            self._sources = self._build_sources()

        rate = settings.rate_limit

        def limiter_for(network: Network) -> SlidingWindowRateLimiter:
            max_requests, window = rate.limits_for(network)
            return SlidingWindowRateLimiter(
                max_requests,
                window,
                name=network.value,
                max_wait=rate.max_wait_seconds,
                max_backoff=rate.max_backoff,
            )

        self._limiters = RateLimiterRegistry(limiter_for)
        self._dedup = TxDeduplicator(
            ttl_seconds=settings.dedup.ttl_seconds,
            sweep_interval_seconds=settings.dedup.sweep_interval_seconds,
        )
        self._classifier = TradeClassifier()
        self._status = WalletTradingStatus(self._store)

        self._metadata = self._metadata_override or DexScreenerMetadataProvider(
            base_url=settings.metadata.dexscreener_url,
            redis=self._redis,
            cache_ttl_seconds=settings.metadata.cache_ttl_seconds,
            timeout_seconds=settings.metadata.request_timeout_seconds,
        )
        self._notifier = self._notifier_override or self._build_notifier()

        if self._executor_override is not None:
            self._executor = self._executor_override
        else:
            logger.info("Dry run enabled; trades are simulated")
            self._executor = DryRunExecutor(self._metadata)

        self._positions = PositionBook(self._store)
        self._settlement = TradeSettlement(
            executor=self._executor,
            positions=self._positions,
            store=self._store,
            notifier=self._notifier,
            metadata=self._metadata,
            dev_fee_percent=settings.replication.dev_fee_percent,
            on_position_closed=self._on_position_closed,
        )
        self._workflow = TradeConfirmationWorkflow(
            self._settlement,
            self._positions,
            timeout_seconds=settings.confirmation.timeout_seconds,
            min_amount=settings.confirmation.min_amount,
            max_amount=settings.confirmation.max_amount,
            supported_networks=settings.replication.supported_networks,
        )
        self._replicator = CopyReplicator(
            store=self._store,
            status=self._status,
            metadata=self._metadata,
            settlement=self._settlement,
            workflow=self._workflow,
            notifier=self._notifier,
            balance_sources=self._sources,
            blacklisted_tokens=settings.replication.blacklisted_tokens,
            emergency_stop=settings.replication.emergency_stop,
        )
        self._trailing_stop = TrailingStopMonitor(
            self._metadata,
            self._on_trailing_stop,
            store=self._store,
            positions=self._positions,
            check_interval_seconds=settings.trailing_stop.check_interval_seconds,
        )

        poller_settings = settings.poller
        for network, source in self._sources.items():
            if network not in settings.replication.supported_networks:
                logger.info("Skipping poller for unsupported network %s", network.value)
                continue
            self._pollers.append(
                WalletPoller(
                    source=source,
                    store=self._store,
                    status=self._status,
                    limiter=self._limiters.get(network),
                    dedup=self._dedup,
                    classifier=self._classifier,
                    dispatch=self._dispatch_intent,
                    interval_seconds=poller_settings.interval_seconds,
                    initial_delay_seconds=poller_settings.initial_delay_seconds,
                    batch_size=poller_settings.batch_size,
                    batch_pause_seconds=poller_settings.batch_pause_seconds,
                    rate_limited_delay_seconds=poller_settings.rate_limited_delay_seconds,
                    storage_error_delay_seconds=poller_settings.storage_error_delay_seconds,
                    error_delay_seconds=poller_settings.error_delay_seconds,
                    error_log_interval_seconds=poller_settings.error_log_interval_seconds,
                )
            )

    def _build_sources(self) -> dict[Network, ChainDataSource]:
        settings = self._settings
        sources: dict[Network, ChainDataSource] = {}

        logger.debug("Initializing Solana client...")
        sources[Network.SOLANA] = SolanaRpcClient(
            settings.solana.rpc_url,
            fallback_rpc_url=settings.solana.fallback_rpc_url,
            redis=self._redis,
            commitment=settings.solana.commitment,
        )
        for network, (rpc_url, fallback) in settings.evm.endpoints().items():
            logger.debug("Initializing %s client...", network.value)
            sources[network] = EvmChainClient(
                network,
                rpc_url,
                fallback_rpc_url=fallback,
                lookback_blocks=settings.evm.lookback_blocks,
            )
        return sources

    def _build_notifier(self) -> NotificationSink:
        formatter = NotificationFormatter()
        telegram = self._settings.telegram
        if telegram.enabled and telegram.bot_token is not None:
            logger.info("Telegram notifications enabled")
            return TelegramNotifier(telegram.bot_token.get_secret_value(), formatter=formatter)
        logger.warning("No Telegram bot token configured; notifications are logged only")
        return LoggingNotifier(formatter)

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._dedup:
            logger.debug("Starting dedup sweep...")
            await self._dedup.start()

        if self._trailing_stop:
            restored = await self._trailing_stop.load()
            if restored:
                logger.info("Restored %d trailing stops", restored)
            await self._trailing_stop.start()

        for poller in self._pollers:
            logger.debug("Starting %s poller...", poller.network.value)
            await poller.start()

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        for poller in self._pollers:
            logger.debug("Stopping %s poller...", poller.network.value)
            await poller.stop()

        if self._trailing_stop:
            await self._trailing_stop.stop()

        if self._replicator:
            await self._replicator.stop()

        if self._workflow:
            self._workflow.clear()

        if self._dedup:
            await self._dedup.stop()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        for source in self._sources.values():
            if self._sources_override is None and hasattr(source, "aclose"):
                await source.aclose()
        self._sources = {}
        self._pollers = []

        for component in (self._metadata, self._notifier):
            owned = component is not None and component not in (
                self._metadata_override,
                self._notifier_override,
            )
            if owned and hasattr(component, "aclose"):
                await component.aclose()

        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def _dispatch_intent(self, user_id: str, intent: TradeIntent) -> ReplicationResult:
        self._stats.intents_received += 1
        try:
            result = await self.replicator.replicate(user_id, intent)
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.exception("Replication of %s for %s failed", intent.tx_id, user_id)
            raise
        if result.success:
            self._stats.replications_succeeded += 1
        else:
            self._stats.replications_rejected += 1
        return result

    async def _on_position_closed(self, user_id: str, token_address: str) -> None:
        if self._trailing_stop is not None and await self._trailing_stop.remove(
            user_id, token_address
        ):
            logger.info("Removed trailing stop for closed position %s/%s", user_id, token_address)

    async def _on_trailing_stop(self, recommendation: SellRecommendation) -> SettlementResult:
        request = TradeRequest(
            user_id=recommendation.user_id,
            trade_type=TradeAction.SELL,
            network=recommendation.network,
            token_address=recommendation.token_address,
            sell_percentage=Decimal("100"),
            origin=TradeOrigin.TRAILING_STOP,
        )
        self._stats.trailing_stop_sells += 1
        return await self._require(self._settlement).settle(request)

    # Exposed operations

    async def on_tracked_activity(self, intent: TradeIntent) -> list[ReplicationResult]:
        """Replicate an intent for every user tracking its source wallet."""
        if not intent.is_actionable:
            return []
        tracked = await self.store.list_tracked_wallets(intent.network)
        owners: frozenset[str] = frozenset()
        for wallet in tracked:
            if wallet.address == intent.source_wallet:
                owners = wallet.owner_user_ids
                break
        return [await self._dispatch_intent(user_id, intent) for user_id in sorted(owners)]

    async def stage_manual_trade(
        self, user_id: str, params: ManualTradeParams
    ) -> ConfirmationResult:
        return await self._require(self._workflow).stage_manual_trade(user_id, params)

    async def confirm_trade(self, trade_id: str) -> ConfirmationResult:
        return await self._require(self._workflow).confirm(trade_id)

    async def cancel_trade(self, trade_id: str) -> ConfirmationResult:
        return await self._require(self._workflow).cancel(trade_id)

    async def set_wallet_status(
        self,
        user_id: str,
        wallet: str,
        state: TradingState,
        resume_at: datetime | None = None,
    ) -> WalletStatusRecord:
        status: WalletTradingStatus = self._require(self._status)
        return await status.set_state(user_id, wallet, state, resume_at)

    async def track_wallet(self, user_id: str, address: str, network: Network) -> None:
        await self.store.add_tracked_wallet(user_id, address, network)
        logger.info("User %s now tracks %s on %s", user_id, address, network.value)

    async def untrack_wallet(self, user_id: str, address: str, network: Network) -> bool:
        removed = await self.store.remove_tracked_wallet(user_id, address, network)
        if removed:
            logger.info("User %s stopped tracking %s on %s", user_id, address, network.value)
        return removed

    async def add_trailing_stop(
        self,
        user_id: str,
        token_address: str,
        network: Network,
        buy_price: Decimal,
        stop_loss_percent: Decimal,
    ) -> TrailingStopEntry:
        monitor: TrailingStopMonitor = self._require(self._trailing_stop)
        return await monitor.add(user_id, token_address, network, buy_price, stop_loss_percent)

    async def remove_trailing_stop(self, user_id: str, token_address: str) -> bool:
        monitor: TrailingStopMonitor = self._require(self._trailing_stop)
        return await monitor.remove(user_id, token_address)

    async def run(self) -> None:
        """Start the service and block until stop() is called."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> CopyTradingService:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
