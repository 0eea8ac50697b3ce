"""Periodic wallet poller.

One poller runs per network. Each tick loads the tracked wallets, keeps the
owners whose trading status is active, and checks every wallet's most
recent transaction. New transactions are classified and each actionable
intent is dispatched once per active owner.

Example:
    ```python
    poller = WalletPoller(
        source=solana_client,
        store=store,
        status=WalletTradingStatus(store),
        limiter=limiters.get(Network.SOLANA),
        dedup=dedup,
        classifier=TradeClassifier(),
        dispatch=service.dispatch_intent,
    )
    await poller.start()
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from copytrade_replicator.chain.base import (
    ChainDataSource,
    RateLimitedError,
    is_rate_limit_message,
)
from copytrade_replicator.classifier import TradeClassifier
from copytrade_replicator.models import Network, TradeIntent
from copytrade_replicator.poller.dedup import TxDeduplicator
from copytrade_replicator.poller.rate_limiter import SlidingWindowRateLimiter
from copytrade_replicator.trading.models import TrackedWallet, UserSettingsStore
from copytrade_replicator.trading.status import WalletTradingStatus

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_INTERVAL_SECONDS = 45.0
DEFAULT_INITIAL_DELAY_SECONDS = 5.0
DEFAULT_BATCH_SIZE = 2
DEFAULT_BATCH_PAUSE_SECONDS = 2.0
DEFAULT_RATE_LIMITED_DELAY_SECONDS = 30.0
DEFAULT_STORAGE_ERROR_DELAY_SECONDS = 60.0
DEFAULT_ERROR_DELAY_SECONDS = 15.0
DEFAULT_ERROR_LOG_INTERVAL_SECONDS = 60.0

IntentDispatch = Callable[[str, TradeIntent], Awaitable[Any]]


class PollerState(str, Enum):
    """Poller lifecycle states."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


class ErrorClass(str, Enum):
    """Coarse classification of a per-wallet polling failure."""

    RATE_LIMITED = "rate_limited"
    STORAGE = "storage"
    OTHER = "other"


def classify_error(error: BaseException) -> ErrorClass:
    """Map a data source failure to its back-off class."""
    if isinstance(error, RateLimitedError):
        return ErrorClass.RATE_LIMITED
    message = str(error)
    if is_rate_limit_message(message):
        return ErrorClass.RATE_LIMITED
    if "storage" in message.lower():
        return ErrorClass.STORAGE
    return ErrorClass.OTHER


@dataclass
class PollerStats:
    """Statistics for a wallet poller."""

    ticks: int = 0
    wallets_polled: int = 0
    transactions_seen: int = 0
    intents_dispatched: int = 0
    errors: int = 0
    last_tick_at: datetime | None = None
    last_error: str | None = None


class WalletPoller:
    """Polls tracked wallets of one network and dispatches trade intents."""

    def __init__(
        self,
        *,
        source: ChainDataSource,
        store: UserSettingsStore,
        status: WalletTradingStatus,
        limiter: SlidingWindowRateLimiter,
        dedup: TxDeduplicator,
        classifier: TradeClassifier,
        dispatch: IntentDispatch,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        initial_delay_seconds: float = DEFAULT_INITIAL_DELAY_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_pause_seconds: float = DEFAULT_BATCH_PAUSE_SECONDS,
        rate_limited_delay_seconds: float = DEFAULT_RATE_LIMITED_DELAY_SECONDS,
        storage_error_delay_seconds: float = DEFAULT_STORAGE_ERROR_DELAY_SECONDS,
        error_delay_seconds: float = DEFAULT_ERROR_DELAY_SECONDS,
        error_log_interval_seconds: float = DEFAULT_ERROR_LOG_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._source = source
        self._network = source.network
        self._store = store
        self._status = status
        self._limiter = limiter
        self._dedup = dedup
        self._classifier = classifier
        self._dispatch = dispatch

        self._interval = interval_seconds
        self._initial_delay = initial_delay_seconds
        self._batch_size = batch_size
        self._batch_pause = batch_pause_seconds
        self._error_delays = {
            ErrorClass.RATE_LIMITED: rate_limited_delay_seconds,
            ErrorClass.STORAGE: storage_error_delay_seconds,
            ErrorClass.OTHER: error_delay_seconds,
        }
        self._error_log_interval = error_log_interval_seconds
        self._clock = clock

        self._state = PollerState.STOPPED
        self._stats = PollerStats()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._dispatched: set[asyncio.Task[Any]] = set()
        self._last_error_log: dict[str, float] = {}

    @property
    def network(self) -> Network:
        return self._network

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def stats(self) -> PollerStats:
        return self._stats

    async def start(self) -> None:
        """Start the polling loop."""
        if self._state != PollerState.STOPPED:
            return
        self._stop_event.clear()
        self._state = PollerState.RUNNING
        self._task = asyncio.create_task(self._run())
        logger.info("Wallet poller started for %s", self._network.value)

    async def stop(self) -> None:
        """Stop the polling loop.

        Intents already dispatched keep running to completion.
        """
        if self._state == PollerState.STOPPED:
            return
        self._state = PollerState.STOPPING
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._state = PollerState.STOPPED
        logger.info("Wallet poller stopped for %s", self._network.value)

    async def wait_dispatched(self) -> None:
        """Wait for every intent dispatched so far to finish."""
        if self._dispatched:
            await asyncio.gather(*list(self._dispatched), return_exceptions=True)

    async def _run(self) -> None:
        if await self._pause(self._initial_delay):
            return
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("Polling tick failed for %s: %s", self._network.value, e)
            if await self._pause(self._interval):
                break

    async def _pause(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns True when stopping."""
        if seconds <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except TimeoutError:
            return False

    async def poll_once(self) -> int:
        """Run one polling tick.

        Returns:
            Number of intents dispatched.
        """
        self._stats.ticks += 1
        self._stats.last_tick_at = datetime.now(UTC)

        wallets = await self._active_wallets()
        if not wallets:
            return 0

        dispatched = 0
        for start in range(0, len(wallets), self._batch_size):
            if start and await self._pause(self._batch_pause):
                break
            for wallet, owners in wallets[start : start + self._batch_size]:
                dispatched += await self._poll_wallet(wallet, owners)
        return dispatched

    async def _active_wallets(self) -> list[tuple[TrackedWallet, list[str]]]:
        tracked = await self._store.list_tracked_wallets(self._network)
        out: list[tuple[TrackedWallet, list[str]]] = []
        for wallet in tracked:
            owners = [
                user_id
                for user_id in sorted(wallet.owner_user_ids)
                if await self._status.is_active(user_id, wallet.address)
            ]
            if owners:
                out.append((wallet, owners))
        return out

    async def _poll_wallet(self, wallet: TrackedWallet, owners: list[str]) -> int:
        try:
            await self._limiter.throttle()
            refs = await self._source.list_recent_transactions(wallet.address, limit=1)
            self._stats.wallets_polled += 1
            if not refs:
                return 0

            tx_id = refs[0].tx_id
            if not self._dedup.check_and_remember(tx_id, self._network):
                return 0
            self._stats.transactions_seen += 1

            try:
                await self._limiter.throttle()
                raw_tx = await self._source.get_transaction(tx_id)
            except Exception:
                self._dedup.forget(tx_id, self._network)
                raise
            if raw_tx is None:
                self._dedup.forget(tx_id, self._network)
                return 0

            intent = self._classifier.classify(raw_tx, wallet.address)
            if not intent.is_actionable:
                return 0

            logger.info(
                "Detected %s of %s on %s by %s (%s)",
                intent.action.value,
                intent.token_address,
                self._network.value,
                wallet.address,
                tx_id,
            )
            for user_id in owners:
                self._dispatch_intent(user_id, intent)
            return len(owners)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_error(wallet.address, e)
            return 0

    def _dispatch_intent(self, user_id: str, intent: TradeIntent) -> None:
        task = asyncio.create_task(self._dispatch(user_id, intent))
        self._dispatched.add(task)
        task.add_done_callback(self._on_dispatch_done)
        self._stats.intents_dispatched += 1

    def _on_dispatch_done(self, task: asyncio.Task[Any]) -> None:
        self._dispatched.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Intent dispatch failed on %s: %s", self._network.value, error)

    async def _handle_error(self, wallet: str, error: Exception) -> None:
        self._stats.errors += 1
        self._stats.last_error = str(error)
        kind = classify_error(error)
        context = f"{kind.value}:{wallet}"

        now = self._clock()
        last = self._last_error_log.get(context)
        if last is None or now - last >= self._error_log_interval:
            self._last_error_log[context] = now
            logger.warning(
                "Error polling %s wallet %s (%s): %s",
                self._network.value,
                wallet,
                kind.value,
                error,
            )

        delay = self._error_delays[kind]
        if delay > self._error_delays[ErrorClass.OTHER]:
            await self._pause(delay)
