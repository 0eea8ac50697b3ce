"""TTL-expiring set of transaction ids already dispatched.

Entries older than the TTL are removed by a periodic sweep. A transaction
that is purged and observed again afterwards will be processed again:
replication is at-least-once across TTL expiry, exactly-once within it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable

from copytrade_replicator.models import Network

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 15 * 60


class TxDeduplicator:
    """Remembers ``network:tx_id`` keys with their insertion time."""

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._stop_event = asyncio.Event()
        self._sweep_task: asyncio.Task[None] | None = None

    @staticmethod
    def _key(tx_id: str, network: Network) -> str:
        return f"{network.value}:{tx_id}"

    def __len__(self) -> int:
        return len(self._entries)

    def seen(self, tx_id: str, network: Network) -> bool:
        return self._key(tx_id, network) in self._entries

    def remember(self, tx_id: str, network: Network) -> None:
        self._entries[self._key(tx_id, network)] = self._clock()

    def forget(self, tx_id: str, network: Network) -> None:
        self._entries.pop(self._key(tx_id, network), None)

    def check_and_remember(self, tx_id: str, network: Network) -> bool:
        """Record a transaction id.

        Returns:
            True if the id was new, False if it was already remembered.
            Runs without awaiting, so it is atomic within the event loop.
        """
        key = self._key(tx_id, network)
        if key in self._entries:
            return False
        self._entries[key] = self._clock()
        return True

    def sweep(self) -> int:
        """Drop entries older than the TTL.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [key for key, seen_at in self._entries.items() if now - seen_at > self._ttl]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Cleaned %d old transaction records", len(expired))
        return len(expired)

    async def start(self) -> None:
        """Start the periodic sweep."""
        if self._sweep_task is not None:
            return
        self._stop_event.clear()
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        self._stop_event.set()
        if self._sweep_task:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._sweep_interval)
                    break
                except TimeoutError:
                    pass
                self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Dedup sweep loop error: %s", e)
