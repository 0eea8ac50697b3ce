"""Sliding-window rate limiter with adaptive backoff.

Bounds outbound polling requests per network. ``throttle()`` never rejects
a caller; it suspends until a slot is free in the window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable

from copytrade_replicator.models import Network

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MARGIN_SECONDS = 1.0
DEFAULT_MAX_WAIT_SECONDS = 30.0
DEFAULT_MAX_BACKOFF = 4.0
DEFAULT_BACKOFF_STEP = 0.5
DEFAULT_DECAY_STEP = 0.1
DEFAULT_LOG_INTERVAL_SECONDS = 30.0

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class SlidingWindowRateLimiter:
    """At most ``max_requests`` throttle returns per ``time_window`` seconds.

    While the window is saturated each wait is stretched by a backoff
    multiplier that grows by ``backoff_step`` (capped at ``max_backoff``);
    calls made under capacity decay it by ``decay_step`` toward 1.

    All state changes happen under one lock, so concurrent callers on the
    same limiter are serialised and cannot under-count the window.
    """

    def __init__(
        self,
        max_requests: int,
        time_window: float,
        *,
        name: str = "",
        margin: float = DEFAULT_MARGIN_SECONDS,
        max_wait: float = DEFAULT_MAX_WAIT_SECONDS,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        backoff_step: float = DEFAULT_BACKOFF_STEP,
        decay_step: float = DEFAULT_DECAY_STEP,
        log_interval: float = DEFAULT_LOG_INTERVAL_SECONDS,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if time_window <= 0:
            raise ValueError("time_window must be > 0")
        self.max_requests = max_requests
        self.time_window = time_window
        self.name = name
        self._margin = margin
        self._max_wait = max_wait
        self._max_backoff = max_backoff
        self._backoff_step = backoff_step
        self._decay_step = decay_step
        self._log_interval = log_interval
        self._clock = clock
        self._sleep = sleep

        self._requests: deque[float] = deque()
        self._backoff = 1.0
        self._last_log: float | None = None
        self._lock = asyncio.Lock()

    @property
    def backoff_multiplier(self) -> float:
        return self._backoff

    @property
    def in_window(self) -> int:
        """Requests currently counted in the window."""
        self._prune(self._clock())
        return len(self._requests)

    def _prune(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= self.time_window:
            self._requests.popleft()

    async def throttle(self) -> float:
        """Wait for a free slot and record the request.

        Returns:
            Seconds spent waiting.
        """
        async with self._lock:
            waited = 0.0
            saturated = False
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._requests) < self.max_requests:
                    break

                saturated = True
                age = now - self._requests[0]
                wait = min((self.time_window - age + self._margin) * self._backoff, self._max_wait)
                if self._last_log is None or now - self._last_log > self._log_interval:
                    logger.info(
                        "Rate limiting %s: waiting %.1fs (backoff: %.1fx)",
                        self.name or "requests",
                        wait,
                        self._backoff,
                    )
                    self._last_log = now
                self._backoff = min(self._max_backoff, self._backoff + self._backoff_step)
                await self._sleep(wait)
                waited += wait

            if not saturated and self._backoff > 1.0:
                self._backoff = max(1.0, self._backoff - self._decay_step)

            self._requests.append(self._clock())
            return waited


class RateLimiterRegistry:
    """Independent limiter per network, created on first use."""

    def __init__(self, factory: Callable[[Network], SlidingWindowRateLimiter]) -> None:
        self._factory = factory
        self._limiters: dict[Network, SlidingWindowRateLimiter] = {}

    def get(self, network: Network) -> SlidingWindowRateLimiter:
        limiter = self._limiters.get(network)
        if limiter is None:
            limiter = self._factory(network)
            self._limiters[network] = limiter
        return limiter

    async def throttle(self, network: Network) -> float:
        return await self.get(network).throttle()
