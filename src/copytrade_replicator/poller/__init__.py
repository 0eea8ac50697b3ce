"""Wallet polling: rate limiting, deduplication and the poller loop."""

from copytrade_replicator.poller.dedup import TxDeduplicator
from copytrade_replicator.poller.poller import (
    ErrorClass,
    PollerState,
    PollerStats,
    WalletPoller,
    classify_error,
)
from copytrade_replicator.poller.rate_limiter import (
    RateLimiterRegistry,
    SlidingWindowRateLimiter,
)

__all__ = [
    "ErrorClass",
    "PollerState",
    "PollerStats",
    "RateLimiterRegistry",
    "SlidingWindowRateLimiter",
    "TxDeduplicator",
    "WalletPoller",
    "classify_error",
]
