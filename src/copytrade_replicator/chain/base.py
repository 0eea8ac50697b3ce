"""Chain data source contract and shared client errors."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable

from copytrade_replicator.models import Network, RawTx, TxRef


class ChainClientError(Exception):
    """Base exception for chain client errors."""


class RPCError(ChainClientError):
    """Raised when an RPC call fails after all retries."""


class RateLimitedError(ChainClientError):
    """Raised when the upstream provider rejects a call with a rate limit."""


def is_rate_limit_message(message: str) -> bool:
    """Whether an upstream error message signals throttling."""
    return "429" in message or "Too Many Requests" in message


@runtime_checkable
class ChainDataSource(Protocol):
    """Read-only access to wallet activity on one network.

    Implementations must be safe to call repeatedly and surface failures
    as ``ChainClientError`` subclasses.
    """

    network: Network

    async def list_recent_transactions(self, address: str, limit: int = 1) -> list[TxRef]: ...

    async def get_transaction(self, tx_id: str) -> RawTx | None: ...

    async def get_native_balance(self, address: str) -> Decimal: ...
