"""Solana JSON-RPC client with retry, failover and caching.

This module provides the Solana ``ChainDataSource`` used by the wallet
poller:
- JSON-RPC over a pooled ``httpx.AsyncClient``
- Redis caching of confirmed transactions (immutable once confirmed)
- Retry logic with exponential backoff
- Failover to a secondary RPC URL
- Upstream 429 responses surfaced as ``RateLimitedError`` without retrying,
  so the poller can back off
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from decimal import Decimal
from typing import Any

import httpx
from redis.asyncio import Redis

from copytrade_replicator.chain.base import RateLimitedError, RPCError, is_rate_limit_message
from copytrade_replicator.models import Network, RawTx, TxRef

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_TX_CACHE_TTL_SECONDS = 3600
LAMPORTS_PER_SOL = Decimal(10) ** 9


class SolanaRpcClient:
    """Solana data source backed by JSON-RPC.

    Example:
        ```python
        client = SolanaRpcClient("https://api.mainnet-beta.solana.com", redis=redis)
        refs = await client.list_recent_transactions(wallet, limit=1)
        tx = await client.get_transaction(refs[0].tx_id)
        await client.aclose()
        ```
    """

    network = Network.SOLANA

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        redis: Redis | None = None,
        commitment: str = "confirmed",
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        tx_cache_ttl_seconds: int = DEFAULT_TX_CACHE_TTL_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._redis = redis
        self._commitment = commitment
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._tx_cache_ttl = tx_cache_ttl_seconds
        self._http = http_client or httpx.AsyncClient(
            timeout=DEFAULT_REQUEST_TIMEOUT,
            headers={"Content-Type": "application/json"},
        )
        self._owns_http = http_client is None
        self._request_id = 0

        # Track primary RPC health
        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0

        self._cache_prefix = "solana:"

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str, ttl: int) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    def _should_try_primary(self) -> bool:
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _post(self, url: str, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        response = await self._http.post(url, json=payload)
        if response.status_code == 429:
            raise RateLimitedError(f"{method}: 429 Too Many Requests")
        response.raise_for_status()
        body = response.json()
        error = body.get("error")
        if error:
            message = str(error.get("message", error)) if isinstance(error, dict) else str(error)
            if is_rate_limit_message(message):
                raise RateLimitedError(f"{method}: {message}")
            raise RPCError(f"{method}: {message}")
        return body.get("result")

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Execute a JSON-RPC call with retry and failover logic.

        Raises:
            RateLimitedError: If the provider throttles the call.
            RPCError: If all retries and failover fail.
        """
        last_error: Exception | None = None

        urls: list[tuple[str, bool]] = []
        if self._should_try_primary():
            urls.append((self._rpc_url, True))
        if self._fallback_rpc_url:
            urls.append((self._fallback_rpc_url, False))

        for url, is_primary in urls:
            delay = self._retry_delay
            for attempt in range(self._max_retries):
                try:
                    result = await self._post(url, method, params)
                    if is_primary:
                        self._primary_healthy = True
                    elif attempt == 0:
                        logger.info("Fallback RPC succeeded for %s", method)
                    return result
                except RateLimitedError:
                    raise
                except (httpx.HTTPError, RPCError, ValueError) as e:
                    last_error = e
                    logger.warning(
                        "%s RPC %s failed (attempt %d/%d): %s",
                        "Primary" if is_primary else "Fallback",
                        method,
                        attempt + 1,
                        self._max_retries,
                        e,
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(delay)
                        delay *= 2
            if is_primary:
                self._primary_healthy = False
                self._last_primary_check = time.monotonic()

        raise RPCError(f"RPC call {method} failed after all retries: {last_error}")

    async def list_recent_transactions(self, address: str, limit: int = 1) -> list[TxRef]:
        """Most recent signatures for an address, newest first."""
        result = await self._call(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self._commitment}],
        )
        return [TxRef.from_dict(entry) for entry in result or []]

    async def get_transaction(self, tx_id: str) -> RawTx | None:
        """Full transaction by signature, or None when the node has no record."""
        cache_key = f"{self._cache_prefix}tx:{tx_id}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            try:
                return RawTx.from_solana(json.loads(cached))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Failed to parse cached transaction %s: %s", tx_id, e)

        result = await self._call(
            "getTransaction",
            [
                tx_id,
                {
                    "encoding": "json",
                    "commitment": self._commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not result:
            return None

        await self._set_cached(cache_key, json.dumps(result), self._tx_cache_ttl)
        return RawTx.from_solana(result)

    async def get_native_balance(self, address: str) -> Decimal:
        """SOL balance of an address."""
        result = await self._call("getBalance", [address, {"commitment": self._commitment}])
        lamports = result.get("value", 0) if isinstance(result, dict) else result
        return Decimal(int(lamports or 0)) / LAMPORTS_PER_SOL

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()
