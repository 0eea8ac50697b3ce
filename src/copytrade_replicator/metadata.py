"""Token market data from DexScreener with a Redis cache."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Protocol

import httpx
from redis.asyncio import Redis

from copytrade_replicator.models import Network, TokenData, _to_decimal

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_BASE_URL = "https://api.dexscreener.com/latest"
DEFAULT_CACHE_TTL_SECONDS = 300
DEFAULT_TIMEOUT_SECONDS = 10.0

CHAIN_IDS: dict[Network, str] = {
    Network.SOLANA: "solana",
    Network.ETHEREUM: "ethereum",
    Network.BSC: "bsc",
}


class TokenMetadataProvider(Protocol):
    """Market data lookup for a token."""

    async def get_token_data(self, token_address: str, network: Network) -> TokenData | None: ...


def pick_best_pair(pairs: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Pick the most liquid pair."""
    if not pairs:
        return None

    def liquidity(pair: dict[str, Any]) -> Decimal:
        return _to_decimal((pair.get("liquidity") or {}).get("usd")) or Decimal("0")

    return max(pairs, key=liquidity)


def token_data_from_pair(pair: dict[str, Any], *, now: datetime | None = None) -> TokenData:
    """Build ``TokenData`` from a DexScreener pair object."""
    base = pair.get("baseToken") or {}
    age_hours = None
    created_ms = pair.get("pairCreatedAt")
    if created_ms:
        now = now or datetime.now(UTC)
        created = datetime.fromtimestamp(int(created_ms) / 1000, tz=UTC)
        age_hours = max((now - created).total_seconds() / 3600, 0.0)

    market_cap = _to_decimal(pair.get("marketCap"))
    if market_cap is None:
        market_cap = _to_decimal(pair.get("fdv"))

    return TokenData(
        price_usd=_to_decimal(pair.get("priceUsd")) or Decimal("0"),
        market_cap=market_cap or Decimal("0"),
        liquidity=_to_decimal((pair.get("liquidity") or {}).get("usd")) or Decimal("0"),
        age_hours=age_hours,
        name=base.get("name"),
        symbol=base.get("symbol"),
        volume_24h=_to_decimal((pair.get("volume") or {}).get("h24")),
        price_change_24h=_to_decimal((pair.get("priceChange") or {}).get("h24")),
    )


class DexScreenerMetadataProvider:
    """TokenMetadataProvider backed by the DexScreener token endpoint.

    Lookups are cached in Redis for ``cache_ttl_seconds``. Upstream failures
    are logged and reported as missing data.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._cache_prefix = "token_data:"

    def _cache_key(self, token_address: str, network: Network) -> str:
        return f"{self._cache_prefix}{network.value}:{token_address}"

    async def _get_cached(self, key: str) -> TokenData | None:
        if not self._redis:
            return None
        try:
            cached = await self._redis.get(key)
            if cached is None:
                return None
            data = json.loads(cached if isinstance(cached, str) else cached.decode())
            return TokenData.from_dict(data)
        except Exception as e:
            logger.warning("Token data cache read failed: %s", e)
            return None

    async def _cache(self, key: str, data: TokenData) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(data.to_dict()), ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Token data cache write failed: %s", e)

    async def _fetch_pairs(self, token_address: str, network: Network) -> list[dict[str, Any]]:
        url = f"{self._base_url}/dex/tokens/{token_address}"
        try:
            response = await self._http.get(url)
            if response.status_code != 200:
                logger.warning(
                    "DexScreener returned %d for %s", response.status_code, token_address
                )
                return []
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("DexScreener failed for %s: %s", token_address, e)
            return []
        pairs = payload.get("pairs") or []
        chain_id = CHAIN_IDS[network]
        return [p for p in pairs if p.get("chainId") == chain_id]

    async def get_token_data(self, token_address: str, network: Network) -> TokenData | None:
        key = self._cache_key(token_address, network)
        cached = await self._get_cached(key)
        if cached is not None:
            return cached

        pair = pick_best_pair(await self._fetch_pairs(token_address, network))
        if pair is None:
            return None
        data = token_data_from_pair(pair)
        await self._cache(key, data)
        return data

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
