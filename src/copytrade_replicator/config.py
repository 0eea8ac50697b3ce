"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
copy-trade replicator, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from copytrade_replicator.models import Network

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"
_DATABASE_SCHEMES = ("postgresql://", "postgresql+asyncpg://", "sqlite://", "sqlite+aiosqlite://")


def _validate_http_url(v: str | None) -> str | None:
    if v is None:
        return v
    if not v.startswith(("http://", "https://")):
        raise ValueError("RPC URL must be an HTTP(S) endpoint")
    return v


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string (SQLite accepted for local use)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(_DATABASE_SCHEMES):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith("redis://"):
            raise ValueError("REDIS_URL must start with redis://")
        return v


class SolanaSettings(BaseSettings):
    """Solana JSON-RPC settings."""

    model_config = SettingsConfigDict(env_prefix="SOLANA_", extra="ignore")

    rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        alias="SOLANA_RPC_URL",
        description="Primary Solana RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="SOLANA_FALLBACK_RPC_URL",
        description="Fallback Solana RPC endpoint",
    )
    commitment: Literal["processed", "confirmed", "finalized"] = Field(
        default="confirmed",
        alias="SOLANA_COMMITMENT",
        description="Commitment level for signature and transaction queries",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        return _validate_http_url(v)


class EvmSettings(BaseSettings):
    """EVM (Ethereum / BSC) RPC settings."""

    model_config = SettingsConfigDict(env_prefix="EVM_", extra="ignore")

    eth_rpc_url: str | None = Field(
        default=None,
        alias="ETH_RPC_URL",
        description="Ethereum RPC endpoint (polling disabled when unset)",
    )
    eth_fallback_rpc_url: str | None = Field(
        default=None,
        alias="ETH_FALLBACK_RPC_URL",
        description="Fallback Ethereum RPC endpoint",
    )
    bsc_rpc_url: str | None = Field(
        default=None,
        alias="BSC_RPC_URL",
        description="BSC RPC endpoint (polling disabled when unset)",
    )
    bsc_fallback_rpc_url: str | None = Field(
        default=None,
        alias="BSC_FALLBACK_RPC_URL",
        description="Fallback BSC RPC endpoint",
    )
    lookback_blocks: int = Field(
        default=200,
        alias="EVM_LOOKBACK_BLOCKS",
        ge=1,
        le=10_000,
        description="Block range scanned for a wallet's most recent transfer",
    )

    @field_validator("eth_rpc_url", "eth_fallback_rpc_url", "bsc_rpc_url", "bsc_fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        return _validate_http_url(v)

    def endpoints(self) -> dict[Network, tuple[str, str | None]]:
        """Configured EVM networks mapped to (primary, fallback) RPC URLs."""
        out: dict[Network, tuple[str, str | None]] = {}
        if self.eth_rpc_url:
            out[Network.ETHEREUM] = (self.eth_rpc_url, self.eth_fallback_rpc_url)
        if self.bsc_rpc_url:
            out[Network.BSC] = (self.bsc_rpc_url, self.bsc_fallback_rpc_url)
        return out


class PollerSettings(BaseSettings):
    """Wallet polling loop settings."""

    model_config = SettingsConfigDict(env_prefix="POLLER_", extra="ignore")

    interval_seconds: float = Field(
        default=45.0,
        alias="POLLER_INTERVAL_SECONDS",
        ge=1.0,
        le=3600.0,
        description="Seconds between polling ticks per network",
    )
    initial_delay_seconds: float = Field(
        default=5.0,
        alias="POLLER_INITIAL_DELAY_SECONDS",
        ge=0.0,
        le=600.0,
        description="Delay before the first polling tick",
    )
    batch_size: int = Field(
        default=2,
        alias="POLLER_BATCH_SIZE",
        ge=1,
        le=100,
        description="Wallets processed per batch",
    )
    batch_pause_seconds: float = Field(
        default=2.0,
        alias="POLLER_BATCH_PAUSE_SECONDS",
        ge=0.0,
        le=60.0,
        description="Pause between wallet batches",
    )
    rate_limited_delay_seconds: float = Field(
        default=30.0,
        alias="POLLER_RATE_LIMITED_DELAY_SECONDS",
        ge=0.0,
        description="Back-off after an upstream rate-limit error",
    )
    storage_error_delay_seconds: float = Field(
        default=60.0,
        alias="POLLER_STORAGE_ERROR_DELAY_SECONDS",
        ge=0.0,
        description="Back-off after an RPC long-term storage error",
    )
    error_delay_seconds: float = Field(
        default=15.0,
        alias="POLLER_ERROR_DELAY_SECONDS",
        ge=0.0,
        description="Back-off after any other data source error",
    )
    error_log_interval_seconds: float = Field(
        default=60.0,
        alias="POLLER_ERROR_LOG_INTERVAL_SECONDS",
        ge=0.0,
        description="Minimum seconds between repeated error logs per context",
    )


class RateLimitSettings(BaseSettings):
    """Outbound polling request limits per network family."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", extra="ignore")

    solana_max_requests: int = Field(default=2, alias="RATE_LIMIT_SOLANA_MAX_REQUESTS", ge=1)
    solana_window_seconds: float = Field(
        default=15.0, alias="RATE_LIMIT_SOLANA_WINDOW_SECONDS", gt=0.0
    )
    evm_max_requests: int = Field(default=1, alias="RATE_LIMIT_EVM_MAX_REQUESTS", ge=1)
    evm_window_seconds: float = Field(default=20.0, alias="RATE_LIMIT_EVM_WINDOW_SECONDS", gt=0.0)
    max_backoff: float = Field(
        default=4.0,
        alias="RATE_LIMIT_MAX_BACKOFF",
        ge=1.0,
        le=32.0,
        description="Upper bound of the adaptive backoff multiplier",
    )
    max_wait_seconds: float = Field(
        default=30.0,
        alias="RATE_LIMIT_MAX_WAIT_SECONDS",
        gt=0.0,
        description="Longest single throttle wait",
    )

    def limits_for(self, network: Network) -> tuple[int, float]:
        """(max_requests, window_seconds) for a network."""
        if network.is_evm:
            return self.evm_max_requests, self.evm_window_seconds
        return self.solana_max_requests, self.solana_window_seconds


class DedupSettings(BaseSettings):
    """Processed-transaction cache settings."""

    model_config = SettingsConfigDict(env_prefix="DEDUP_", extra="ignore")

    ttl_seconds: float = Field(
        default=30 * 60,
        alias="DEDUP_TTL_SECONDS",
        ge=1.0,
        description="How long a processed transaction id is remembered",
    )
    sweep_interval_seconds: float = Field(
        default=15 * 60,
        alias="DEDUP_SWEEP_INTERVAL_SECONDS",
        ge=1.0,
        description="Interval of the expired-entry sweep",
    )


class ReplicationSettings(BaseSettings):
    """Copy-trade replication settings shared by all users."""

    model_config = SettingsConfigDict(env_prefix="REPLICATION_", extra="ignore")

    dev_fee_percent: Decimal = Field(
        default=Decimal("3"),
        alias="DEV_FEE_PERCENT",
        ge=Decimal("0"),
        le=Decimal("50"),
        description="Fee taken from every executed buy, in percent",
    )
    emergency_stop: bool = Field(
        default=False,
        alias="REPLICATION_EMERGENCY_STOP",
        description="Reject every copy trade while set",
    )
    blacklisted_tokens: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        alias="REPLICATION_BLACKLISTED_TOKENS",
        description="Comma-separated token addresses never copied",
    )
    supported_networks: Annotated[tuple[Network, ...], NoDecode] = Field(
        default=(Network.SOLANA, Network.ETHEREUM, Network.BSC),
        alias="REPLICATION_SUPPORTED_NETWORKS",
        description="Comma-separated networks accepted for trading",
    )

    @field_validator("blacklisted_tokens", mode="before")
    @classmethod
    def _parse_blacklist(cls, v: object) -> tuple[str, ...]:
        if v is None or v == "":
            return ()
        if isinstance(v, str):
            return tuple(p.strip().lower() for p in v.split(",") if p.strip())
        if isinstance(v, (list, tuple)):
            return tuple(str(p).strip().lower() for p in v if str(p).strip())
        raise ValueError("REPLICATION_BLACKLISTED_TOKENS must be a comma-separated list")

    @field_validator("supported_networks", mode="before")
    @classmethod
    def _parse_networks(cls, v: object) -> object:
        if isinstance(v, str):
            return tuple(p.strip().lower() for p in v.split(",") if p.strip())
        return v


class ConfirmationSettings(BaseSettings):
    """Manual / staged trade confirmation settings."""

    model_config = SettingsConfigDict(env_prefix="CONFIRMATION_", extra="ignore")

    timeout_seconds: float = Field(
        default=60.0,
        alias="CONFIRMATION_TIMEOUT_SECONDS",
        gt=0.0,
        le=3600.0,
        description="Seconds a staged trade waits for confirmation",
    )
    min_amount: Decimal = Field(
        default=Decimal("0.0001"),
        alias="CONFIRMATION_MIN_AMOUNT",
        gt=Decimal("0"),
        description="Smallest native amount accepted for a manual buy",
    )
    max_amount: Decimal = Field(
        default=Decimal("1000000"),
        alias="CONFIRMATION_MAX_AMOUNT",
        gt=Decimal("0"),
        description="Largest native amount accepted for a manual buy",
    )


class TrailingStopSettings(BaseSettings):
    """Trailing stop monitor settings."""

    model_config = SettingsConfigDict(env_prefix="TRAILING_STOP_", extra="ignore")

    check_interval_seconds: float = Field(
        default=10.0,
        alias="TRAILING_STOP_CHECK_INTERVAL_SECONDS",
        ge=1.0,
        le=3600.0,
        description="Seconds between trailing stop price checks",
    )


class MetadataSettings(BaseSettings):
    """Token metadata provider settings."""

    model_config = SettingsConfigDict(env_prefix="METADATA_", extra="ignore")

    dexscreener_url: str = Field(
        default="https://api.dexscreener.com/latest",
        alias="DEXSCREENER_API_URL",
        description="DexScreener API base URL",
    )
    cache_ttl_seconds: int = Field(
        default=300,
        alias="METADATA_CACHE_TTL_SECONDS",
        ge=1,
        le=24 * 3600,
        description="Redis TTL for cached token data",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        alias="METADATA_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
    )

    @field_validator("dexscreener_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("DEXSCREENER_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token; user ids are used as chat ids",
    )

    @property
    def enabled(self) -> bool:
        """Check if Telegram notifications are enabled."""
        return self.bot_token is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from copytrade_replicator.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.poller.interval_seconds)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested configuration groups
    #
    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    solana: SolanaSettings = Field(
        default_factory=lambda: SolanaSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    evm: EvmSettings = Field(
        default_factory=lambda: EvmSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    poller: PollerSettings = Field(
        default_factory=lambda: PollerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    rate_limit: RateLimitSettings = Field(
        default_factory=lambda: RateLimitSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    dedup: DedupSettings = Field(
        default_factory=lambda: DedupSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    replication: ReplicationSettings = Field(
        default_factory=lambda: ReplicationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    confirmation: ConfirmationSettings = Field(
        default_factory=lambda: ConfirmationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    trailing_stop: TrailingStopSettings = Field(
        default_factory=lambda: TrailingStopSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    metadata: MetadataSettings = Field(
        default_factory=lambda: MetadataSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=True,
        alias="DRY_RUN",
        description="Simulate execution instead of handing trades to a live executor",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "solana": {
                "rpc_url": self.solana.rpc_url,
                "fallback_rpc_url": self.solana.fallback_rpc_url or "(not set)",
            },
            "evm": {
                "eth_rpc_url": self.evm.eth_rpc_url or "(not set)",
                "bsc_rpc_url": self.evm.bsc_rpc_url or "(not set)",
            },
            "poller": {
                "interval_seconds": str(self.poller.interval_seconds),
                "batch_size": str(self.poller.batch_size),
            },
            "dedup": {
                "ttl_seconds": str(self.dedup.ttl_seconds),
            },
            "replication": {
                "dev_fee_percent": str(self.replication.dev_fee_percent),
                "emergency_stop": str(self.replication.emergency_stop),
                "supported_networks": ",".join(n.value for n in self.replication.supported_networks),
            },
            "confirmation": {
                "timeout_seconds": str(self.confirmation.timeout_seconds),
            },
            "telegram_enabled": str(self.telegram.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
