"""Per-user trading records and the settings store contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol

from copytrade_replicator.models import ExecutionResult, Network, TradeAction, TradeRequest

# Positions below this size are considered closed.
DUST_THRESHOLD = Decimal("0.001")


class TradingState(str, Enum):
    """Per-(user, source wallet) trading state."""

    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class WalletStatusRecord:
    """Trading state of one user for one source wallet."""

    user_id: str
    source_wallet: str
    state: TradingState = TradingState.ACTIVE
    resume_at: datetime | None = None


@dataclass(frozen=True)
class TrackedWallet:
    """A source wallet and every user following it on one network."""

    address: str
    network: Network
    owner_user_ids: frozenset[str]


@dataclass(frozen=True)
class AutoBuyChecks:
    """Token eligibility thresholds applied before copying a buy."""

    min_market_cap: Decimal = Decimal("10000")
    max_market_cap: Decimal = Decimal("100000000")
    min_liquidity: Decimal = Decimal("5000")
    buy_tax_limit: Decimal = Decimal("10")
    sell_tax_limit: Decimal = Decimal("10")


@dataclass(frozen=True)
class CopySettings:
    """How one user copies one source wallet."""

    enabled: bool = True
    blind_follow: bool = False
    frontrun: bool = False
    smart_slippage: bool = True
    track_only: bool = False
    multi_buy: bool = True
    auto_execute: bool = True
    copy_sells: bool = True
    slippage: Decimal = Decimal("5")
    buy_percentage: Decimal = Decimal("100")
    max_buy_amount: Decimal = Decimal("1000")
    copy_sell_percentage: Decimal = Decimal("100")
    gas_delta_gwei: Decimal = Decimal("5")
    daily_limit: Decimal | None = None
    auto_buy_checks: AutoBuyChecks = field(default_factory=AutoBuyChecks)
    trading_wallets: dict[Network, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not Decimal("1") <= self.buy_percentage <= Decimal("1000"):
            raise ValueError("buy_percentage must be between 1 and 1000")
        if self.max_buy_amount <= 0:
            raise ValueError("max_buy_amount must be positive")
        if not Decimal("0") < self.copy_sell_percentage <= Decimal("100"):
            raise ValueError("copy_sell_percentage must be in (0, 100]")

    @property
    def requires_confirmation(self) -> bool:
        return not self.blind_follow and not self.auto_execute


@dataclass(frozen=True)
class PositionTrade:
    """One fill recorded against a position."""

    action: TradeAction
    amount: Decimal
    price: Decimal
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    tx_hash: str | None = None


@dataclass
class Position:
    """Open holding of a token by a user."""

    user_id: str
    token_address: str
    network: Network
    total_amount: Decimal
    avg_price: Decimal
    source_wallet: str | None = None
    trades: list[PositionTrade] = field(default_factory=list)
    opened_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class TrailingStopEntry:
    """Trailing stop state for one position."""

    user_id: str
    token_address: str
    network: Network
    buy_price: Decimal
    highest_price: Decimal
    stop_loss_percent: Decimal
    stop_loss_price: Decimal


class UserSettingsStore(Protocol):
    """Persistence for wallet tracking, statuses, settings and positions."""

    async def list_tracked_wallets(self, network: Network) -> list[TrackedWallet]: ...

    async def add_tracked_wallet(self, user_id: str, address: str, network: Network) -> None: ...

    async def remove_tracked_wallet(self, user_id: str, address: str, network: Network) -> bool: ...

    async def get_wallet_status(self, user_id: str, wallet: str) -> WalletStatusRecord | None: ...

    async def save_wallet_status(self, record: WalletStatusRecord) -> None: ...

    async def get_copy_settings(self, user_id: str, source_wallet: str) -> CopySettings: ...

    async def save_copy_settings(
        self, user_id: str, source_wallet: str, settings: CopySettings
    ) -> None: ...

    async def get_position(self, user_id: str, token_address: str) -> Position | None: ...

    async def save_position(self, position: Position) -> None: ...

    async def delete_position(self, user_id: str, token_address: str) -> None: ...

    async def list_positions(self, user_id: str | None = None) -> list[Position]: ...

    async def get_daily_spent(self, user_id: str, day: date) -> Decimal: ...

    async def add_daily_spent(self, user_id: str, day: date, amount: Decimal) -> None: ...

    async def record_trade(
        self,
        request: TradeRequest,
        result: ExecutionResult,
        *,
        dev_fee: Decimal,
    ) -> None: ...

    async def list_trailing_stops(self) -> list[TrailingStopEntry]: ...

    async def save_trailing_stop(self, entry: TrailingStopEntry) -> None: ...

    async def delete_trailing_stop(self, user_id: str, token_address: str) -> None: ...
