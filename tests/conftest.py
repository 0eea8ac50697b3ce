"""Pytest configuration and fixtures."""

from __future__ import annotations

import copy
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any

import pytest

from copytrade_replicator.models import (
    ExecutionResult,
    Network,
    NotificationEvent,
    TokenData,
    TradeRequest,
)
from copytrade_replicator.trading.models import (
    CopySettings,
    Position,
    TrackedWallet,
    TrailingStopEntry,
    WalletStatusRecord,
)

SOURCE_WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
TOKEN = "EPjFWr6bLqVgZ5mN8dT4cR3yH2xK9pQ1sA7uJ6wE5iO"


class InMemoryStore:
    """Dict-backed UserSettingsStore used across the trading tests."""

    def __init__(self) -> None:
        self.tracked: dict[tuple[str, str, Network], bool] = {}
        self.statuses: dict[tuple[str, str], WalletStatusRecord] = {}
        self.settings: dict[tuple[str, str], CopySettings] = {}
        self.positions: dict[tuple[str, str], Position] = {}
        self.daily: dict[tuple[str, date], Decimal] = defaultdict(Decimal)
        self.trades: list[tuple[TradeRequest, ExecutionResult, Decimal]] = []
        self.stops: dict[tuple[str, str], TrailingStopEntry] = {}

    async def list_tracked_wallets(self, network: Network) -> list[TrackedWallet]:
        owners: dict[str, set[str]] = defaultdict(set)
        for user_id, address, net in self.tracked:
            if net == network:
                owners[address].add(user_id)
        return [TrackedWallet(a, network, frozenset(u)) for a, u in owners.items()]

    async def add_tracked_wallet(self, user_id: str, address: str, network: Network) -> None:
        self.tracked[(user_id, address, network)] = True

    async def remove_tracked_wallet(self, user_id: str, address: str, network: Network) -> bool:
        return self.tracked.pop((user_id, address, network), None) is not None

    async def get_wallet_status(self, user_id: str, wallet: str) -> WalletStatusRecord | None:
        return self.statuses.get((user_id, wallet))

    async def save_wallet_status(self, record: WalletStatusRecord) -> None:
        self.statuses[(record.user_id, record.source_wallet)] = record

    async def get_copy_settings(self, user_id: str, source_wallet: str) -> CopySettings:
        return self.settings.get((user_id, source_wallet), CopySettings())

    async def save_copy_settings(
        self, user_id: str, source_wallet: str, settings: CopySettings
    ) -> None:
        self.settings[(user_id, source_wallet)] = settings

    async def get_position(self, user_id: str, token_address: str) -> Position | None:
        position = self.positions.get((user_id, token_address))
        return copy.deepcopy(position) if position else None

    async def save_position(self, position: Position) -> None:
        self.positions[(position.user_id, position.token_address)] = copy.deepcopy(position)

    async def delete_position(self, user_id: str, token_address: str) -> None:
        self.positions.pop((user_id, token_address), None)

    async def list_positions(self, user_id: str | None = None) -> list[Position]:
        return [
            copy.deepcopy(p)
            for p in self.positions.values()
            if user_id is None or p.user_id == user_id
        ]

    async def get_daily_spent(self, user_id: str, day: date) -> Decimal:
        return self.daily[(user_id, day)]

    async def add_daily_spent(self, user_id: str, day: date, amount: Decimal) -> None:
        self.daily[(user_id, day)] += amount

    async def record_trade(
        self, request: TradeRequest, result: ExecutionResult, *, dev_fee: Decimal
    ) -> None:
        self.trades.append((request, result, dev_fee))

    async def list_trailing_stops(self) -> list[TrailingStopEntry]:
        return list(self.stops.values())

    async def save_trailing_stop(self, entry: TrailingStopEntry) -> None:
        self.stops[(entry.user_id, entry.token_address)] = copy.deepcopy(entry)

    async def delete_trailing_stop(self, user_id: str, token_address: str) -> None:
        self.stops.pop((user_id, token_address), None)


class StaticMetadata:
    """Token metadata provider returning fixed data per token."""

    def __init__(self, data: dict[str, TokenData] | None = None) -> None:
        self.data = dict(data or {})
        self.calls: list[tuple[str, Network]] = []

    async def get_token_data(self, token_address: str, network: Network) -> TokenData | None:
        self.calls.append((token_address, network))
        return self.data.get(token_address)


class RecordingNotifier:
    """Notification sink that keeps every event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, NotificationEvent]] = []

    async def notify(self, user_id: str, event: NotificationEvent) -> bool:
        self.events.append((user_id, event))
        return True

    def kinds(self) -> list[str]:
        return [event.kind.value for _, event in self.events]


class FakeExecutor:
    """Executor that fills at a fixed price and records its calls."""

    def __init__(self, price: Decimal = Decimal("0.5"), *, fail: str | None = None) -> None:
        self.price = price
        self.fail = fail
        self.buys: list[tuple[str, dict[str, Any]]] = []
        self.sells: list[tuple[str, dict[str, Any]]] = []

    async def execute_buy(self, user_id: str, params: dict[str, Any]) -> ExecutionResult:
        self.buys.append((user_id, params))
        if self.fail:
            return ExecutionResult.failure(self.fail)
        return ExecutionResult(
            success=True,
            tx_hash=f"buy-{len(self.buys)}",
            tokens_received=params["amount"] / self.price,
            executed_price=self.price,
        )

    async def execute_sell(self, user_id: str, params: dict[str, Any]) -> ExecutionResult:
        self.sells.append((user_id, params))
        if self.fail:
            return ExecutionResult.failure(self.fail)
        sold = params["position_amount"] * params["percentage"] / Decimal("100")
        return ExecutionResult(
            success=True,
            tx_hash=f"sell-{len(self.sells)}",
            tokens_sold=sold,
            executed_price=self.price,
        )


def healthy_token(price: str = "0.5") -> TokenData:
    return TokenData(
        price_usd=Decimal(price),
        market_cap=Decimal("1000000"),
        liquidity=Decimal("100000"),
        buy_tax=Decimal("0"),
        sell_tax=Decimal("0"),
        name="Test Token",
        symbol="TEST",
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def metadata() -> StaticMetadata:
    return StaticMetadata({TOKEN: healthy_token()})


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()
