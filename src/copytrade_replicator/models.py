"""Shared value types for the replication pipeline.

These are the records that flow between the poller, the classifier, the
replicator, the confirmation workflow and the external collaborators
(chain data sources, token metadata, trade execution, notifications).
"""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

UNKNOWN_TOKEN = "Unknown"


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (ArithmeticError, ValueError):
        return None


class Network(str, Enum):
    """Supported blockchain networks."""

    SOLANA = "solana"
    ETHEREUM = "ethereum"
    BSC = "bsc"

    @property
    def is_evm(self) -> bool:
        return self in (Network.ETHEREUM, Network.BSC)

    @property
    def native_decimals(self) -> int:
        return 9 if self == Network.SOLANA else 18

    @property
    def native_symbol(self) -> str:
        if self == Network.SOLANA:
            return "SOL"
        if self == Network.ETHEREUM:
            return "ETH"
        return "BNB"


class TradeAction(str, Enum):
    """Direction of a trade as inferred or requested."""

    BUY = "buy"
    SELL = "sell"
    UNKNOWN = "unknown"


class TradeOrigin(str, Enum):
    """Where a trade request came from."""

    COPY = "copy"
    MANUAL = "manual"
    TRAILING_STOP = "trailing_stop"


@dataclass(frozen=True)
class TxRef:
    """Reference to a transaction returned by a recent-activity listing."""

    tx_id: str
    slot: int | None = None
    block_time: datetime | None = None
    failed: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TxRef:
        """Create a TxRef from a `getSignaturesForAddress` entry."""
        block_time = None
        raw_time = data.get("blockTime")
        if raw_time is not None:
            with contextlib.suppress(TypeError, ValueError, OverflowError):
                block_time = datetime.fromtimestamp(int(raw_time), tz=UTC)
        slot = data.get("slot")
        return cls(
            tx_id=str(data["signature"]),
            slot=int(slot) if slot is not None else None,
            block_time=block_time,
            failed=data.get("err") is not None,
        )


@dataclass(frozen=True)
class TokenBalance:
    """Token balance of one account before or after a transaction."""

    mint: str
    owner: str | None
    amount: Decimal
    account_index: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenBalance:
        """Create a TokenBalance from a Solana `preTokenBalances` entry."""
        ui = data.get("uiTokenAmount") or {}
        amount = _to_decimal(ui.get("uiAmountString"))
        if amount is None:
            amount = _to_decimal(ui.get("uiAmount")) or Decimal("0")
        index = data.get("accountIndex")
        return cls(
            mint=str(data.get("mint", "")),
            owner=data.get("owner"),
            amount=amount,
            account_index=int(index) if index is not None else None,
        )


@dataclass(frozen=True)
class RawTx:
    """Chain-agnostic view of a confirmed transaction.

    Native balances are in the smallest unit (lamports / wei) and are
    aligned with ``account_keys`` by index.
    """

    tx_id: str
    network: Network
    account_keys: tuple[str, ...]
    pre_balances: tuple[int, ...]
    post_balances: tuple[int, ...]
    pre_token_balances: tuple[TokenBalance, ...] = ()
    post_token_balances: tuple[TokenBalance, ...] = ()
    failed: bool = False
    block_time: datetime | None = None
    gas_price_gwei: Decimal | None = None

    @classmethod
    def from_solana(cls, data: dict[str, Any]) -> RawTx:
        """Create a RawTx from a Solana `getTransaction` (json encoding) result."""
        meta = data.get("meta") or {}
        transaction = data.get("transaction") or {}
        message = transaction.get("message") or {}

        keys: list[str] = []
        for key in message.get("accountKeys") or []:
            # jsonParsed encoding returns objects, json encoding returns strings
            keys.append(str(key.get("pubkey")) if isinstance(key, dict) else str(key))
        loaded = meta.get("loadedAddresses") or {}
        keys.extend(str(k) for k in loaded.get("writable") or [])
        keys.extend(str(k) for k in loaded.get("readonly") or [])

        signatures = transaction.get("signatures") or []
        block_time = None
        if data.get("blockTime") is not None:
            with contextlib.suppress(TypeError, ValueError, OverflowError):
                block_time = datetime.fromtimestamp(int(data["blockTime"]), tz=UTC)

        return cls(
            tx_id=str(signatures[0]) if signatures else "",
            network=Network.SOLANA,
            account_keys=tuple(keys),
            pre_balances=tuple(int(b) for b in meta.get("preBalances") or []),
            post_balances=tuple(int(b) for b in meta.get("postBalances") or []),
            pre_token_balances=tuple(
                TokenBalance.from_dict(b) for b in meta.get("preTokenBalances") or []
            ),
            post_token_balances=tuple(
                TokenBalance.from_dict(b) for b in meta.get("postTokenBalances") or []
            ),
            failed=meta.get("err") is not None,
            block_time=block_time,
        )


@dataclass(frozen=True)
class TradeIntent:
    """A classified trade observed on a source wallet.

    Derived per transaction and never persisted. Intents with
    ``TradeAction.UNKNOWN`` must be dropped before replication.
    """

    source_wallet: str
    network: Network
    action: TradeAction
    token_address: str
    native_amount: Decimal
    tx_id: str
    observed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    gas_price_gwei: Decimal | None = None
    mempool_origin: str | None = None
    tx_verified: bool | None = None
    mev_risk: float | None = None

    @property
    def is_actionable(self) -> bool:
        return self.action != TradeAction.UNKNOWN

    @classmethod
    def unknown(cls, raw_tx: RawTx, wallet: str) -> TradeIntent:
        return cls(
            source_wallet=wallet,
            network=raw_tx.network,
            action=TradeAction.UNKNOWN,
            token_address=UNKNOWN_TOKEN,
            native_amount=Decimal("0"),
            tx_id=raw_tx.tx_id,
        )


@dataclass(frozen=True)
class TokenData:
    """Market data for a token as reported by the metadata provider."""

    price_usd: Decimal
    market_cap: Decimal
    liquidity: Decimal
    buy_tax: Decimal | None = None
    sell_tax: Decimal | None = None
    age_hours: float | None = None
    verified: bool | None = None
    name: str | None = None
    symbol: str | None = None
    volume_24h: Decimal | None = None
    price_change_24h: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for caching."""
        return {
            "price_usd": str(self.price_usd),
            "market_cap": str(self.market_cap),
            "liquidity": str(self.liquidity),
            "buy_tax": str(self.buy_tax) if self.buy_tax is not None else None,
            "sell_tax": str(self.sell_tax) if self.sell_tax is not None else None,
            "age_hours": self.age_hours,
            "verified": self.verified,
            "name": self.name,
            "symbol": self.symbol,
            "volume_24h": str(self.volume_24h) if self.volume_24h is not None else None,
            "price_change_24h": (
                str(self.price_change_24h) if self.price_change_24h is not None else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenData:
        """Deserialize from a cached dict."""
        return cls(
            price_usd=_to_decimal(data.get("price_usd")) or Decimal("0"),
            market_cap=_to_decimal(data.get("market_cap")) or Decimal("0"),
            liquidity=_to_decimal(data.get("liquidity")) or Decimal("0"),
            buy_tax=_to_decimal(data.get("buy_tax")),
            sell_tax=_to_decimal(data.get("sell_tax")),
            age_hours=data.get("age_hours"),
            verified=data.get("verified"),
            name=data.get("name"),
            symbol=data.get("symbol"),
            volume_24h=_to_decimal(data.get("volume_24h")),
            price_change_24h=_to_decimal(data.get("price_change_24h")),
        )


@dataclass(frozen=True)
class TradeRequest:
    """A sized trade ready to be confirmed or executed.

    Buys carry a native ``amount``; sells carry ``sell_percentage`` of the
    current position.
    """

    user_id: str
    trade_type: TradeAction
    network: Network
    token_address: str
    amount: Decimal | None = None
    sell_percentage: Decimal | None = None
    slippage: Decimal = Decimal("5")
    origin: TradeOrigin = TradeOrigin.MANUAL
    source_wallet: str | None = None
    source_tx_id: str | None = None
    gas_price_gwei: Decimal | None = None
    frontrun: bool = False

    def to_params(self) -> dict[str, Any]:
        """Parameters handed to the trade executor."""
        params: dict[str, Any] = {
            "token_address": self.token_address,
            "network": self.network.value,
            "slippage": self.slippage,
        }
        if self.amount is not None:
            params["amount"] = self.amount
        if self.sell_percentage is not None:
            params["percentage"] = self.sell_percentage
        if self.source_wallet:
            params["source_wallet"] = self.source_wallet
            params["copy_trade"] = self.origin == TradeOrigin.COPY
        if self.gas_price_gwei is not None:
            params["gas_price_gwei"] = self.gas_price_gwei
        if self.frontrun:
            params["frontrun"] = True
        return params


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome reported by the trade executor."""

    success: bool
    tx_hash: str | None = None
    tokens_received: Decimal | None = None
    tokens_sold: Decimal | None = None
    executed_price: Decimal | None = None
    pnl: Decimal | None = None
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> ExecutionResult:
        return cls(success=False, error=error)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionResult:
        return cls(
            success=bool(data.get("success")),
            tx_hash=data.get("tx_hash") or data.get("txHash"),
            tokens_received=_to_decimal(data.get("tokens_received", data.get("tokensReceived"))),
            tokens_sold=_to_decimal(data.get("tokens_sold", data.get("tokensSold"))),
            executed_price=_to_decimal(data.get("executed_price", data.get("executedPrice"))),
            pnl=_to_decimal(data.get("pnl")),
            error=data.get("error"),
        )


class NotificationKind(str, Enum):
    """Kinds of user-facing notification events."""

    TRADE_EXECUTED = "trade_executed"
    TRADE_FAILED = "trade_failed"
    TRADE_REJECTED = "trade_rejected"
    TRADE_STAGED = "trade_staged"
    TRACK_ONLY = "track_only"
    TRAILING_STOP = "trailing_stop"


@dataclass(frozen=True)
class NotificationEvent:
    """Event handed to the notification sink."""

    kind: NotificationKind
    network: Network
    action: TradeAction
    token_address: str
    amount: Decimal | None = None
    reason: str | None = None
    details: tuple[str, ...] = ()
    source_wallet: str | None = None
    trade_id: str | None = None
    execution: ExecutionResult | None = None
    token_data: TokenData | None = None
    dev_fee: Decimal | None = None
    net_amount: Decimal | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
