"""SQLAlchemy models for persistent storage.

This module defines the database schema for tracked wallets, per-wallet
trading status and copy settings, positions, daily spend, trailing stops
and executed trades.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _now() -> datetime:
    return datetime.now(UTC)


class TrackedWalletModel(Base):
    """A source wallet followed by one user on one network."""

    __tablename__ = "tracked_wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    address: Mapped[str] = mapped_column(String(64), nullable=False)
    network: Mapped[str] = mapped_column(String(16), nullable=False)
    label: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "address", "network", name="uq_tracked_wallet_user"),
        Index("idx_tracked_wallets_network", "network"),
    )


class WalletStatusModel(Base):
    """Trading status of a user for a source wallet."""

    __tablename__ = "wallet_statuses"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    source_wallet: Mapped[str] = mapped_column(String(64), primary_key=True)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    resume_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )


class CopySettingsModel(Base):
    """How a user copies a source wallet."""

    __tablename__ = "copy_settings"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    source_wallet: Mapped[str] = mapped_column(String(64), primary_key=True)

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    blind_follow: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frontrun: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    smart_slippage: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    multi_buy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_execute: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    copy_sells: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    slippage: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    buy_percentage: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    max_buy_amount: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    copy_sell_percentage: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    gas_delta_gwei: Mapped[Decimal] = mapped_column(Numeric(20, 9), nullable=False)
    daily_limit: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)

    min_market_cap: Mapped[Decimal] = mapped_column(Numeric(30, 2), nullable=False)
    max_market_cap: Mapped[Decimal] = mapped_column(Numeric(30, 2), nullable=False)
    min_liquidity: Mapped[Decimal] = mapped_column(Numeric(30, 2), nullable=False)
    buy_tax_limit: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    sell_tax_limit: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)

    # {network: trading wallet address}
    trading_wallets: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )


class PositionModel(Base):
    """Open token holding of a user."""

    __tablename__ = "positions"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    token_address: Mapped[str] = mapped_column(String(64), primary_key=True)
    network: Mapped[str] = mapped_column(String(16), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    avg_price: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    source_wallet: Mapped[str | None] = mapped_column(String(64), nullable=True)
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (Index("idx_positions_user", "user_id"),)


class PositionTradeModel(Base):
    """Fill recorded against an open position."""

    __tablename__ = "position_trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token_address: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_position_trades_position", "user_id", "token_address"),)


class DailySpendModel(Base):
    """Gross native amount spent on buys per user per UTC day."""

    __tablename__ = "daily_spend"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )


class TrailingStopModel(Base):
    """Trailing stop state for a position."""

    __tablename__ = "trailing_stops"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    token_address: Mapped[str] = mapped_column(String(64), primary_key=True)
    network: Mapped[str] = mapped_column(String(16), nullable=False)
    buy_price: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    highest_price: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    stop_loss_percent: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    stop_loss_price: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )


class ExecutedTradeModel(Base):
    """A trade the executor reported as successful."""

    __tablename__ = "executed_trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trade_type: Mapped[str] = mapped_column(String(8), nullable=False)
    origin: Mapped[str] = mapped_column(String(16), nullable=False)
    network: Mapped[str] = mapped_column(String(16), nullable=False)
    token_address: Mapped[str] = mapped_column(String(64), nullable=False)

    amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    sell_percentage: Mapped[Decimal | None] = mapped_column(Numeric(10, 4), nullable=True)
    dev_fee: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)

    tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tokens_received: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    tokens_sold: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    executed_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    pnl: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)

    source_wallet: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source_tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        Index("idx_executed_trades_user", "user_id"),
        Index("idx_executed_trades_created_at", "created_at"),
    )
