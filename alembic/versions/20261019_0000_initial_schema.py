"""Initial schema for wallet tracking, copy settings, positions and trades.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tracked wallets table
    op.create_table(
        "tracked_wallets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("address", sa.String(64), nullable=False),
        sa.Column("network", sa.String(16), nullable=False),
        sa.Column("label", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "address", "network", name="uq_tracked_wallet_user"),
    )
    op.create_index("idx_tracked_wallets_network", "tracked_wallets", ["network"])

    # Per-wallet trading status
    op.create_table(
        "wallet_statuses",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("source_wallet", sa.String(64), nullable=False),
        sa.Column("state", sa.String(16), nullable=False),
        sa.Column("resume_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "source_wallet"),
    )

    # Copy settings
    op.create_table(
        "copy_settings",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("source_wallet", sa.String(64), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("blind_follow", sa.Boolean(), nullable=False),
        sa.Column("frontrun", sa.Boolean(), nullable=False),
        sa.Column("smart_slippage", sa.Boolean(), nullable=False),
        sa.Column("track_only", sa.Boolean(), nullable=False),
        sa.Column("multi_buy", sa.Boolean(), nullable=False),
        sa.Column("auto_execute", sa.Boolean(), nullable=False),
        sa.Column("copy_sells", sa.Boolean(), nullable=False),
        sa.Column("slippage", sa.Numeric(10, 4), nullable=False),
        sa.Column("buy_percentage", sa.Numeric(10, 4), nullable=False),
        sa.Column("max_buy_amount", sa.Numeric(38, 18), nullable=False),
        sa.Column("copy_sell_percentage", sa.Numeric(10, 4), nullable=False),
        sa.Column("gas_delta_gwei", sa.Numeric(20, 9), nullable=False),
        sa.Column("daily_limit", sa.Numeric(38, 18), nullable=True),
        sa.Column("min_market_cap", sa.Numeric(30, 2), nullable=False),
        sa.Column("max_market_cap", sa.Numeric(30, 2), nullable=False),
        sa.Column("min_liquidity", sa.Numeric(30, 2), nullable=False),
        sa.Column("buy_tax_limit", sa.Numeric(10, 4), nullable=False),
        sa.Column("sell_tax_limit", sa.Numeric(10, 4), nullable=False),
        sa.Column("trading_wallets", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "source_wallet"),
    )

    # Open positions and their fills
    op.create_table(
        "positions",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("token_address", sa.String(64), nullable=False),
        sa.Column("network", sa.String(16), nullable=False),
        sa.Column("total_amount", sa.Numeric(38, 18), nullable=False),
        sa.Column("avg_price", sa.Numeric(38, 18), nullable=False),
        sa.Column("source_wallet", sa.String(64), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "token_address"),
    )
    op.create_index("idx_positions_user", "positions", ["user_id"])

    op.create_table(
        "position_trades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("token_address", sa.String(64), nullable=False),
        sa.Column("action", sa.String(8), nullable=False),
        sa.Column("amount", sa.Numeric(38, 18), nullable=False),
        sa.Column("price", sa.Numeric(38, 18), nullable=False),
        sa.Column("tx_hash", sa.String(128), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_position_trades_position", "position_trades", ["user_id", "token_address"]
    )

    # Daily spend
    op.create_table(
        "daily_spend",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(38, 18), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "day"),
    )

    # Trailing stops
    op.create_table(
        "trailing_stops",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("token_address", sa.String(64), nullable=False),
        sa.Column("network", sa.String(16), nullable=False),
        sa.Column("buy_price", sa.Numeric(38, 18), nullable=False),
        sa.Column("highest_price", sa.Numeric(38, 18), nullable=False),
        sa.Column("stop_loss_percent", sa.Numeric(10, 4), nullable=False),
        sa.Column("stop_loss_price", sa.Numeric(38, 18), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "token_address"),
    )

    # Executed trades
    op.create_table(
        "executed_trades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("trade_type", sa.String(8), nullable=False),
        sa.Column("origin", sa.String(16), nullable=False),
        sa.Column("network", sa.String(16), nullable=False),
        sa.Column("token_address", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(38, 18), nullable=True),
        sa.Column("sell_percentage", sa.Numeric(10, 4), nullable=True),
        sa.Column("dev_fee", sa.Numeric(38, 18), nullable=False),
        sa.Column("tx_hash", sa.String(128), nullable=True),
        sa.Column("tokens_received", sa.Numeric(38, 18), nullable=True),
        sa.Column("tokens_sold", sa.Numeric(38, 18), nullable=True),
        sa.Column("executed_price", sa.Numeric(38, 18), nullable=True),
        sa.Column("pnl", sa.Numeric(38, 18), nullable=True),
        sa.Column("source_wallet", sa.String(64), nullable=True),
        sa.Column("source_tx_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_executed_trades_user", "executed_trades", ["user_id"])
    op.create_index("idx_executed_trades_created_at", "executed_trades", ["created_at"])


def downgrade() -> None:
    op.drop_index("idx_executed_trades_created_at", table_name="executed_trades")
    op.drop_index("idx_executed_trades_user", table_name="executed_trades")
    op.drop_table("executed_trades")

    op.drop_table("trailing_stops")
    op.drop_table("daily_spend")

    op.drop_index("idx_position_trades_position", table_name="position_trades")
    op.drop_table("position_trades")
    op.drop_index("idx_positions_user", table_name="positions")
    op.drop_table("positions")

    op.drop_table("copy_settings")
    op.drop_table("wallet_statuses")

    op.drop_index("idx_tracked_wallets_network", table_name="tracked_wallets")
    op.drop_table("tracked_wallets")
