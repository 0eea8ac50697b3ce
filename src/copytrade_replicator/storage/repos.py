"""Repository pattern implementations for data access.

Repositories take an ``AsyncSession`` and return the trading layer's
dataclasses, so nothing above the storage layer sees ORM models.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from copytrade_replicator.models import (
    ExecutionResult,
    Network,
    TradeAction,
    TradeRequest,
)
from copytrade_replicator.storage.models import (
    CopySettingsModel,
    DailySpendModel,
    ExecutedTradeModel,
    PositionModel,
    PositionTradeModel,
    TrackedWalletModel,
    TrailingStopModel,
    WalletStatusModel,
)
from copytrade_replicator.trading.models import (
    AutoBuyChecks,
    CopySettings,
    Position,
    PositionTrade,
    TrackedWallet,
    TradingState,
    TrailingStopEntry,
    WalletStatusRecord,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _upsert(session: AsyncSession, model: type[Any], values: dict[str, Any]) -> Any:
    """Dialect-specific INSERT supporting ``on_conflict_do_*``."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model).values(**values)
    return sqlite_insert(model).values(**values)


@dataclass
class TrackedWalletDTO:
    """Data transfer object for one user's tracked wallet row."""

    user_id: str
    address: str
    network: Network
    label: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TrackedWalletModel) -> TrackedWalletDTO:
        return cls(
            user_id=model.user_id,
            address=model.address,
            network=Network(model.network),
            label=model.label,
            created_at=_aware(model.created_at),
        )


class TrackedWalletRepository:
    """Repository for tracked wallets."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(
        self, user_id: str, address: str, network: Network, label: str | None = None
    ) -> None:
        stmt = _upsert(
            self.session,
            TrackedWalletModel,
            {
                "user_id": user_id,
                "address": address,
                "network": network.value,
                "label": label,
                "created_at": datetime.now(UTC),
            },
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "address", "network"],
            set_={"label": stmt.excluded.label},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def remove(self, user_id: str, address: str, network: Network) -> bool:
        result = await self.session.execute(
            delete(TrackedWalletModel).where(
                TrackedWalletModel.user_id == user_id,
                TrackedWalletModel.address == address,
                TrackedWalletModel.network == network.value,
            )
        )
        return bool(result.rowcount)

    async def list_for_user(self, user_id: str) -> list[TrackedWalletDTO]:
        result = await self.session.execute(
            select(TrackedWalletModel)
            .where(TrackedWalletModel.user_id == user_id)
            .order_by(TrackedWalletModel.id)
        )
        return [TrackedWalletDTO.from_model(m) for m in result.scalars().all()]

    async def list_for_network(self, network: Network) -> list[TrackedWallet]:
        """Distinct wallets of a network with every owner."""
        result = await self.session.execute(
            select(TrackedWalletModel)
            .where(TrackedWalletModel.network == network.value)
            .order_by(TrackedWalletModel.id)
        )
        owners: dict[str, set[str]] = defaultdict(set)
        for model in result.scalars().all():
            owners[model.address].add(model.user_id)
        return [
            TrackedWallet(address=address, network=network, owner_user_ids=frozenset(users))
            for address, users in owners.items()
        ]


class WalletStatusRepository:
    """Repository for per-(user, wallet) trading status."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str, wallet: str) -> WalletStatusRecord | None:
        model = await self.session.get(WalletStatusModel, (user_id, wallet))
        if model is None:
            return None
        return WalletStatusRecord(
            user_id=model.user_id,
            source_wallet=model.source_wallet,
            state=TradingState(model.state),
            resume_at=_aware(model.resume_at),
        )

    async def upsert(self, record: WalletStatusRecord) -> None:
        now = datetime.now(UTC)
        stmt = _upsert(
            self.session,
            WalletStatusModel,
            {
                "user_id": record.user_id,
                "source_wallet": record.source_wallet,
                "state": record.state.value,
                "resume_at": record.resume_at,
                "updated_at": now,
            },
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "source_wallet"],
            set_={
                "state": stmt.excluded.state,
                "resume_at": stmt.excluded.resume_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()


class CopySettingsRepository:
    """Repository for per-(user, wallet) copy settings."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str, wallet: str) -> CopySettings | None:
        model = await self.session.get(CopySettingsModel, (user_id, wallet))
        if model is None:
            return None
        return CopySettings(
            enabled=model.enabled,
            blind_follow=model.blind_follow,
            frontrun=model.frontrun,
            smart_slippage=model.smart_slippage,
            track_only=model.track_only,
            multi_buy=model.multi_buy,
            auto_execute=model.auto_execute,
            copy_sells=model.copy_sells,
            slippage=model.slippage,
            buy_percentage=model.buy_percentage,
            max_buy_amount=model.max_buy_amount,
            copy_sell_percentage=model.copy_sell_percentage,
            gas_delta_gwei=model.gas_delta_gwei,
            daily_limit=model.daily_limit,
            auto_buy_checks=AutoBuyChecks(
                min_market_cap=model.min_market_cap,
                max_market_cap=model.max_market_cap,
                min_liquidity=model.min_liquidity,
                buy_tax_limit=model.buy_tax_limit,
                sell_tax_limit=model.sell_tax_limit,
            ),
            trading_wallets={Network(k): v for k, v in (model.trading_wallets or {}).items()},
        )

    async def upsert(self, user_id: str, wallet: str, settings: CopySettings) -> None:
        checks = settings.auto_buy_checks
        values: dict[str, Any] = {
            "enabled": settings.enabled,
            "blind_follow": settings.blind_follow,
            "frontrun": settings.frontrun,
            "smart_slippage": settings.smart_slippage,
            "track_only": settings.track_only,
            "multi_buy": settings.multi_buy,
            "auto_execute": settings.auto_execute,
            "copy_sells": settings.copy_sells,
            "slippage": settings.slippage,
            "buy_percentage": settings.buy_percentage,
            "max_buy_amount": settings.max_buy_amount,
            "copy_sell_percentage": settings.copy_sell_percentage,
            "gas_delta_gwei": settings.gas_delta_gwei,
            "daily_limit": settings.daily_limit,
            "min_market_cap": checks.min_market_cap,
            "max_market_cap": checks.max_market_cap,
            "min_liquidity": checks.min_liquidity,
            "buy_tax_limit": checks.buy_tax_limit,
            "sell_tax_limit": checks.sell_tax_limit,
            "trading_wallets": {n.value: a for n, a in settings.trading_wallets.items()},
            "updated_at": datetime.now(UTC),
        }
        stmt = _upsert(
            self.session,
            CopySettingsModel,
            {"user_id": user_id, "source_wallet": wallet, **values},
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "source_wallet"],
            set_={key: getattr(stmt.excluded, key) for key in values},
        )
        await self.session.execute(stmt)
        await self.session.flush()


class PositionRepository:
    """Repository for open positions and their fills."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _trades(self, user_id: str, token_address: str) -> list[PositionTrade]:
        result = await self.session.execute(
            select(PositionTradeModel)
            .where(
                PositionTradeModel.user_id == user_id,
                PositionTradeModel.token_address == token_address,
            )
            .order_by(PositionTradeModel.id)
        )
        return [
            PositionTrade(
                action=TradeAction(m.action),
                amount=m.amount,
                price=m.price,
                timestamp=_aware(m.ts) or datetime.now(UTC),
                tx_hash=m.tx_hash,
            )
            for m in result.scalars().all()
        ]

    async def _to_position(self, model: PositionModel) -> Position:
        return Position(
            user_id=model.user_id,
            token_address=model.token_address,
            network=Network(model.network),
            total_amount=model.total_amount,
            avg_price=model.avg_price,
            source_wallet=model.source_wallet,
            trades=await self._trades(model.user_id, model.token_address),
            opened_at=_aware(model.opened_at) or datetime.now(UTC),
        )

    async def get(self, user_id: str, token_address: str) -> Position | None:
        model = await self.session.get(PositionModel, (user_id, token_address))
        return await self._to_position(model) if model else None

    async def list(self, user_id: str | None = None) -> list[Position]:
        query = select(PositionModel).order_by(PositionModel.opened_at)
        if user_id is not None:
            query = query.where(PositionModel.user_id == user_id)
        result = await self.session.execute(query)
        return [await self._to_position(m) for m in result.scalars().all()]

    async def upsert(self, position: Position) -> None:
        values = {
            "network": position.network.value,
            "total_amount": position.total_amount,
            "avg_price": position.avg_price,
            "source_wallet": position.source_wallet,
            "opened_at": position.opened_at,
            "updated_at": datetime.now(UTC),
        }
        stmt = _upsert(
            self.session,
            PositionModel,
            {"user_id": position.user_id, "token_address": position.token_address, **values},
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "token_address"],
            set_={key: getattr(stmt.excluded, key) for key in values if key != "opened_at"},
        )
        await self.session.execute(stmt)

        # Fills are append-only; persist the ones not stored yet.
        stored = await self.session.execute(
            select(PositionTradeModel.id).where(
                PositionTradeModel.user_id == position.user_id,
                PositionTradeModel.token_address == position.token_address,
            )
        )
        stored_count = len(stored.all())
        for trade in position.trades[stored_count:]:
            self.session.add(
                PositionTradeModel(
                    user_id=position.user_id,
                    token_address=position.token_address,
                    action=trade.action.value,
                    amount=trade.amount,
                    price=trade.price,
                    tx_hash=trade.tx_hash,
                    ts=trade.timestamp,
                )
            )
        await self.session.flush()

    async def delete(self, user_id: str, token_address: str) -> None:
        await self.session.execute(
            delete(PositionTradeModel).where(
                PositionTradeModel.user_id == user_id,
                PositionTradeModel.token_address == token_address,
            )
        )
        await self.session.execute(
            delete(PositionModel).where(
                PositionModel.user_id == user_id,
                PositionModel.token_address == token_address,
            )
        )


class DailySpendRepository:
    """Repository for per-day gross buy totals."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str, day: date) -> Decimal:
        model = await self.session.get(DailySpendModel, (user_id, day))
        return model.amount if model else Decimal("0")

    async def add(self, user_id: str, day: date, amount: Decimal) -> None:
        stmt = _upsert(
            self.session,
            DailySpendModel,
            {"user_id": user_id, "day": day, "amount": amount, "updated_at": datetime.now(UTC)},
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "day"],
            set_={
                "amount": DailySpendModel.amount + stmt.excluded.amount,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()


class TrailingStopRepository:
    """Repository for trailing stop entries."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list(self) -> list[TrailingStopEntry]:
        result = await self.session.execute(select(TrailingStopModel))
        return [
            TrailingStopEntry(
                user_id=m.user_id,
                token_address=m.token_address,
                network=Network(m.network),
                buy_price=m.buy_price,
                highest_price=m.highest_price,
                stop_loss_percent=m.stop_loss_percent,
                stop_loss_price=m.stop_loss_price,
            )
            for m in result.scalars().all()
        ]

    async def upsert(self, entry: TrailingStopEntry) -> None:
        values = {
            "network": entry.network.value,
            "buy_price": entry.buy_price,
            "highest_price": entry.highest_price,
            "stop_loss_percent": entry.stop_loss_percent,
            "stop_loss_price": entry.stop_loss_price,
            "updated_at": datetime.now(UTC),
        }
        stmt = _upsert(
            self.session,
            TrailingStopModel,
            {"user_id": entry.user_id, "token_address": entry.token_address, **values},
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "token_address"],
            set_={key: getattr(stmt.excluded, key) for key in values},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def delete(self, user_id: str, token_address: str) -> None:
        await self.session.execute(
            delete(TrailingStopModel).where(
                TrailingStopModel.user_id == user_id,
                TrailingStopModel.token_address == token_address,
            )
        )


@dataclass
class ExecutedTradeDTO:
    """Data transfer object for executed trades."""

    user_id: str
    trade_type: TradeAction
    network: Network
    token_address: str
    origin: str
    amount: Decimal | None
    sell_percentage: Decimal | None
    dev_fee: Decimal
    tx_hash: str | None
    tokens_received: Decimal | None
    tokens_sold: Decimal | None
    executed_price: Decimal | None
    pnl: Decimal | None
    source_wallet: str | None
    source_tx_id: str | None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: ExecutedTradeModel) -> ExecutedTradeDTO:
        return cls(
            user_id=model.user_id,
            trade_type=TradeAction(model.trade_type),
            network=Network(model.network),
            token_address=model.token_address,
            origin=model.origin,
            amount=model.amount,
            sell_percentage=model.sell_percentage,
            dev_fee=model.dev_fee,
            tx_hash=model.tx_hash,
            tokens_received=model.tokens_received,
            tokens_sold=model.tokens_sold,
            executed_price=model.executed_price,
            pnl=model.pnl,
            source_wallet=model.source_wallet,
            source_tx_id=model.source_tx_id,
            created_at=_aware(model.created_at),
        )


class ExecutedTradeRepository:
    """Repository for the executed trade log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(
        self, request: TradeRequest, result: ExecutionResult, *, dev_fee: Decimal
    ) -> None:
        self.session.add(
            ExecutedTradeModel(
                user_id=request.user_id,
                trade_type=request.trade_type.value,
                origin=request.origin.value,
                network=request.network.value,
                token_address=request.token_address,
                amount=request.amount,
                sell_percentage=request.sell_percentage,
                dev_fee=dev_fee,
                tx_hash=result.tx_hash,
                tokens_received=result.tokens_received,
                tokens_sold=result.tokens_sold,
                executed_price=result.executed_price,
                pnl=result.pnl,
                source_wallet=request.source_wallet,
                source_tx_id=request.source_tx_id,
            )
        )
        await self.session.flush()

    async def list_for_user(self, user_id: str, *, limit: int = 50) -> list[ExecutedTradeDTO]:
        result = await self.session.execute(
            select(ExecutedTradeModel)
            .where(ExecutedTradeModel.user_id == user_id)
            .order_by(ExecutedTradeModel.created_at.desc(), ExecutedTradeModel.id.desc())
            .limit(limit)
        )
        return [ExecutedTradeDTO.from_model(m) for m in result.scalars().all()]
