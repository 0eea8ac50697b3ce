"""Staged trades awaiting user confirmation.

A staged trade is held in memory until it is confirmed, cancelled or its
deadline passes. Every exit path removes the entry with a single
``dict.pop`` on the event loop, so exactly one of them wins and the trade
gets exactly one terminal status.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum

from copytrade_replicator.models import Network, TradeAction, TradeOrigin, TradeRequest
from copytrade_replicator.trading.positions import PositionBook
from copytrade_replicator.trading.settlement import SettlementResult, TradeSettlement

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MIN_AMOUNT = Decimal("0.0001")
DEFAULT_MAX_AMOUNT = Decimal("1000000")

NOT_FOUND_OR_EXPIRED = "Trade not found or expired"
NOT_FOUND_OR_ALREADY_EXPIRED = "Trade not found or already expired"

SettledListener = Callable[[SettlementResult], None]


class PendingTradeStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


@dataclass
class PendingTrade:
    """A trade waiting for confirmation."""

    trade_id: str
    user_id: str
    request: TradeRequest
    created_at: datetime
    expires_at: datetime
    status: PendingTradeStatus = PendingTradeStatus.PENDING

    @property
    def trade_type(self) -> TradeAction:
        return self.request.trade_type


@dataclass(frozen=True)
class ConfirmationResult:
    """Outcome of a staging, confirmation or cancellation request."""

    success: bool
    message: str
    trade_id: str | None = None
    pending: PendingTrade | None = None
    settlement: SettlementResult | None = None


@dataclass(frozen=True)
class ManualTradeParams:
    """A user's manual trade request before validation."""

    trade_type: TradeAction
    network: Network
    token_address: str
    amount: Decimal | None = None
    sell_percentage: Decimal | None = None
    slippage: Decimal = Decimal("5")


class TradeConfirmationWorkflow:
    """Stages trades and settles them once confirmed in time."""

    def __init__(
        self,
        settlement: TradeSettlement,
        positions: PositionBook,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        min_amount: Decimal = DEFAULT_MIN_AMOUNT,
        max_amount: Decimal = DEFAULT_MAX_AMOUNT,
        supported_networks: tuple[Network, ...] = tuple(Network),
    ) -> None:
        self._settlement = settlement
        self._positions = positions
        self._timeout = timeout_seconds
        self._min_amount = min_amount
        self._max_amount = max_amount
        self._supported_networks = supported_networks
        self._pending: dict[str, PendingTrade] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._counter = itertools.count(1)
        self._settled_listeners: list[SettledListener] = []

    def add_settled_listener(self, listener: SettledListener) -> None:
        """Call ``listener`` with the settlement of every confirmed trade."""
        self._settled_listeners.append(listener)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get(self, trade_id: str) -> PendingTrade | None:
        return self._pending.get(trade_id)

    def _new_trade_id(self, user_id: str) -> str:
        return f"trade_{user_id}_{int(time.time() * 1000)}_{next(self._counter)}"

    async def stage(self, user_id: str, request: TradeRequest) -> PendingTrade:
        """Hold a trade until confirmed, cancelled or expired."""
        now = datetime.now(UTC)
        pending = PendingTrade(
            trade_id=self._new_trade_id(user_id),
            user_id=user_id,
            request=request,
            created_at=now,
            expires_at=now + timedelta(seconds=self._timeout),
        )
        self._pending[pending.trade_id] = pending
        loop = asyncio.get_running_loop()
        self._timers[pending.trade_id] = loop.call_later(
            self._timeout, self._expire, pending.trade_id
        )
        logger.info(
            "Staged %s of %s for %s as %s",
            request.trade_type.value,
            request.token_address,
            user_id,
            pending.trade_id,
        )
        return pending

    def _expire(self, trade_id: str) -> None:
        self._timers.pop(trade_id, None)
        pending = self._pending.pop(trade_id, None)
        if pending is None:
            return
        pending.status = PendingTradeStatus.EXPIRED
        logger.info("Trade %s expired unconfirmed", trade_id)

    def _take(self, trade_id: str) -> PendingTrade | None:
        pending = self._pending.pop(trade_id, None)
        timer = self._timers.pop(trade_id, None)
        if timer is not None:
            timer.cancel()
        return pending

    async def confirm(self, trade_id: str) -> ConfirmationResult:
        """Settle a staged trade with its original trade type."""
        pending = self._take(trade_id)
        if pending is None:
            return ConfirmationResult(success=False, message=NOT_FOUND_OR_EXPIRED, trade_id=trade_id)
        if datetime.now(UTC) >= pending.expires_at:
            pending.status = PendingTradeStatus.EXPIRED
            return ConfirmationResult(success=False, message=NOT_FOUND_OR_EXPIRED, trade_id=trade_id)

        pending.status = PendingTradeStatus.CONFIRMED
        try:
            settlement = await self._settlement.settle(pending.request)
        except Exception as e:
            logger.exception("Settlement of confirmed trade %s failed", trade_id)
            return ConfirmationResult(
                success=False, message=str(e), trade_id=trade_id, pending=pending
            )

        for listener in self._settled_listeners:
            try:
                listener(settlement)
            except Exception as e:
                logger.warning("Settlement listener for %s failed: %s", trade_id, e)

        message = "Trade executed" if settlement.success else (
            settlement.execution.error or "Trade execution failed"
        )
        return ConfirmationResult(
            success=settlement.success,
            message=message,
            trade_id=trade_id,
            pending=pending,
            settlement=settlement,
        )

    async def cancel(self, trade_id: str) -> ConfirmationResult:
        pending = self._take(trade_id)
        if pending is None:
            return ConfirmationResult(
                success=False, message=NOT_FOUND_OR_ALREADY_EXPIRED, trade_id=trade_id
            )
        pending.status = PendingTradeStatus.CANCELLED
        logger.info("Trade %s cancelled", trade_id)
        return ConfirmationResult(
            success=True, message="Trade cancelled", trade_id=trade_id, pending=pending
        )

    async def stage_manual_trade(
        self, user_id: str, params: ManualTradeParams
    ) -> ConfirmationResult:
        """Validate a manual trade and stage it for confirmation."""
        if params.network not in self._supported_networks:
            return ConfirmationResult(
                success=False, message=f"Unsupported network: {params.network.value}"
            )

        if params.trade_type == TradeAction.BUY:
            amount = params.amount
            if amount is None or not self._min_amount <= amount <= self._max_amount:
                return ConfirmationResult(
                    success=False,
                    message=f"Amount must be between {self._min_amount} and {self._max_amount}",
                )
            request = TradeRequest(
                user_id=user_id,
                trade_type=TradeAction.BUY,
                network=params.network,
                token_address=params.token_address,
                amount=amount,
                slippage=params.slippage,
                origin=TradeOrigin.MANUAL,
            )
        elif params.trade_type == TradeAction.SELL:
            position = await self._positions.get(user_id, params.token_address)
            if position is None:
                return ConfirmationResult(success=False, message="No position found for this token")
            percentage = params.sell_percentage or Decimal("100")
            if percentage <= 0:
                return ConfirmationResult(success=False, message="Invalid sell percentage")
            sell_amount = position.total_amount * percentage / Decimal("100")
            if sell_amount > position.total_amount:
                return ConfirmationResult(success=False, message="Insufficient token balance")
            request = TradeRequest(
                user_id=user_id,
                trade_type=TradeAction.SELL,
                network=params.network,
                token_address=params.token_address,
                sell_percentage=percentage,
                slippage=params.slippage,
                origin=TradeOrigin.MANUAL,
            )
        else:
            return ConfirmationResult(success=False, message="Invalid trade type")

        pending = await self.stage(user_id, request)
        return ConfirmationResult(
            success=True,
            message=f"Confirm within {self._timeout:.0f}s",
            trade_id=pending.trade_id,
            pending=pending,
        )

    def clear(self) -> None:
        """Drop every staged trade; used on shutdown."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for pending in self._pending.values():
            pending.status = PendingTradeStatus.EXPIRED
        self._pending.clear()
