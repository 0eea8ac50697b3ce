"""Trade settlement: executor call plus the bookkeeping that follows it.

Shared by copy replication, staged confirmations and trailing stops.
Bookkeeping happens only for trades the executor reports as successful.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from copytrade_replicator.metadata import TokenMetadataProvider
from copytrade_replicator.models import (
    ExecutionResult,
    NotificationEvent,
    NotificationKind,
    TradeAction,
    TradeRequest,
)
from copytrade_replicator.notifier.telegram import NotificationSink
from copytrade_replicator.trading.executor import TradeExecutor
from copytrade_replicator.trading.models import Position, UserSettingsStore
from copytrade_replicator.trading.positions import PositionBook, PositionError

logger = logging.getLogger(__name__)

DEFAULT_DEV_FEE_PERCENT = Decimal("3")
HUNDRED = Decimal("100")

PositionClosedCallback = Callable[[str, str], Awaitable[Any]]


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of a settled trade."""

    request: TradeRequest
    execution: ExecutionResult
    dev_fee: Decimal = Decimal("0")
    net_amount: Decimal | None = None
    position: Position | None = None
    realized_pnl: Decimal | None = None

    @property
    def success(self) -> bool:
        return self.execution.success


def split_dev_fee(amount: Decimal, fee_percent: Decimal) -> tuple[Decimal, Decimal]:
    """Return ``(fee, net)`` for a gross buy amount."""
    fee = amount * fee_percent / HUNDRED
    return fee, amount - fee


class TradeSettlement:
    """Executes a TradeRequest and settles its side effects."""

    def __init__(
        self,
        *,
        executor: TradeExecutor,
        positions: PositionBook,
        store: UserSettingsStore,
        notifier: NotificationSink,
        metadata: TokenMetadataProvider | None = None,
        dev_fee_percent: Decimal = DEFAULT_DEV_FEE_PERCENT,
        on_position_closed: PositionClosedCallback | None = None,
    ) -> None:
        self._executor = executor
        self._positions = positions
        self._store = store
        self._notifier = notifier
        self._metadata = metadata
        self._dev_fee_percent = dev_fee_percent
        self._on_position_closed = on_position_closed

    async def settle(self, request: TradeRequest) -> SettlementResult:
        if request.trade_type == TradeAction.BUY:
            result = await self._settle_buy(request)
        elif request.trade_type == TradeAction.SELL:
            result = await self._settle_sell(request)
        else:
            raise ValueError(f"Cannot settle trade type {request.trade_type}")
        await self._notify(result)
        return result

    async def _execute(self, request: TradeRequest, params: dict) -> ExecutionResult:
        try:
            if request.trade_type == TradeAction.BUY:
                return await self._executor.execute_buy(request.user_id, params)
            return await self._executor.execute_sell(request.user_id, params)
        except Exception as e:
            logger.error(
                "Executor failed for %s %s of %s: %s",
                request.user_id,
                request.trade_type.value,
                request.token_address,
                e,
            )
            return ExecutionResult.failure(str(e))

    async def _market_price(self, request: TradeRequest) -> Decimal | None:
        if self._metadata is None:
            return None
        data = await self._metadata.get_token_data(request.token_address, request.network)
        if data is None or data.price_usd <= 0:
            return None
        return data.price_usd

    async def _settle_buy(self, request: TradeRequest) -> SettlementResult:
        if request.amount is None or request.amount <= 0:
            raise ValueError("Buy requests need a positive amount")
        fee, net = split_dev_fee(request.amount, self._dev_fee_percent)
        params = request.to_params()
        params["amount"] = net
        params["dev_fee"] = fee

        execution = await self._execute(request, params)
        if not execution.success:
            return SettlementResult(request=request, execution=execution, dev_fee=fee, net_amount=net)

        price = execution.executed_price or await self._market_price(request)
        tokens = execution.tokens_received
        if tokens is None and price:
            tokens = net / price
        if price is None and tokens:
            price = net / tokens

        position = None
        if tokens and price is not None:
            position = await self._positions.record_buy(
                user_id=request.user_id,
                token_address=request.token_address,
                network=request.network,
                amount=tokens,
                price=price,
                source_wallet=request.source_wallet,
                tx_hash=execution.tx_hash,
            )
        else:
            logger.warning(
                "Buy %s for %s settled without fill data; position not updated",
                execution.tx_hash,
                request.user_id,
            )

        await self._store.add_daily_spent(request.user_id, datetime.now(UTC).date(), request.amount)
        await self._store.record_trade(request, execution, dev_fee=fee)
        logger.info(
            "Buy settled for %s: %s of %s (fee %s, tx %s)",
            request.user_id,
            net,
            request.token_address,
            fee,
            execution.tx_hash,
        )
        return SettlementResult(
            request=request,
            execution=execution,
            dev_fee=fee,
            net_amount=net,
            position=position,
        )

    async def _settle_sell(self, request: TradeRequest) -> SettlementResult:
        current = await self._positions.get(request.user_id, request.token_address)
        if current is None:
            return SettlementResult(
                request=request,
                execution=ExecutionResult.failure("No position found to sell"),
            )
        percentage = request.sell_percentage or HUNDRED
        params = request.to_params()
        params["percentage"] = percentage
        params["position_amount"] = current.total_amount

        execution = await self._execute(request, params)
        if not execution.success:
            return SettlementResult(request=request, execution=execution)

        sold = execution.tokens_sold or current.total_amount * percentage / HUNDRED
        price = execution.executed_price or await self._market_price(request) or current.avg_price
        try:
            outcome = await self._positions.record_sell(
                user_id=request.user_id,
                token_address=request.token_address,
                amount=sold,
                price=price,
                tx_hash=execution.tx_hash,
            )
        except PositionError as e:
            logger.warning("Sell %s settled but position update failed: %s", execution.tx_hash, e)
            await self._store.record_trade(request, execution, dev_fee=Decimal("0"))
            return SettlementResult(request=request, execution=execution)

        pnl = execution.pnl if execution.pnl is not None else outcome.realized_pnl
        execution = replace(execution, pnl=pnl, tokens_sold=sold, executed_price=price)
        await self._store.record_trade(request, execution, dev_fee=Decimal("0"))
        if outcome.closed:
            await self._position_closed(request.user_id, request.token_address)
        logger.info(
            "Sell settled for %s: %s of %s (pnl %s, tx %s)",
            request.user_id,
            sold,
            request.token_address,
            pnl,
            execution.tx_hash,
        )
        return SettlementResult(
            request=request,
            execution=execution,
            position=outcome.position,
            realized_pnl=pnl,
        )

    async def _position_closed(self, user_id: str, token_address: str) -> None:
        if self._on_position_closed is None:
            return
        try:
            await self._on_position_closed(user_id, token_address)
        except Exception as e:
            logger.warning("Position close hook for %s/%s failed: %s", user_id, token_address, e)

    async def _notify(self, result: SettlementResult) -> None:
        request = result.request
        event = NotificationEvent(
            kind=(
                NotificationKind.TRADE_EXECUTED if result.success else NotificationKind.TRADE_FAILED
            ),
            network=request.network,
            action=request.trade_type,
            token_address=request.token_address,
            amount=request.amount,
            reason=None if result.success else result.execution.error,
            source_wallet=request.source_wallet,
            execution=result.execution,
            dev_fee=result.dev_fee if request.trade_type == TradeAction.BUY else None,
            net_amount=result.net_amount,
        )
        try:
            await self._notifier.notify(request.user_id, event)
        except Exception as e:
            logger.warning("Notification to %s failed: %s", request.user_id, e)
