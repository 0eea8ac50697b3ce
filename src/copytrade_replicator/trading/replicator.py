"""Copy-trade replication.

Turns a source wallet's ``TradeIntent`` into a sized trade for one
subscriber. Every guard that fails produces a ``ReplicationResult`` with a
reason instead of raising; only infrastructure faults propagate.

Guard order:
    emergency stop / blacklist / disabled -> trading status -> track-only
    -> (sells) position lookup
    -> (buys) multi-buy, safety checks, auto-buy checks, sizing, slippage,
       balance, daily limit, frontrun queue
    -> confirmation staging or settlement
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from copytrade_replicator.chain.base import ChainDataSource
from copytrade_replicator.metadata import TokenMetadataProvider
from copytrade_replicator.models import (
    Network,
    NotificationEvent,
    NotificationKind,
    TokenData,
    TradeAction,
    TradeIntent,
    TradeOrigin,
    TradeRequest,
)
from copytrade_replicator.notifier.telegram import NotificationSink
from copytrade_replicator.trading.checks import (
    run_auto_buy_checks,
    run_safety_checks,
    smart_slippage,
)
from copytrade_replicator.trading.confirmation import TradeConfirmationWorkflow
from copytrade_replicator.trading.models import CopySettings, UserSettingsStore
from copytrade_replicator.trading.settlement import SettlementResult, TradeSettlement
from copytrade_replicator.trading.status import WalletTradingStatus

logger = logging.getLogger(__name__)

MIN_BUY_AMOUNT = Decimal("0.001")
DEFAULT_GAS_PRICE_GWEI = Decimal("20")
FRONTRUN_NETWORKS = frozenset({Network.ETHEREUM, Network.BSC})


@dataclass(frozen=True)
class ReplicationResult:
    """Outcome of replicating one intent for one user."""

    success: bool
    reason: str
    details: tuple[str, ...] = ()
    queued: bool = False
    trade_id: str | None = None
    request: TradeRequest | None = None
    settlement: SettlementResult | None = None


@dataclass
class ReplicationMetrics:
    """Running copy-trade counters."""

    total_copies: int = 0
    successful_copies: int = 0
    failed_copies: int = 0
    rejected: int = 0
    total_volume: Decimal = Decimal("0")
    profit_loss: Decimal = Decimal("0")

    def record(self, settlement: SettlementResult) -> None:
        if not settlement.success:
            self.failed_copies += 1
            return
        self.successful_copies += 1
        request = settlement.request
        if request.trade_type == TradeAction.BUY and request.amount is not None:
            self.total_volume += request.amount
        if settlement.realized_pnl is not None:
            self.profit_loss += settlement.realized_pnl


def size_buy(native_amount: Decimal, settings: CopySettings) -> Decimal:
    """Scale the source amount, cap it, and floor it at the minimum buy."""
    amount = native_amount * settings.buy_percentage / Decimal("100")
    amount = min(amount, settings.max_buy_amount)
    return max(amount, MIN_BUY_AMOUNT)


def frontrun_priority(gas_price_gwei: Decimal | None, gas_delta_gwei: Decimal) -> Decimal:
    return (gas_price_gwei or DEFAULT_GAS_PRICE_GWEI) + gas_delta_gwei


@dataclass(order=True)
class FrontrunEntry:
    sort_key: tuple[Decimal, int] = field(init=False, repr=False)
    priority: Decimal = field(compare=False)
    sequence: int = field(compare=False)
    request: TradeRequest = field(compare=False)
    settings: CopySettings = field(compare=False)

    def __post_init__(self) -> None:
        # Highest priority first, FIFO among equals.
        self.sort_key = (-self.priority, self.sequence)


FrontrunHandler = Callable[[TradeRequest, CopySettings], Awaitable[Any]]


class FrontrunQueue:
    """Per-key priority queues drained one trade at a time.

    Keys are ``"{network}_{token}"``. A drain task runs per key while its
    queue is non-empty and always takes the highest priority entry next.
    """

    def __init__(self, handler: FrontrunHandler) -> None:
        self._handler = handler
        self._queues: dict[str, list[FrontrunEntry]] = {}
        self._drains: dict[str, asyncio.Task[None]] = {}
        self._sequence = 0

    @staticmethod
    def key_for(network: Network, token_address: str) -> str:
        return f"{network.value}_{token_address}"

    def __len__(self) -> int:
        return sum(len(q) for q in self._queues.values())

    def pending(self, key: str) -> list[FrontrunEntry]:
        return sorted(self._queues.get(key, []))

    def push(self, request: TradeRequest, settings: CopySettings, priority: Decimal) -> str:
        key = self.key_for(request.network, request.token_address)
        self._sequence += 1
        entry = FrontrunEntry(
            priority=priority, sequence=self._sequence, request=request, settings=settings
        )
        queue = self._queues.setdefault(key, [])
        queue.append(entry)
        queue.sort()
        if key not in self._drains:
            self._drains[key] = asyncio.create_task(self._drain(key))
        return key

    async def process_next(self, key: str) -> bool:
        """Run the highest priority entry of a queue. Returns False if empty."""
        queue = self._queues.get(key)
        if not queue:
            self._queues.pop(key, None)
            return False
        entry = queue.pop(0)
        if not queue:
            self._queues.pop(key, None)
        try:
            await self._handler(entry.request, entry.settings)
        except Exception as e:
            logger.error("Frontrun trade for %s on %s failed: %s", entry.request.user_id, key, e)
        return True

    async def _drain(self, key: str) -> None:
        try:
            while await self.process_next(key):
                pass
        finally:
            self._drains.pop(key, None)

    async def wait_idle(self) -> None:
        while self._drains:
            await asyncio.gather(*list(self._drains.values()), return_exceptions=True)

    async def stop(self) -> None:
        for task in list(self._drains.values()):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._drains.clear()
        self._queues.clear()


class CopyReplicator:
    """Replicates classified intents for subscribed users."""

    def __init__(
        self,
        *,
        store: UserSettingsStore,
        status: WalletTradingStatus,
        metadata: TokenMetadataProvider,
        settlement: TradeSettlement,
        workflow: TradeConfirmationWorkflow,
        notifier: NotificationSink,
        balance_sources: Mapping[Network, ChainDataSource] | None = None,
        blacklisted_tokens: Iterable[str] = (),
        emergency_stop: bool = False,
    ) -> None:
        self._store = store
        self._status = status
        self._metadata = metadata
        self._settlement = settlement
        self._workflow = workflow
        self._notifier = notifier
        self._balance_sources = dict(balance_sources or {})
        self._blacklist = frozenset(t.lower() for t in blacklisted_tokens)
        self.emergency_stop = emergency_stop
        self._metrics = ReplicationMetrics()
        self._frontrun = FrontrunQueue(self._submit)
        workflow.add_settled_listener(self._on_confirmed)

    def _on_confirmed(self, settlement: SettlementResult) -> None:
        if settlement.request.origin == TradeOrigin.COPY:
            self._metrics.record(settlement)

    @property
    def metrics(self) -> ReplicationMetrics:
        return self._metrics

    @property
    def frontrun_queue(self) -> FrontrunQueue:
        return self._frontrun

    async def replicate(self, user_id: str, intent: TradeIntent) -> ReplicationResult:
        """Replicate one intent for one user."""
        if not intent.is_actionable:
            return ReplicationResult(success=False, reason="Unknown trade action")

        self._metrics.total_copies += 1
        settings = await self._store.get_copy_settings(user_id, intent.source_wallet)

        if self.emergency_stop:
            return await self._reject(user_id, intent, "Emergency stop active")
        if intent.token_address.lower() in self._blacklist:
            return await self._reject(user_id, intent, "Token is blacklisted")
        if not settings.enabled:
            return await self._reject(user_id, intent, "Copy trading disabled for this wallet")
        if not await self._status.is_active(user_id, intent.source_wallet):
            return await self._reject(user_id, intent, "Trading paused or stopped for this wallet")

        if settings.track_only:
            await self._send(
                user_id,
                NotificationEvent(
                    kind=NotificationKind.TRACK_ONLY,
                    network=intent.network,
                    action=intent.action,
                    token_address=intent.token_address,
                    amount=intent.native_amount,
                    source_wallet=intent.source_wallet,
                    token_data=await self._metadata.get_token_data(
                        intent.token_address, intent.network
                    ),
                ),
            )
            return ReplicationResult(success=True, reason="Track only mode")

        if intent.action == TradeAction.SELL:
            return await self._replicate_sell(user_id, intent, settings)
        return await self._replicate_buy(user_id, intent, settings)

    async def _replicate_sell(
        self, user_id: str, intent: TradeIntent, settings: CopySettings
    ) -> ReplicationResult:
        if not settings.copy_sells:
            return await self._reject(user_id, intent, "Sell copying disabled")
        position = await self._store.get_position(user_id, intent.token_address)
        if position is None:
            return await self._reject(user_id, intent, "No position found to sell")

        request = TradeRequest(
            user_id=user_id,
            trade_type=TradeAction.SELL,
            network=intent.network,
            token_address=intent.token_address,
            sell_percentage=settings.copy_sell_percentage,
            slippage=settings.slippage,
            origin=TradeOrigin.COPY,
            source_wallet=intent.source_wallet,
            source_tx_id=intent.tx_id,
        )
        return await self._submit(request, settings)

    async def _replicate_buy(
        self, user_id: str, intent: TradeIntent, settings: CopySettings
    ) -> ReplicationResult:
        if not settings.multi_buy:
            existing = await self._store.get_position(user_id, intent.token_address)
            if existing is not None:
                return await self._reject(user_id, intent, "Multi-buy disabled for this wallet")

        if not settings.blind_follow:
            safety = run_safety_checks(intent)
            if not safety.passed:
                return await self._reject(user_id, intent, "Safety checks failed", safety.issues)

        token = await self._metadata.get_token_data(intent.token_address, intent.network)
        if token is None:
            return await self._reject(user_id, intent, "Token data not available")
        eligibility = run_auto_buy_checks(token, settings.auto_buy_checks)
        if not eligibility.passed:
            return await self._reject(
                user_id, intent, "Auto-buy checks failed", eligibility.issues, token
            )

        amount = size_buy(intent.native_amount, settings)
        slippage = settings.slippage
        if settings.smart_slippage:
            slippage = smart_slippage(settings.slippage, token)

        rejection = await self._check_funds(user_id, intent, settings, amount)
        if rejection is not None:
            return rejection

        frontrun = settings.frontrun and intent.network in FRONTRUN_NETWORKS
        gas_price = intent.gas_price_gwei
        if frontrun:
            gas_price = frontrun_priority(intent.gas_price_gwei, settings.gas_delta_gwei)

        request = TradeRequest(
            user_id=user_id,
            trade_type=TradeAction.BUY,
            network=intent.network,
            token_address=intent.token_address,
            amount=amount,
            slippage=slippage,
            origin=TradeOrigin.COPY,
            source_wallet=intent.source_wallet,
            source_tx_id=intent.tx_id,
            gas_price_gwei=gas_price,
            frontrun=frontrun,
        )

        if frontrun and gas_price is not None:
            key = self._frontrun.push(request, settings, gas_price)
            logger.info("Queued frontrun buy for %s on %s at %s gwei", user_id, key, gas_price)
            return ReplicationResult(
                success=True, reason="Queued for frontrun", queued=True, request=request
            )
        return await self._submit(request, settings)

    async def _check_funds(
        self,
        user_id: str,
        intent: TradeIntent,
        settings: CopySettings,
        amount: Decimal,
    ) -> ReplicationResult | None:
        wallet = settings.trading_wallets.get(intent.network)
        source = self._balance_sources.get(intent.network)
        if wallet and source is not None:
            balance = await source.get_native_balance(wallet)
            if balance < amount:
                return await self._reject(
                    user_id,
                    intent,
                    "Insufficient balance",
                    (f"Balance {balance} < {amount} {intent.network.native_symbol}",),
                )

        if settings.daily_limit is not None:
            spent = await self._store.get_daily_spent(user_id, datetime.now(UTC).date())
            if spent + amount > settings.daily_limit:
                return await self._reject(
                    user_id,
                    intent,
                    "Daily limit exceeded",
                    (f"Spent {spent} of {settings.daily_limit} today",),
                )
        return None

    async def _submit(self, request: TradeRequest, settings: CopySettings) -> ReplicationResult:
        """Stage the request for confirmation or settle it now."""
        if settings.requires_confirmation:
            pending = await self._workflow.stage(request.user_id, request)
            await self._send(
                request.user_id,
                NotificationEvent(
                    kind=NotificationKind.TRADE_STAGED,
                    network=request.network,
                    action=request.trade_type,
                    token_address=request.token_address,
                    amount=request.amount,
                    source_wallet=request.source_wallet,
                    trade_id=pending.trade_id,
                ),
            )
            return ReplicationResult(
                success=True,
                reason="Awaiting confirmation",
                trade_id=pending.trade_id,
                request=request,
            )

        settlement = await self._settlement.settle(request)
        self._metrics.record(settlement)
        return ReplicationResult(
            success=settlement.success,
            reason="Trade executed" if settlement.success else (
                settlement.execution.error or "Trade execution failed"
            ),
            request=request,
            settlement=settlement,
        )

    async def _reject(
        self,
        user_id: str,
        intent: TradeIntent,
        reason: str,
        details: tuple[str, ...] = (),
        token: TokenData | None = None,
    ) -> ReplicationResult:
        self._metrics.rejected += 1
        logger.info(
            "Copy of %s %s for %s rejected: %s",
            intent.action.value,
            intent.token_address,
            user_id,
            reason,
        )
        await self._send(
            user_id,
            NotificationEvent(
                kind=NotificationKind.TRADE_REJECTED,
                network=intent.network,
                action=intent.action,
                token_address=intent.token_address,
                amount=intent.native_amount,
                reason=reason,
                details=details,
                source_wallet=intent.source_wallet,
                token_data=token,
            ),
        )
        return ReplicationResult(success=False, reason=reason, details=details)

    async def _send(self, user_id: str, event: NotificationEvent) -> None:
        try:
            await self._notifier.notify(user_id, event)
        except Exception as e:
            logger.warning("Notification to %s failed: %s", user_id, e)

    async def stop(self) -> None:
        await self._frontrun.stop()
