"""Trade execution contract and a dry-run implementation."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Protocol

from copytrade_replicator.metadata import TokenMetadataProvider
from copytrade_replicator.models import ExecutionResult, Network

logger = logging.getLogger(__name__)


class TradeExecutor(Protocol):
    """Signs, routes and broadcasts swaps on behalf of a user."""

    async def execute_buy(self, user_id: str, params: dict[str, Any]) -> ExecutionResult: ...

    async def execute_sell(self, user_id: str, params: dict[str, Any]) -> ExecutionResult: ...


class DryRunExecutor:
    """Simulates fills at the current metadata price without touching a chain.

    Buys receive ``amount / price`` tokens. Sells report the percentage of
    the position the caller passes as ``position_amount``.
    """

    def __init__(self, metadata: TokenMetadataProvider) -> None:
        self._metadata = metadata
        self._counter = 0

    def _next_hash(self, prefix: str) -> str:
        self._counter += 1
        return f"dryrun-{prefix}-{self._counter}"

    async def _price(self, params: dict[str, Any]) -> Decimal | None:
        data = await self._metadata.get_token_data(
            params["token_address"], Network(params["network"])
        )
        if data is None or data.price_usd <= 0:
            return None
        return data.price_usd

    async def execute_buy(self, user_id: str, params: dict[str, Any]) -> ExecutionResult:
        price = await self._price(params)
        if price is None:
            return ExecutionResult.failure("No price available for token")
        amount = Decimal(str(params["amount"]))
        tokens = amount / price
        logger.info(
            "[DRY RUN] Buy %s %s of %s for user %s",
            amount,
            params["network"],
            params["token_address"],
            user_id,
        )
        return ExecutionResult(
            success=True,
            tx_hash=self._next_hash("buy"),
            tokens_received=tokens,
            executed_price=price,
        )

    async def execute_sell(self, user_id: str, params: dict[str, Any]) -> ExecutionResult:
        price = await self._price(params)
        if price is None:
            return ExecutionResult.failure("No price available for token")
        held = Decimal(str(params.get("position_amount", "0")))
        percentage = Decimal(str(params.get("percentage", "100")))
        sold = held * percentage / Decimal("100")
        logger.info(
            "[DRY RUN] Sell %s%% of %s for user %s",
            percentage,
            params["token_address"],
            user_id,
        )
        return ExecutionResult(
            success=True,
            tx_hash=self._next_hash("sell"),
            tokens_sold=sold,
            executed_price=price,
        )
