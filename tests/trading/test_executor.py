"""Tests for the dry-run executor."""

from decimal import Decimal

import pytest
from conftest import TOKEN, StaticMetadata, healthy_token

from copytrade_replicator.trading.executor import DryRunExecutor


class TestDryRunExecutor:
    @pytest.mark.asyncio
    async def test_buy_fills_at_market_price(self) -> None:
        executor = DryRunExecutor(StaticMetadata({TOKEN: healthy_token("0.25")}))

        result = await executor.execute_buy(
            "u1", {"token_address": TOKEN, "network": "solana", "amount": Decimal("1")}
        )

        assert result.success
        assert result.tokens_received == Decimal("4")
        assert result.executed_price == Decimal("0.25")
        assert result.tx_hash == "dryrun-buy-1"

    @pytest.mark.asyncio
    async def test_sell_uses_position_amount(self) -> None:
        executor = DryRunExecutor(StaticMetadata({TOKEN: healthy_token()}))

        result = await executor.execute_sell(
            "u1",
            {
                "token_address": TOKEN,
                "network": "ethereum",
                "percentage": Decimal("25"),
                "position_amount": Decimal("8"),
            },
        )

        assert result.tokens_sold == Decimal("2")
        assert result.tx_hash == "dryrun-sell-1"

    @pytest.mark.asyncio
    async def test_unpriced_token_fails(self) -> None:
        executor = DryRunExecutor(StaticMetadata())

        result = await executor.execute_buy(
            "u1", {"token_address": TOKEN, "network": "bsc", "amount": Decimal("1")}
        )

        assert not result.success
        assert result.error == "No price available for token"
