"""Tests for pre-trade checks."""

from decimal import Decimal

from conftest import SOURCE_WALLET, TOKEN, healthy_token

from copytrade_replicator.models import Network, TokenData, TradeAction, TradeIntent
from copytrade_replicator.trading.checks import (
    run_auto_buy_checks,
    run_safety_checks,
    smart_slippage,
)
from copytrade_replicator.trading.models import AutoBuyChecks


def intent(**overrides) -> TradeIntent:
    values = {
        "source_wallet": SOURCE_WALLET,
        "network": Network.SOLANA,
        "action": TradeAction.BUY,
        "token_address": TOKEN,
        "native_amount": Decimal("1"),
        "tx_id": "sig1",
    }
    values.update(overrides)
    return TradeIntent(**values)


class TestSafetyChecks:
    def test_unknown_fields_pass(self) -> None:
        assert run_safety_checks(intent()).passed

    def test_each_signal_fails(self) -> None:
        result = run_safety_checks(
            intent(mempool_origin="suspicious", tx_verified=False, mev_risk=85.0)
        )

        assert not result.passed
        assert len(result.issues) == 3

    def test_mev_risk_at_limit_passes(self) -> None:
        assert run_safety_checks(intent(mev_risk=70.0)).passed


class TestAutoBuyChecks:
    def test_healthy_token_passes(self) -> None:
        assert run_auto_buy_checks(healthy_token(), AutoBuyChecks()).passed

    def test_thresholds(self) -> None:
        token = TokenData(
            price_usd=Decimal("1"),
            market_cap=Decimal("500"),
            liquidity=Decimal("100"),
            buy_tax=Decimal("12"),
            sell_tax=Decimal("15"),
        )

        result = run_auto_buy_checks(token, AutoBuyChecks())

        assert not result.passed
        assert result.issues[0].startswith("Market cap too low")
        assert any(i.startswith("Liquidity too low") for i in result.issues)
        assert any(i.startswith("Buy tax too high") for i in result.issues)
        assert any(i.startswith("Sell tax too high") for i in result.issues)

    def test_market_cap_ceiling(self) -> None:
        token = TokenData(
            price_usd=Decimal("1"), market_cap=Decimal("200000000"), liquidity=Decimal("10000")
        )

        result = run_auto_buy_checks(token, AutoBuyChecks())

        assert result.issues == ("Market cap too high: $200,000,000",)


class TestSmartSlippage:
    def test_adds_buy_tax_and_thin_liquidity_bump(self) -> None:
        token = TokenData(
            price_usd=Decimal("1"),
            market_cap=Decimal("1000000"),
            liquidity=Decimal("20000"),
            buy_tax=Decimal("3"),
        )

        assert smart_slippage(Decimal("5"), token) == Decimal("13")

    def test_capped(self) -> None:
        token = TokenData(
            price_usd=Decimal("1"),
            market_cap=Decimal("1000000"),
            liquidity=Decimal("1000"),
            buy_tax=Decimal("49"),
        )

        assert smart_slippage(Decimal("5"), token) == Decimal("50")

    def test_without_token_data(self) -> None:
        assert smart_slippage(Decimal("5"), None) == Decimal("5")
