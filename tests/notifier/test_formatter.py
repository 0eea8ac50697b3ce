"""Tests for notification formatting."""

from decimal import Decimal

from copytrade_replicator.models import (
    ExecutionResult,
    Network,
    NotificationEvent,
    NotificationKind,
    TokenData,
    TradeAction,
)
from copytrade_replicator.notifier.formatter import (
    NotificationFormatter,
    escape_markdown,
    format_amount,
    truncate_address,
)

TOKEN = "EPjFWr6bLqVgZ5mN8dT4cR3yH2xK9pQ1sA7uJ6wE5iO"
SOURCE = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


def test_truncate_address() -> None:
    assert truncate_address(TOKEN) == "EPjFWr...E5iO"
    assert truncate_address("short") == "short"


def test_format_amount() -> None:
    assert format_amount(Decimal("1.50000")) == "1.5"
    assert format_amount(Decimal("1234")) == "1,234"
    assert format_amount(Decimal("0.123456789"), 8) == "0.12345679"


def test_escape_markdown() -> None:
    assert escape_markdown("1.5 (SOL)") == "1\\.5 \\(SOL\\)"


class TestNotificationFormatter:
    def test_executed_buy(self) -> None:
        event = NotificationEvent(
            kind=NotificationKind.TRADE_EXECUTED,
            network=Network.SOLANA,
            action=TradeAction.BUY,
            token_address=TOKEN,
            amount=Decimal("1"),
            source_wallet=SOURCE,
            execution=ExecutionResult(
                success=True,
                tx_hash="5abc",
                tokens_received=Decimal("1.94"),
                executed_price=Decimal("0.5"),
            ),
            dev_fee=Decimal("0.03"),
            net_amount=Decimal("0.97"),
        )

        message = NotificationFormatter().format(event)

        assert message.title == "✅ Copy Trade Executed"
        assert "Amount: 1 SOL" in message.plain_text
        assert "Fee: 0.03 SOL" in message.plain_text
        assert "Net: 0.97 SOL" in message.plain_text
        assert "Received: 1.94" in message.plain_text
        assert message.links == {
            "transaction": "https://solscan.io/tx/5abc",
            "token": f"https://solscan.io/token/{TOKEN}",
        }
        assert "*Fee:* 0\\.03 SOL" in message.telegram_markdown

    def test_rejection_with_token_data(self) -> None:
        event = NotificationEvent(
            kind=NotificationKind.TRADE_REJECTED,
            network=Network.BSC,
            action=TradeAction.BUY,
            token_address=TOKEN,
            reason="Auto-buy checks failed",
            details=("Liquidity too low: $10",),
            token_data=TokenData(
                price_usd=Decimal("1"),
                market_cap=Decimal("25000"),
                liquidity=Decimal("10"),
                symbol="PEPE",
            ),
        )

        message = NotificationFormatter().format(event)

        assert "Token: PEPE (EPjFWr...E5iO)" in message.plain_text
        assert "Market Cap: $25,000" in message.plain_text
        assert "Reason: Auto-buy checks failed" in message.plain_text
        assert "Detail: Liquidity too low: $10" in message.plain_text
        assert message.links["token"] == f"https://bscscan.com/token/{TOKEN}"

    def test_staged_trade_shows_id(self) -> None:
        event = NotificationEvent(
            kind=NotificationKind.TRADE_STAGED,
            network=Network.ETHEREUM,
            action=TradeAction.SELL,
            token_address="Unknown",
            trade_id="trade_u1_1_1",
        )

        message = NotificationFormatter().format(event)

        assert "Trade ID: trade_u1_1_1" in message.plain_text
        assert message.links == {}
