"""Notification message formatter.

Transforms NotificationEvents into Telegram MarkdownV2 and plain text.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from copytrade_replicator.models import Network, NotificationEvent, NotificationKind

EXPLORER_TX_URLS: dict[Network, str] = {
    Network.SOLANA: "https://solscan.io/tx/{tx}",
    Network.ETHEREUM: "https://etherscan.io/tx/{tx}",
    Network.BSC: "https://bscscan.com/tx/{tx}",
}
EXPLORER_TOKEN_URLS: dict[Network, str] = {
    Network.SOLANA: "https://solscan.io/token/{token}",
    Network.ETHEREUM: "https://etherscan.io/token/{token}",
    Network.BSC: "https://bscscan.com/token/{token}",
}

TITLES: dict[NotificationKind, str] = {
    NotificationKind.TRADE_EXECUTED: "✅ Copy Trade Executed",
    NotificationKind.TRADE_FAILED: "❌ Trade Failed",
    NotificationKind.TRADE_REJECTED: "⛔ Copy Trade Skipped",
    NotificationKind.TRADE_STAGED: "⏳ Trade Awaiting Confirmation",
    NotificationKind.TRACK_ONLY: "👀 Tracked Wallet Activity",
    NotificationKind.TRAILING_STOP: "📉 Trailing Stop Triggered",
}

_MARKDOWN_SPECIAL = "_*[]()~`>#+-=|{}.!"


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an address to its head and tail."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def format_amount(amount: Decimal, places: int = 4) -> str:
    """Format a native amount without trailing zeros."""
    text = f"{amount:,.{places}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def escape_markdown(text: str) -> str:
    """Escape special Telegram MarkdownV2 characters."""
    for char in _MARKDOWN_SPECIAL:
        text = text.replace(char, f"\\{char}")
    return text


@dataclass(frozen=True)
class FormattedNotification:
    """A notification rendered for delivery."""

    title: str
    telegram_markdown: str
    plain_text: str
    links: dict[str, str]


class NotificationFormatter:
    """Formats NotificationEvents into user-facing messages."""

    def format(self, event: NotificationEvent) -> FormattedNotification:
        title = TITLES[event.kind]
        fields = self._fields(event)
        links = self._build_links(event)

        md_lines = [f"*{escape_markdown(title)}*", ""]
        md_lines.extend(f"*{escape_markdown(k)}:* {escape_markdown(v)}" for k, v in fields)
        if links:
            md_lines.append("")
            md_lines.extend(
                f"[{escape_markdown(name.title())}]({url})" for name, url in links.items()
            )

        plain_lines = [title, "=" * 30, ""]
        plain_lines.extend(f"{k}: {v}" for k, v in fields)
        if links:
            plain_lines.append("")
            plain_lines.extend(f"{name.title()}: {url}" for name, url in links.items())

        return FormattedNotification(
            title=title,
            telegram_markdown="\n".join(md_lines),
            plain_text="\n".join(plain_lines),
            links=links,
        )

    def _fields(self, event: NotificationEvent) -> list[tuple[str, str]]:
        symbol = event.network.native_symbol
        token = event.token_address
        if event.token_data and event.token_data.symbol:
            token = f"{event.token_data.symbol} ({truncate_address(event.token_address)})"
        else:
            token = truncate_address(token)

        fields: list[tuple[str, str]] = [
            ("Network", event.network.value.upper()),
            ("Action", event.action.value.upper()),
            ("Token", token),
        ]
        if event.source_wallet:
            fields.append(("Source", truncate_address(event.source_wallet)))
        if event.amount is not None:
            fields.append(("Amount", f"{format_amount(event.amount)} {symbol}"))
        if event.dev_fee is not None:
            fields.append(("Fee", f"{format_amount(event.dev_fee)} {symbol}"))
        if event.net_amount is not None:
            fields.append(("Net", f"{format_amount(event.net_amount)} {symbol}"))

        execution = event.execution
        if execution is not None:
            if execution.tokens_received is not None:
                fields.append(("Received", format_amount(execution.tokens_received)))
            if execution.tokens_sold is not None:
                fields.append(("Sold", format_amount(execution.tokens_sold)))
            if execution.executed_price is not None:
                fields.append(("Price", f"${format_amount(execution.executed_price, 8)}"))
            if execution.pnl is not None:
                fields.append(("PnL", f"${format_amount(execution.pnl, 2)}"))
            if execution.error:
                fields.append(("Error", execution.error))

        if event.token_data is not None and event.kind != NotificationKind.TRADE_EXECUTED:
            fields.append(("Market Cap", f"${event.token_data.market_cap:,.0f}"))
            fields.append(("Liquidity", f"${event.token_data.liquidity:,.0f}"))

        if event.reason:
            fields.append(("Reason", event.reason))
        for detail in event.details:
            fields.append(("Detail", detail))
        if event.trade_id:
            fields.append(("Trade ID", event.trade_id))
        return fields

    def _build_links(self, event: NotificationEvent) -> dict[str, str]:
        links: dict[str, str] = {}
        if event.execution is not None and event.execution.tx_hash:
            links["transaction"] = EXPLORER_TX_URLS[event.network].format(
                tx=event.execution.tx_hash
            )
        if event.token_address and event.token_address != "Unknown":
            links["token"] = EXPLORER_TOKEN_URLS[event.network].format(
                token=event.token_address
            )
        return links
