"""Notification sinks: Telegram Bot API and a logging fallback."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from copytrade_replicator.models import NotificationEvent
from copytrade_replicator.notifier.formatter import NotificationFormatter

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
DEFAULT_TIMEOUT_SECONDS = 30.0


class NotificationSink(Protocol):
    """Delivers user-facing events. Must not raise on delivery failure."""

    async def notify(self, user_id: str, event: NotificationEvent) -> bool: ...


class LoggingNotifier:
    """Writes notifications to the log. Used when no channel is configured."""

    def __init__(self, formatter: NotificationFormatter | None = None) -> None:
        self._formatter = formatter or NotificationFormatter()

    async def notify(self, user_id: str, event: NotificationEvent) -> bool:
        message = self._formatter.format(event)
        logger.info("Notification for %s:\n%s", user_id, message.plain_text)
        return True


class TelegramNotifier:
    """Sends notifications with ``sendMessage``; the user id is the chat id."""

    def __init__(
        self,
        bot_token: str,
        *,
        formatter: NotificationFormatter | None = None,
        api_base: str = TELEGRAM_API_BASE,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = f"{api_base.rstrip('/')}/bot{bot_token}/sendMessage"
        self._formatter = formatter or NotificationFormatter()
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def notify(self, user_id: str, event: NotificationEvent) -> bool:
        message = self._formatter.format(event)
        payload = {
            "chat_id": user_id,
            "text": message.telegram_markdown,
            "parse_mode": "MarkdownV2",
            "disable_web_page_preview": True,
        }
        try:
            response = await self._http.post(self._url, json=payload)
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Telegram delivery to %s failed: %s", user_id, e)
            return False

        if response.status_code != 200 or not body.get("ok"):
            logger.warning(
                "Telegram rejected message to %s: %s",
                user_id,
                body.get("description", response.status_code),
            )
            return False
        return True

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
