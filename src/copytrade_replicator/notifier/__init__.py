"""User notifications."""

from copytrade_replicator.notifier.formatter import (
    FormattedNotification,
    NotificationFormatter,
    truncate_address,
)
from copytrade_replicator.notifier.telegram import (
    LoggingNotifier,
    NotificationSink,
    TelegramNotifier,
)

__all__ = [
    "FormattedNotification",
    "LoggingNotifier",
    "NotificationFormatter",
    "NotificationSink",
    "TelegramNotifier",
    "truncate_address",
]
