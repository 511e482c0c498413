"""Notifications for newly synced transactions."""

from __future__ import annotations

from banksync.adapters.notifications.email import (
    EmailResult,
    LogOnlyNotifier,
    NotificationError,
    ResendTransactionNotifier,
    render_notification,
)

__all__ = [
    "EmailResult",
    "LogOnlyNotifier",
    "NotificationError",
    "ResendTransactionNotifier",
    "render_notification",
]
