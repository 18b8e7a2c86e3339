"""
Monitoring Layer - Alerting and user notifications.

This module provides:
    - AlertManager: Telegram notifications with deduplication
    - Notifier: async notify(user, summary) contract used by the coordinator
    - TelegramNotifier: Notifier backed by AlertManager
    - NullNotifier: Notifier used when no channel is configured
    - ExecutionSummary: What the user is told about an execution

Alert Deduplication:
    - Same alert won't fire repeatedly within cooldown window
    - Different alert types are tracked separately
"""

from .alerting import (
    AlertManager,
    AlertRecord,
    ExecutionSummary,
    NotificationError,
    Notifier,
    NullNotifier,
    TelegramNotifier,
)

__all__ = [
    "AlertManager",
    "AlertRecord",
    "ExecutionSummary",
    "NotificationError",
    "Notifier",
    "NullNotifier",
    "TelegramNotifier",
]
