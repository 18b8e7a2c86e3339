"""
Alert Manager for Telegram notifications, and the execution notifier.

AlertManager sends operator and user alerts with deduplication to prevent
spam. Notifiers adapt it to the engine's best-effort notify() call: the
coordinator logs and swallows every notifier error.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import requests

from trigger_bot.storage.models import TradeSide, UserIdentity

logger = logging.getLogger(__name__)


@dataclass
class AlertRecord:
    """Tracks when an alert was last sent."""

    key: str
    last_sent: float  # Unix timestamp
    count: int = 1


@dataclass(frozen=True)
class ExecutionSummary:
    """What the user is told about a completed execution."""

    trigger_id: str
    execution_id: str
    symbol: str
    side: TradeSide
    amount: Decimal
    observed_price: Decimal
    tx_reference: str
    executed_at: datetime


class NotificationError(Exception):
    """A notification could not be delivered."""


class Notifier(Protocol):
    async def notify(self, user: UserIdentity, summary: ExecutionSummary) -> None:
        """
        Tell the user about an execution.

        Raises:
            NotificationError: (or anything else) if delivery failed
        """
        ...


class AlertManager:
    """
    Manages alerts with deduplication.

    Sends alerts via Telegram and prevents duplicate alerts
    within a cooldown window.

    Usage:
        manager = AlertManager(
            telegram_bot_token="...",
            telegram_chat_id="...",
        )

        # Send alert
        manager.send_alert(
            title="Scheduler Stalled",
            message="No tick in 5 minutes",
            dedup_key="scheduler_stalled",
        )

        # Specialized alerts
        manager.alert_trigger_executed(summary, chat_id=user.telegram_chat_id)
        manager.alert_health_issue("database", "UNHEALTHY", "Connection lost")
    """

    DEFAULT_COOLDOWN = 300  # 5 minutes

    def __init__(
        self,
        telegram_bot_token: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
        default_cooldown: int = DEFAULT_COOLDOWN,
        _telegram_api: Optional[Any] = None,  # For testing
    ) -> None:
        """
        Initialize the alert manager.

        Args:
            telegram_bot_token: Bot token from @BotFather
            telegram_chat_id: Default (operator) chat to send messages to
            default_cooldown: Default cooldown between duplicate alerts
            _telegram_api: Injected API client for testing
        """
        self._bot_token = telegram_bot_token
        self._chat_id = telegram_chat_id
        self._default_cooldown = default_cooldown
        self._telegram_api = _telegram_api

        self._sent_alerts: Dict[str, AlertRecord] = {}

    def send_alert(
        self,
        title: str,
        message: str,
        dedup_key: Optional[str] = None,
        cooldown_seconds: Optional[int] = None,
        priority: str = "normal",
        chat_id: Optional[str] = None,
    ) -> bool:
        """
        Send an alert via Telegram.

        Args:
            title: Alert title
            message: Alert message body
            dedup_key: Key for deduplication (None to skip dedup)
            cooldown_seconds: Cooldown for this specific alert
            priority: Priority level ("low", "normal", "high", "critical")
            chat_id: Recipient chat, defaults to the operator chat

        Returns:
            True if alert was sent, False if deduplicated or failed
        """
        if dedup_key:
            cooldown = cooldown_seconds or self._default_cooldown
            if not self._should_send(dedup_key, cooldown):
                logger.debug(f"Deduplicated alert: {dedup_key}")
                return False

        formatted = self._format_message(title, message, priority)
        success = self._send_telegram(formatted, chat_id or self._chat_id)

        if dedup_key and success:
            self._record_sent(dedup_key)

        return success

    def alert_trigger_executed(
        self,
        summary: ExecutionSummary,
        chat_id: Optional[str] = None,
    ) -> bool:
        """Tell the trigger owner their swap went through."""
        emoji = "🟢" if summary.side is TradeSide.BUY else "🔴"
        title = f"{emoji} Trigger Executed"

        message = f"""
Side: {summary.side.value}
Symbol: {summary.symbol}
Amount: {summary.amount}
Price: ${summary.observed_price}
Tx: {summary.tx_reference}
Time: {summary.executed_at.isoformat()}
"""

        return self.send_alert(
            title=title,
            message=message,
            dedup_key=f"executed_{summary.execution_id}",
            cooldown_seconds=3600,
            priority="normal",
            chat_id=chat_id,
        )

    def alert_trigger_failed(
        self,
        trigger_id: str,
        symbol: str,
        error_detail: str,
    ) -> bool:
        """Operator alert for a trigger moved to FAILED."""
        title = "⛔ Trigger Failed"

        message = f"""
Trigger: {trigger_id}
Symbol: {symbol}
Error: {error_detail}
"""

        return self.send_alert(
            title=title,
            message=message,
            dedup_key=f"failed_{trigger_id}",
            cooldown_seconds=3600,
            priority="high",
        )

    def alert_health_issue(
        self,
        component: str,
        status: str,
        message: str,
    ) -> bool:
        """
        Send a health issue alert.

        Args:
            component: Component name (database, scheduler, etc.)
            status: Health status (UNHEALTHY, DEGRADED, etc.)
            message: Description of the issue

        Returns:
            True if sent
        """
        emoji = "🔴" if status.upper() == "UNHEALTHY" else "🟡"
        title = f"{emoji} Health Issue: {component}"

        formatted_message = f"""
Component: {component}
Status: {status}
Details: {message}
Time: {datetime.now(timezone.utc).isoformat()}
"""

        return self.send_alert(
            title=title,
            message=formatted_message,
            dedup_key=f"health_{component}_{status}",
            cooldown_seconds=300,
            priority="high" if status.upper() == "UNHEALTHY" else "normal",
        )

    def _should_send(self, key: str, cooldown: int) -> bool:
        """Check if alert should be sent based on cooldown."""
        if key not in self._sent_alerts:
            return True

        record = self._sent_alerts[key]
        return (time.time() - record.last_sent) >= cooldown

    def _record_sent(self, key: str) -> None:
        now = time.time()

        if key in self._sent_alerts:
            self._sent_alerts[key].last_sent = now
            self._sent_alerts[key].count += 1
        else:
            self._sent_alerts[key] = AlertRecord(key=key, last_sent=now)

    def _format_message(
        self,
        title: str,
        message: str,
        priority: str,
    ) -> str:
        """Format alert message for Telegram."""
        priority_markers = {
            "critical": "🚨🚨🚨",
            "high": "⚠️",
            "normal": "",
            "low": "ℹ️",
        }

        marker = priority_markers.get(priority, "")
        header = f"{marker} *{title}*" if marker else f"*{title}*"

        return f"{header}\n\n{message.strip()}"

    def _send_telegram(self, text: str, chat_id: Optional[str]) -> bool:
        """Send message via Telegram API."""
        # Use injected API for testing
        if self._telegram_api:
            try:
                self._telegram_api.send_message(
                    chat_id=chat_id,
                    text=text,
                    parse_mode="Markdown",
                )
                return True
            except Exception as e:
                logger.error(f"Telegram API error: {e}")
                return False

        if not self._bot_token or not chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        try:
            url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
            payload = {
                "chat_id": chat_id,
                "text": text,
                "parse_mode": "Markdown",
            }

            response = requests.post(url, json=payload, timeout=10)
            response.raise_for_status()

            logger.info(f"Sent Telegram alert: {text[:50]}...")
            return True

        except requests.RequestException as e:
            logger.error(f"Failed to send Telegram alert: {e}")
            return False

    def clear_dedup_cache(self) -> None:
        self._sent_alerts.clear()

    def get_alert_stats(self) -> Dict[str, int]:
        return {
            "unique_alerts": len(self._sent_alerts),
            "total_sent": sum(r.count for r in self._sent_alerts.values()),
        }


class TelegramNotifier:
    """
    Notifier backed by AlertManager.

    The blocking Telegram call runs in a worker thread. Users with a
    telegram_chat_id are messaged directly; everyone else falls back to the
    operator chat.
    """

    def __init__(self, alerts: AlertManager) -> None:
        self._alerts = alerts

    @property
    def alerts(self) -> AlertManager:
        return self._alerts

    async def notify(self, user: UserIdentity, summary: ExecutionSummary) -> None:
        sent = await asyncio.to_thread(
            self._alerts.alert_trigger_executed, summary, user.telegram_chat_id
        )
        if not sent:
            raise NotificationError(
                f"Execution notice for trigger {summary.trigger_id} was not delivered"
            )


class NullNotifier:
    """Used when no notification channel is configured."""

    async def notify(self, user: UserIdentity, summary: ExecutionSummary) -> None:
        logger.debug(f"No notifier configured; skipping notice for trigger {summary.trigger_id}")
