"""
Monitoring layer test fixtures.

Telegram is always mocked through AlertManager's injected API.
"""
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from trigger_bot.monitoring import AlertManager, ExecutionSummary
from trigger_bot.storage.models import TradeSide, UserIdentity


@pytest.fixture
def mock_telegram_api():
    """Mock Telegram Bot API."""
    api = MagicMock()
    api.send_message = MagicMock(return_value={"ok": True})
    return api


@pytest.fixture
def alert_manager(mock_telegram_api):
    """AlertManager with mocked Telegram."""
    return AlertManager(
        telegram_bot_token="test_token",
        telegram_chat_id="operator_chat",
        _telegram_api=mock_telegram_api,
    )


@pytest.fixture
def summary():
    return ExecutionSummary(
        trigger_id="trig-1",
        execution_id="exec-1",
        symbol="ETH",
        side=TradeSide.BUY,
        amount=Decimal("100"),
        observed_price=Decimal("2990"),
        tx_reference="0xtx",
        executed_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def user():
    return UserIdentity(user_id="user-1", wallet_address="0xabc", telegram_chat_id="user_chat")
