"""
Storage layer test fixtures.

Repository tests mock the Database; the in-memory store is exercised
directly.
"""
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from trigger_bot.storage.models import (
    PriceOperator,
    SimplePredicate,
    TradeSide,
    Trigger,
    UserIdentity,
)


@pytest.fixture
def mock_db():
    """Mock database for unit tests."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)

    # transaction() yields a connection-like object
    mock_conn = AsyncMock()
    mock_conn.execute = AsyncMock(return_value="SELECT 1")
    mock_conn.fetchrow = AsyncMock(return_value=None)
    mock_conn.fetchval = AsyncMock(return_value=None)

    class MockTransaction:
        async def __aenter__(self):
            return mock_conn

        async def __aexit__(self, *args):
            pass

    db.transaction = MagicMock(side_effect=lambda: MockTransaction())
    # Store mock_conn on db for tests that need to customize it
    db._mock_conn = mock_conn

    return db


@pytest.fixture
def user():
    return UserIdentity(
        user_id="user-1",
        wallet_address="0xabc",
        email="trader@example.com",
        telegram_chat_id="12345",
    )


@pytest.fixture
def make_trigger(user):
    """Factory for ACTIVE simple triggers."""
    counter = {"n": 0}

    def _make(**overrides) -> Trigger:
        counter["n"] += 1
        fields = {
            "id": f"trig-{counter['n']}",
            "user": user,
            "symbol": "ETH",
            "side": TradeSide.BUY,
            "amount": Decimal("100"),
            "predicate": SimplePredicate(
                operator=PriceOperator.BELOW, target_price=Decimal("3000")
            ),
            "created_at": datetime(2024, 1, 1, 0, counter["n"], tzinfo=timezone.utc),
        }
        fields.update(overrides)
        return Trigger(**fields)

    return _make


@pytest.fixture
def trigger_row():
    """A joined triggers/users row as TriggerRepository reads it."""

    def _row(**overrides) -> dict:
        row = {
            "id": "trig-1",
            "symbol": "ETH",
            "side": "BUY",
            "amount": Decimal("100"),
            "condition": "BELOW",
            "target_price": Decimal("3000"),
            "smart_conditions": None,
            "slippage": Decimal("5"),
            "status": "ACTIVE",
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "updated_at": None,
            "user_id": "user-1",
            "wallet_address": "0xabc",
            "email": None,
            "telegram_chat_id": None,
        }
        row.update(overrides)
        return row

    return _row


@pytest.fixture
def execution_row():
    def _row(**overrides) -> dict:
        row = {
            "id": "exec-1",
            "trigger_id": "trig-1",
            "symbol": "ETH",
            "side": "BUY",
            "amount": Decimal("100"),
            "observed_price": Decimal("2990"),
            "status": "PENDING",
            "tx_reference": None,
            "error_detail": None,
            "executed_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "finalized_at": None,
        }
        row.update(overrides)
        return row

    return _row
