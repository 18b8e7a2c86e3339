"""
Execution layer test fixtures.

Settlement goes through fake executors defined in the test modules. Tests
never hit a real settlement service.
"""
import pytest
from datetime import datetime, timezone
from decimal import Decimal

from trigger_bot.storage import InMemoryTriggerStore
from trigger_bot.storage.models import (
    PriceOperator,
    SimplePredicate,
    TradeSide,
    Trigger,
    UserIdentity,
)


@pytest.fixture
def user():
    return UserIdentity(
        user_id="user-1",
        wallet_address="0xabc",
        telegram_chat_id="12345",
    )


@pytest.fixture
def trigger(user):
    return Trigger(
        id="trig-0001-eth",
        user=user,
        symbol="ETH",
        side=TradeSide.BUY,
        amount=Decimal("100"),
        predicate=SimplePredicate(operator=PriceOperator.BELOW, target_price=Decimal("3000")),
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def store(trigger):
    return InMemoryTriggerStore([trigger])
