"""
Core layer test fixtures.

Metrics come from AsyncMock providers behind a real MetricCache, triggers
live in the in-memory store, and settlement goes through the paper
executor unless a test swaps it out.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

from trigger_bot.core import ConditionEvaluator, SchedulerConfig, SchedulerLoop, TriggerEngine
from trigger_bot.execution import ExecutionCoordinator, PaperSwapExecutor
from trigger_bot.market import MetricCache, MetricProviderSet
from trigger_bot.storage import InMemoryTriggerStore
from trigger_bot.storage.models import (
    ConditionOperator,
    MetricKind,
    PriceOperator,
    SimplePredicate,
    SmartCondition,
    SmartPredicate,
    TradeSide,
    Trigger,
    UserIdentity,
)


class ManualClock:
    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# =============================================================================
# Market Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def provider_mocks():
    return {
        MetricKind.PRICE: AsyncMock(return_value=Decimal("3100")),
        MetricKind.RSI: AsyncMock(return_value=Decimal("45")),
        MetricKind.VOLUME: AsyncMock(return_value=Decimal("1000000")),
        MetricKind.MA: AsyncMock(return_value=Decimal("3000")),
        MetricKind.SENTIMENT: AsyncMock(return_value=Decimal("50")),
        MetricKind.GAS: AsyncMock(return_value=Decimal("12")),
    }


@pytest.fixture
def price_batch():
    """Batch price source; empty unless a test sets its return value."""
    return AsyncMock(return_value={})


@pytest.fixture
def cache(provider_mocks, clock):
    return MetricCache(MetricProviderSet(provider_mocks), clock=clock)


@pytest.fixture
def batch_cache(provider_mocks, price_batch, clock):
    providers = MetricProviderSet(provider_mocks, price_batch=price_batch)
    return MetricCache(providers, clock=clock)


@pytest.fixture
def evaluator(cache):
    return ConditionEvaluator(cache)


# =============================================================================
# Trigger Fixtures
# =============================================================================


@pytest.fixture
def user():
    return UserIdentity(user_id="user-1", wallet_address="0xabc")


@pytest.fixture
def make_trigger(user):
    """Factory: BUY 100 ETH BELOW 3000 unless overridden."""
    counter = {"n": 0}

    def _make(**overrides) -> Trigger:
        counter["n"] += 1
        fields = {
            "id": f"trig-{counter['n']:04d}",
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
def smart():
    """Build a SmartPredicate from (metric, operator, value) tuples."""

    def _smart(*conditions) -> SmartPredicate:
        return SmartPredicate(
            conditions=tuple(
                SmartCondition(
                    metric=MetricKind(metric),
                    operator=ConditionOperator(operator),
                    value=Decimal(str(value)),
                )
                for metric, operator, value in conditions
            )
        )

    return _smart


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def store():
    return InMemoryTriggerStore()


@pytest.fixture
def executor():
    return PaperSwapExecutor()


@pytest.fixture
def engine(store, cache, executor):
    return TriggerEngine(store, cache, ExecutionCoordinator(store, executor))


@pytest.fixture
def scheduler(engine):
    return SchedulerLoop(engine, SchedulerConfig(inter_trigger_delay_seconds=0))
