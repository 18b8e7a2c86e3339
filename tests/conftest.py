"""
Shared test fixtures for end-to-end and integration tests.

This file provides fixtures that span multiple components, unlike the
component-specific fixtures in src/trigger_bot/{component}/tests/conftest.py.
Every external service is faked: prices come from a scripted feed and
settlement goes through the paper executor unless a test swaps it.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List
from unittest.mock import AsyncMock

import pytest

from trigger_bot.core import SchedulerConfig, SchedulerLoop, TriggerEngine
from trigger_bot.execution import ExecutionCoordinator, PaperSwapExecutor
from trigger_bot.market import MetricCache, MetricProviderSet
from trigger_bot.storage import InMemoryTriggerStore, MetricKind
from trigger_bot.storage.models import (
    PriceOperator,
    SimplePredicate,
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


class ScriptedPriceFeed:
    """
    Price source that replays one price per tick.

    set_tick(n) selects which scripted price every symbol reports.
    """

    def __init__(self, prices: Dict[str, List[str]]):
        self._prices = {s.upper(): [Decimal(p) for p in ps] for s, ps in prices.items()}
        self.tick = 0
        self.calls = 0

    async def get_price(self, symbol: str) -> Decimal:
        self.calls += 1
        series = self._prices[symbol.upper()]
        return series[min(self.tick, len(series) - 1)]


class Harness:
    """A fully wired engine over the in-memory store."""

    def __init__(self, feed: ScriptedPriceFeed, executor=None, notifier=None):
        self.clock = ManualClock()
        self.feed = feed
        self.store = InMemoryTriggerStore()
        self.executor = executor or PaperSwapExecutor()
        self.notifier = notifier or AsyncMock()

        providers = MetricProviderSet({
            MetricKind.PRICE: feed.get_price,
            MetricKind.RSI: AsyncMock(return_value=Decimal("50")),
            MetricKind.VOLUME: AsyncMock(return_value=Decimal("1000000")),
            MetricKind.MA: AsyncMock(return_value=Decimal("3000")),
            MetricKind.SENTIMENT: AsyncMock(return_value=Decimal("50")),
            MetricKind.GAS: AsyncMock(return_value=Decimal("10")),
        })
        self.cache = MetricCache(providers, clock=self.clock)
        self.coordinator = ExecutionCoordinator(self.store, self.executor, notifier=self.notifier)
        self.engine = TriggerEngine(self.store, self.cache, self.coordinator)
        self.scheduler = SchedulerLoop(
            self.engine, SchedulerConfig(inter_trigger_delay_seconds=0)
        )

    async def run_ticks(self, count: int, seconds_apart: float = 30) -> list:
        """Run `count` ticks, advancing the feed and the clock between them."""
        results = []
        for n in range(count):
            self.feed.tick = n
            results.append(await self.scheduler.run_tick())
            self.clock.advance(seconds_apart)
        return results


@pytest.fixture
def user():
    return UserIdentity(user_id="user-1", wallet_address="0xabc", telegram_chat_id="777")


@pytest.fixture
def make_trigger(user):
    counter = {"n": 0}

    def _make(
        operator: str = "BELOW",
        target: str = "3000",
        symbol: str = "ETH",
        side: TradeSide = TradeSide.BUY,
        **overrides,
    ) -> Trigger:
        counter["n"] += 1
        fields = {
            "id": f"trigger-{counter['n']:04d}",
            "user": user,
            "symbol": symbol,
            "side": side,
            "amount": Decimal("100"),
            "predicate": SimplePredicate(
                operator=PriceOperator(operator), target_price=Decimal(target)
            ),
            "created_at": datetime(2024, 1, 1, 0, counter["n"], tzinfo=timezone.utc),
        }
        fields.update(overrides)
        return Trigger(**fields)

    return _make


@pytest.fixture
def harness_factory():
    def _build(prices: Dict[str, List[str]], executor=None, notifier=None) -> Harness:
        return Harness(ScriptedPriceFeed(prices), executor=executor, notifier=notifier)

    return _build
