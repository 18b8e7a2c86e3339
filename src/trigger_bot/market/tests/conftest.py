"""
Market layer test fixtures.

Providers are plain async callables, so tests count calls on AsyncMocks
and drive time through a manual clock.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

from trigger_bot.market import MetricProviderSet
from trigger_bot.storage.models import MetricKind


class ManualClock:
    """Clock the test advances explicitly."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def provider_mocks():
    """One AsyncMock per metric, each returning a fixed value."""
    return {
        MetricKind.PRICE: AsyncMock(return_value=Decimal("50000")),
        MetricKind.RSI: AsyncMock(return_value=Decimal("45")),
        MetricKind.VOLUME: AsyncMock(return_value=Decimal("1000000")),
        MetricKind.MA: AsyncMock(return_value=Decimal("48000")),
        MetricKind.SENTIMENT: AsyncMock(return_value=Decimal("20")),
        MetricKind.GAS: AsyncMock(return_value=Decimal("12")),
    }


@pytest.fixture
def providers(provider_mocks):
    return MetricProviderSet(provider_mocks)
