"""
Metric samples and metric fetch errors.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from trigger_bot.storage.models import MetricKind


@dataclass(frozen=True)
class MetricSample:
    """A metric value as observed at fetched_at. Never persisted."""

    metric: MetricKind
    symbol: str
    value: Decimal
    fetched_at: datetime


class MetricFetchError(Exception):
    """A metric provider could not produce a value."""

    def __init__(
        self,
        metric: MetricKind,
        symbol: str,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        self.metric = metric
        self.symbol = symbol
        self.cause = cause
        super().__init__(f"{metric.value}/{symbol}: {message}")


class MetricUnavailableError(MetricFetchError):
    """No data source is wired for this metric."""

    def __init__(self, metric: MetricKind, symbol: str):
        super().__init__(metric, symbol, "no provider configured")
