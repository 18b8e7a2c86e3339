"""
MetricCache - per-(metric, symbol) memoization with single-flight fetches.

Each metric has its own time-to-live reflecting how often its source really
changes. Concurrent callers asking for the same key while a fetch is in
flight share that fetch instead of hitting the provider again.

Provider failures are never cached: the error goes to every waiter of the
failed fetch and the next call goes straight back to the provider. Expired
samples are never served, not even when the provider is failing.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Dict, Optional, Tuple

from trigger_bot.storage.models import MetricKind

from .models import MetricSample

if TYPE_CHECKING:
    from .providers import MetricProviderSet

logger = logging.getLogger(__name__)

CacheKey = Tuple[MetricKind, str]


def default_ttls() -> Dict[MetricKind, float]:
    """Seconds each metric stays fresh."""
    return {
        MetricKind.PRICE: 10.0,
        MetricKind.GAS: 15.0,
        MetricKind.RSI: 60.0,
        MetricKind.MA: 60.0,
        MetricKind.VOLUME: 60.0,
        MetricKind.SENTIMENT: 30 * 60.0,
    }


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MetricCacheConfig:
    """TTL per metric. Missing entries fall back to the defaults."""

    ttl_seconds: Dict[MetricKind, float] = field(default_factory=default_ttls)

    def ttl_for(self, metric: MetricKind) -> float:
        if metric in self.ttl_seconds:
            return self.ttl_seconds[metric]
        return default_ttls()[metric]


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    shared: int = 0  # callers that joined an in-flight fetch
    errors: int = 0


class MetricCache:
    """
    Concurrency-safe metric cache.

    Usage:
        cache = MetricCache(providers)
        rsi = await cache.get(MetricKind.RSI, "BTC")

        # Seed from a batch call
        cache.store(MetricSample(MetricKind.PRICE, "ETH", Decimal("2990"), now))
    """

    def __init__(
        self,
        providers: "MetricProviderSet",
        config: Optional[MetricCacheConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._providers = providers
        self._config = config or MetricCacheConfig()
        self._clock = clock

        self._samples: Dict[CacheKey, MetricSample] = {}
        self._inflight: Dict[CacheKey, asyncio.Task] = {}
        self._stats = CacheStats()

    @property
    def providers(self) -> "MetricProviderSet":
        return self._providers

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def now(self) -> datetime:
        return self._clock()

    @staticmethod
    def _key(metric: MetricKind, symbol: str) -> CacheKey:
        return metric, symbol.upper()

    def is_fresh(self, sample: MetricSample) -> bool:
        """True while the sample is younger than its metric TTL."""
        age = (self._clock() - sample.fetched_at).total_seconds()
        return age < self._config.ttl_for(sample.metric)

    def peek(self, metric: MetricKind, symbol: str) -> Optional[MetricSample]:
        """Fresh cached sample, or None. Never calls a provider."""
        sample = self._samples.get(self._key(metric, symbol))
        if sample is not None and self.is_fresh(sample):
            return sample
        return None

    def hinted_value(
        self, hint: Optional[MetricSample], metric: MetricKind, symbol: str
    ) -> Optional[Decimal]:
        """
        Value of a caller-supplied sample if it may stand in for a lookup.

        The hint must match (metric, symbol) and still be fresh. A newer
        fresh cached sample wins over it. None means "ask the cache".
        """
        if hint is None or hint.metric is not metric or hint.symbol.upper() != symbol.upper():
            return None
        if not self.is_fresh(hint):
            return None
        cached = self.peek(metric, symbol)
        if cached is not None and cached.fetched_at > hint.fetched_at:
            return cached.value
        return hint.value

    def store(self, sample: MetricSample) -> None:
        """Seed the cache, keeping whichever sample is newer."""
        key = self._key(sample.metric, sample.symbol)
        current = self._samples.get(key)
        if current is None or current.fetched_at <= sample.fetched_at:
            self._samples[key] = sample

    def invalidate(self, metric: Optional[MetricKind] = None, symbol: Optional[str] = None) -> None:
        """Drop cached samples matching the given metric and/or symbol."""
        wanted_symbol = symbol.upper() if symbol else None
        for key in list(self._samples):
            if metric is not None and key[0] is not metric:
                continue
            if wanted_symbol is not None and key[1] != wanted_symbol:
                continue
            del self._samples[key]

    async def get(self, metric: MetricKind, symbol: str) -> Decimal:
        """
        Current value for (metric, symbol).

        Raises:
            MetricFetchError: if the provider failed (not cached)
        """
        sample = await self.get_sample(metric, symbol)
        return sample.value

    async def get_sample(self, metric: MetricKind, symbol: str) -> MetricSample:
        key = self._key(metric, symbol)

        sample = self._samples.get(key)
        if sample is not None and self.is_fresh(sample):
            self._stats.hits += 1
            return sample

        task = self._inflight.get(key)
        if task is None:
            self._stats.misses += 1
            task = asyncio.get_running_loop().create_task(
                self._fetch(key), name=f"metric:{metric.value}:{key[1]}"
            )
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._clear_inflight(k, t))
        else:
            self._stats.shared += 1

        # Shield so one cancelled caller does not cancel the shared fetch
        return await asyncio.shield(task)

    def _clear_inflight(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def _fetch(self, key: CacheKey) -> MetricSample:
        metric, symbol = key
        try:
            value = await self._providers.fetch(metric, symbol)
        except Exception as e:
            self._stats.errors += 1
            logger.debug(f"Metric fetch failed for {metric.value}/{symbol}: {e}")
            raise

        sample = MetricSample(
            metric=metric,
            symbol=symbol,
            value=value,
            fetched_at=self._clock(),
        )
        self.store(sample)
        return sample
