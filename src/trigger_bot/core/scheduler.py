"""
SchedulerLoop - periodic driver for trigger evaluation.

Each tick lists the ACTIVE triggers, batch-fetches their prices once, and
runs every trigger through the engine. Sequential mode (the default) waits
a short delay between triggers so shared, rate-limited metric sources are
not burst; bounded-parallel mode trades that for latency.

One trigger's failure never aborts the rest of its tick, and a tick that
cannot even list triggers is logged and skipped.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from trigger_bot.market import MetricFetchError, MetricSample
from trigger_bot.monitoring.alerting import AlertManager
from trigger_bot.storage.models import MetricKind, PredicateError, Trigger

from .engine import TriggerEngine

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    """Configuration for the scheduler loop."""

    interval_seconds: float = 30.0
    inter_trigger_delay_seconds: float = 1.0  # sequential mode only
    max_concurrency: int = 1  # >1 enables bounded-parallel mode
    run_immediately: bool = True
    stop_timeout_seconds: float = 180.0


@dataclass
class TickStats:
    """Counters for one scheduler tick."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0
    triggers_seen: int = 0
    evaluated: int = 0
    matched: int = 0
    executed: int = 0
    failed: int = 0
    claim_conflicts: int = 0
    evaluation_errors: int = 0
    errors: int = 0
    aborted: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data


class SchedulerLoop:
    """
    Runs the engine over all ACTIVE triggers on a fixed interval.

    Usage:
        scheduler = SchedulerLoop(engine, SchedulerConfig(interval_seconds=30))
        await scheduler.start()
        # ... runs until ...
        await scheduler.stop()

        # Or drive ticks directly
        stats = await scheduler.run_tick()
    """

    def __init__(
        self,
        engine: TriggerEngine,
        config: Optional[SchedulerConfig] = None,
        alerts: Optional[AlertManager] = None,
    ) -> None:
        self._engine = engine
        self._store = engine.store
        self._cache = engine.cache
        self._config = config or SchedulerConfig()
        self._alerts = alerts

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._ticks = 0
        self._last_tick: Optional[TickStats] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def engine(self) -> TriggerEngine:
        return self._engine

    @property
    def last_tick(self) -> Optional[TickStats]:
        return self._last_tick

    async def start(self) -> None:
        if self._running:
            logger.warning("SchedulerLoop already running")
            return

        mode = (
            f"parallel x{self._config.max_concurrency}"
            if self._config.max_concurrency > 1
            else f"sequential, {self._config.inter_trigger_delay_seconds}s between triggers"
        )
        logger.info(f"Starting trigger scheduler (interval={self._config.interval_seconds}s, {mode})")

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="trigger_scheduler")

    async def stop(self) -> None:
        """
        Stop after the in-flight tick.

        Only the sleep between ticks is interrupted; attempts already
        settling are allowed to finish recording. A tick that outlives
        stop_timeout_seconds is cancelled.
        """
        if not self._running:
            return

        logger.info("Stopping trigger scheduler...")
        self._running = False
        self._stop_event.set()

        task, self._task = self._task, None
        if task is not None:
            done, _ = await asyncio.wait({task}, timeout=self._config.stop_timeout_seconds)
            if not done:
                logger.warning("Scheduler tick did not finish in time; cancelling")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        logger.info("Trigger scheduler stopped")

    async def _run_loop(self) -> None:
        first = self._config.run_immediately

        while self._running:
            if not first:
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self._config.interval_seconds,
                    )
                    break  # Stop requested
                except asyncio.TimeoutError:
                    pass
            first = False

            if not self._running:
                break

            try:
                await self.run_tick()
            except Exception as e:
                logger.exception(f"Unexpected error in scheduler tick: {e}")

    async def run_tick(self) -> TickStats:
        """Run one evaluation pass over all ACTIVE triggers."""
        stats = TickStats()
        started = time.monotonic()

        try:
            triggers = await self._store.list_active()
        except Exception as e:
            logger.error(f"Failed to list active triggers; skipping tick: {e}")
            stats.aborted = True
            stats.error = str(e)
            await self._alert_listing_failure(e)
            return self._finish_tick(stats, started)

        stats.triggers_seen = len(triggers)
        if not triggers:
            logger.debug("No active triggers")
            return self._finish_tick(stats, started)

        hints = await self._price_hints(triggers)

        if self._config.max_concurrency > 1:
            await self._run_parallel(triggers, hints, stats)
        else:
            await self._run_sequential(triggers, hints, stats)

        return self._finish_tick(stats, started)

    async def _run_sequential(
        self, triggers: List[Trigger], hints: Dict[str, MetricSample], stats: TickStats
    ) -> None:
        delay = self._config.inter_trigger_delay_seconds
        for index, trigger in enumerate(triggers):
            if index and delay > 0:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
            if self._stop_event.is_set():
                logger.info(f"Stop requested; {len(triggers) - index} triggers left for next run")
                break
            await self._process_one(trigger, hints.get(trigger.symbol.upper()), stats)

    async def _run_parallel(
        self, triggers: List[Trigger], hints: Dict[str, MetricSample], stats: TickStats
    ) -> None:
        semaphore = asyncio.Semaphore(self._config.max_concurrency)

        async def bounded(trigger: Trigger) -> None:
            async with semaphore:
                await self._process_one(trigger, hints.get(trigger.symbol.upper()), stats)

        await asyncio.gather(*(bounded(t) for t in triggers))

    async def _process_one(
        self, trigger: Trigger, hint: Optional[MetricSample], stats: TickStats
    ) -> None:
        try:
            outcome = await self._engine.process(trigger, hint)
        except PredicateError as e:
            stats.evaluation_errors += 1
            logger.warning(f"Skipping trigger {trigger.short_id}: {e}")
            return
        except Exception as e:
            stats.errors += 1
            logger.exception(f"Error processing trigger {trigger.short_id}: {e}")
            return

        stats.evaluated += 1
        if outcome.matched:
            stats.matched += 1

        result = outcome.execution
        if result is None:
            return
        if result.success:
            stats.executed += 1
        elif result.claim_conflict:
            stats.claim_conflicts += 1
        else:
            stats.failed += 1

    async def _price_hints(self, triggers: List[Trigger]) -> Dict[str, MetricSample]:
        """Fetch every distinct symbol's price in one call and seed the cache."""
        providers = self._cache.providers
        if not providers.supports_price_batch:
            return {}

        try:
            prices = await providers.fetch_prices(t.symbol for t in triggers)
        except MetricFetchError as e:
            logger.warning(f"Batch price fetch failed, falling back to per-trigger lookups: {e}")
            return {}

        now = self._cache.now()
        hints = {}
        for symbol, price in prices.items():
            sample = MetricSample(metric=MetricKind.PRICE, symbol=symbol, value=price, fetched_at=now)
            self._cache.store(sample)
            hints[symbol] = sample
        return hints

    async def _alert_listing_failure(self, error: Exception) -> None:
        if self._alerts is None:
            return
        try:
            await asyncio.to_thread(
                self._alerts.alert_health_issue, "trigger_store", "UNHEALTHY", str(error)
            )
        except Exception as e:
            logger.warning(f"Failed to send health alert: {e}")

    def _finish_tick(self, stats: TickStats, started: float) -> TickStats:
        stats.duration_seconds = time.monotonic() - started
        self._ticks += 1
        self._last_tick = stats

        if stats.matched or stats.failed or stats.errors or stats.evaluation_errors:
            logger.info(
                f"Tick: {stats.triggers_seen} active, {stats.matched} matched, "
                f"{stats.executed} executed, {stats.failed} failed, "
                f"{stats.claim_conflicts} conflicts, "
                f"{stats.evaluation_errors + stats.errors} errors "
                f"({stats.duration_seconds:.1f}s)"
            )
        else:
            logger.debug(f"Tick: {stats.triggers_seen} active, no matches ({stats.duration_seconds:.1f}s)")
        return stats

    def status(self) -> Dict[str, Any]:
        cache_stats = self._cache.stats
        return {
            "running": self._running,
            "interval_seconds": self._config.interval_seconds,
            "max_concurrency": self._config.max_concurrency,
            "ticks": self._ticks,
            "last_tick": self._last_tick.to_dict() if self._last_tick else None,
            "in_flight": self._engine.coordinator.in_flight,
            "cache": asdict(cache_stats),
        }
