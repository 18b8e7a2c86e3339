"""
Trigger Engine - evaluate a trigger and, on a match, attempt its execution.

The scheduler calls process() for every ACTIVE trigger on each tick. The
manual paths use the same pieces: check() evaluates without executing, and
execute_now() re-evaluates and attempts only on a match, through the same
coordinator (and so the same per-trigger lock) as scheduled attempts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from trigger_bot.execution import ExecutionCoordinator, ExecutionResult
from trigger_bot.market import MetricCache, MetricSample
from trigger_bot.storage.models import MetricKind, Trigger
from trigger_bot.storage.store import TriggerNotActiveError, TriggerStore

from .evaluator import ConditionEvaluator, EvaluationResult

logger = logging.getLogger(__name__)


@dataclass
class TriggerOutcome:
    """What happened to one trigger."""

    trigger_id: str
    evaluation: EvaluationResult
    execution: Optional[ExecutionResult] = None

    @property
    def matched(self) -> bool:
        return self.evaluation.matched

    @property
    def executed(self) -> bool:
        return self.execution is not None and self.execution.success


class TriggerEngine:
    """
    Evaluate-then-execute for single triggers.

    Usage:
        engine = TriggerEngine(store, cache, coordinator)
        outcome = await engine.process(trigger)
        evaluation = await engine.check(trigger_id)
        outcome = await engine.execute_now(trigger_id)
    """

    def __init__(
        self,
        store: TriggerStore,
        cache: MetricCache,
        coordinator: ExecutionCoordinator,
        evaluator: Optional[ConditionEvaluator] = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._coordinator = coordinator
        self._evaluator = evaluator or ConditionEvaluator(cache)

    @property
    def store(self) -> TriggerStore:
        return self._store

    @property
    def cache(self) -> MetricCache:
        return self._cache

    @property
    def coordinator(self) -> ExecutionCoordinator:
        return self._coordinator

    async def process(
        self, trigger: Trigger, price_hint: Optional[MetricSample] = None
    ) -> TriggerOutcome:
        """
        Evaluate one trigger and execute it if it matched.

        Raises:
            PredicateError: if the predicate cannot be interpreted
        """
        evaluation = await self._evaluator.evaluate(trigger, price_hint)
        outcome = TriggerOutcome(trigger_id=trigger.id, evaluation=evaluation)

        if not evaluation.matched:
            logger.debug(f"Trigger {trigger.short_id} ({trigger.symbol}): {evaluation.summary()}")
            return outcome

        logger.info(f"Trigger {trigger.short_id} ({trigger.symbol}) matched: {evaluation.summary()}")

        observed_price = await self._observed_price(trigger, evaluation, price_hint)
        if observed_price is None:
            logger.warning(
                f"Trigger {trigger.short_id} matched but no {trigger.symbol} price is available; "
                f"not executing this tick"
            )
            return outcome

        outcome.execution = await self._coordinator.attempt(trigger, observed_price)
        return outcome

    async def check(self, trigger_id: str) -> EvaluationResult:
        """
        Evaluate a trigger without executing it.

        Raises:
            TriggerNotActiveError: if the trigger does not exist
            PredicateError: if the predicate cannot be interpreted
        """
        trigger = await self._store.get_trigger(trigger_id)
        if trigger is None:
            raise TriggerNotActiveError(trigger_id)
        return await self._evaluator.evaluate(trigger)

    async def execute_now(self, trigger_id: str) -> TriggerOutcome:
        """
        Manually run a trigger: re-evaluate, and attempt only on a match.

        Raises:
            TriggerNotActiveError: if the trigger is missing or not ACTIVE
            PredicateError: if the predicate cannot be interpreted
        """
        trigger = await self._store.get_trigger(trigger_id)
        if trigger is None or not trigger.is_active:
            raise TriggerNotActiveError(trigger_id, trigger.status if trigger else None)
        return await self.process(trigger)

    async def _observed_price(
        self,
        trigger: Trigger,
        evaluation: EvaluationResult,
        price_hint: Optional[MetricSample],
    ) -> Optional[Decimal]:
        if evaluation.observed_price is not None:
            return evaluation.observed_price
        hinted = self._cache.hinted_value(price_hint, MetricKind.PRICE, trigger.symbol)
        if hinted is not None:
            return hinted
        try:
            return await self._cache.get(MetricKind.PRICE, trigger.symbol)
        except Exception as e:
            logger.debug(f"Price lookup failed for {trigger.symbol}: {e}")
            return None
