"""
Condition Evaluator - decides whether a trigger's predicate holds now.

Simple predicates compare the current price against the target with an
inclusive bound (price reaching the target fires the trigger). Smart
predicates are a conjunction: every condition must hold, comparisons are
strict, and each distinct metric is fetched once.

Evaluation fails closed. A metric that cannot be resolved makes its
condition fail and therefore the whole predicate, never the other way round.
The trail exists for logs and manual checks only; nothing branches on it.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Union

from trigger_bot.market import MetricCache, MetricSample
from trigger_bot.storage.models import (
    ConditionOperator,
    MetricKind,
    PredicateError,
    PriceOperator,
    SimplePredicate,
    SmartPredicate,
    Trigger,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvalStep:
    """One comparison in an evaluation trail."""

    metric: MetricKind
    operator: Union[PriceOperator, ConditionOperator]
    threshold: Decimal
    actual: Optional[Decimal]
    passed: bool
    error: Optional[str] = None

    def describe(self) -> str:
        symbols = {
            PriceOperator.ABOVE: ">=",
            PriceOperator.BELOW: "<=",
            ConditionOperator.GT: ">",
            ConditionOperator.LT: "<",
        }
        verdict = "pass" if self.passed else "fail"
        if self.actual is None:
            return f"{self.metric.value} unavailable ({self.error}) -> {verdict}"
        return (
            f"{self.metric.value} {self.actual} {symbols[self.operator]} "
            f"{self.threshold} -> {verdict}"
        )


@dataclass
class EvaluationResult:
    """Outcome of evaluating one trigger."""

    trigger_id: str
    matched: bool
    trail: List[EvalStep] = field(default_factory=list)
    observed_price: Optional[Decimal] = None  # PRICE as seen during evaluation, if fetched

    @property
    def failed_metrics(self) -> List[MetricKind]:
        return [step.metric for step in self.trail if step.error is not None]

    def summary(self) -> str:
        steps = "; ".join(step.describe() for step in self.trail)
        return f"{'MATCH' if self.matched else 'no match'} [{steps}]"


class ConditionEvaluator:
    """
    Evaluates trigger predicates against the metric cache.

    Usage:
        evaluator = ConditionEvaluator(cache)
        result = await evaluator.evaluate(trigger, price_hint=sample)
        if result.matched:
            ...
    """

    def __init__(self, cache: MetricCache) -> None:
        self._cache = cache

    async def evaluate(
        self, trigger: Trigger, price_hint: Optional[MetricSample] = None
    ) -> EvaluationResult:
        """
        Evaluate the trigger's predicate.

        Args:
            trigger: Trigger to evaluate
            price_hint: PRICE sample already fetched this tick, used when
                the cache holds nothing fresher

        Raises:
            PredicateError: if the predicate cannot be interpreted
        """
        predicate = trigger.predicate
        if isinstance(predicate, SimplePredicate):
            return await self._evaluate_simple(trigger, predicate, price_hint)
        if isinstance(predicate, SmartPredicate):
            if not predicate.conditions:
                raise PredicateError("Smart predicate has no conditions", trigger.id)
            return await self._evaluate_smart(trigger, predicate, price_hint)
        raise PredicateError(f"Unsupported predicate {type(predicate).__name__}", trigger.id)

    async def _evaluate_simple(
        self,
        trigger: Trigger,
        predicate: SimplePredicate,
        price_hint: Optional[MetricSample],
    ) -> EvaluationResult:
        try:
            price: Optional[Decimal] = await self._resolve(
                MetricKind.PRICE, trigger.symbol, price_hint
            )
            error = None
        except Exception as e:
            logger.debug(f"Price unavailable for trigger {trigger.short_id}: {e}")
            price, error = None, str(e)

        passed = False
        if price is not None:
            if predicate.operator is PriceOperator.ABOVE:
                passed = price >= predicate.target_price
            else:
                passed = price <= predicate.target_price

        step = EvalStep(
            metric=MetricKind.PRICE,
            operator=predicate.operator,
            threshold=predicate.target_price,
            actual=price,
            passed=passed,
            error=error,
        )
        return EvaluationResult(
            trigger_id=trigger.id,
            matched=passed,
            trail=[step],
            observed_price=price,
        )

    async def _evaluate_smart(
        self,
        trigger: Trigger,
        predicate: SmartPredicate,
        price_hint: Optional[MetricSample],
    ) -> EvaluationResult:
        metrics = predicate.metrics
        results = await asyncio.gather(
            *(self._resolve(metric, trigger.symbol, price_hint) for metric in metrics),
            return_exceptions=True,
        )

        values: Dict[MetricKind, Decimal] = {}
        errors: Dict[MetricKind, str] = {}
        for metric, result in zip(metrics, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.debug(f"{metric.value} unavailable for trigger {trigger.short_id}: {result}")
                errors[metric] = str(result) or type(result).__name__
            else:
                values[metric] = result

        trail = []
        for condition in predicate.conditions:
            actual = values.get(condition.metric)
            passed = False
            if actual is not None:
                if condition.operator is ConditionOperator.GT:
                    passed = actual > condition.value
                else:
                    passed = actual < condition.value
            trail.append(
                EvalStep(
                    metric=condition.metric,
                    operator=condition.operator,
                    threshold=condition.value,
                    actual=actual,
                    passed=passed,
                    error=errors.get(condition.metric),
                )
            )

        return EvaluationResult(
            trigger_id=trigger.id,
            matched=all(step.passed for step in trail),
            trail=trail,
            observed_price=values.get(MetricKind.PRICE),
        )

    async def _resolve(
        self,
        metric: MetricKind,
        symbol: str,
        price_hint: Optional[MetricSample],
    ) -> Decimal:
        if metric is MetricKind.PRICE:
            hinted = self._cache.hinted_value(price_hint, metric, symbol)
            if hinted is not None:
                return hinted
        return await self._cache.get(metric, symbol)
