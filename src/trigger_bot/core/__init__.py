"""
Core Layer - Trigger evaluation and scheduling.

This module provides:
    - ConditionEvaluator: Decides whether a trigger's predicate holds
    - EvaluationResult, EvalStep: Match decision and its trail
    - TriggerEngine: Evaluate-then-execute, plus manual check/execute
    - TriggerOutcome: What happened to one trigger
    - SchedulerLoop: Periodic driver over all ACTIVE triggers
    - SchedulerConfig, TickStats: Scheduler configuration and counters

Data Flow:
    1. SchedulerLoop lists ACTIVE triggers and batch-fetches prices
    2. ConditionEvaluator resolves metrics through the MetricCache
    3. On a match, ExecutionCoordinator claims, settles and finalizes
"""

from .engine import TriggerEngine, TriggerOutcome
from .evaluator import ConditionEvaluator, EvalStep, EvaluationResult
from .scheduler import SchedulerConfig, SchedulerLoop, TickStats

__all__ = [
    "TriggerEngine",
    "TriggerOutcome",
    "ConditionEvaluator",
    "EvalStep",
    "EvaluationResult",
    "SchedulerConfig",
    "SchedulerLoop",
    "TickStats",
]
