"""
Storage Layer - trigger and execution persistence.

This is the foundation layer that all other components depend on.

Public API:
    Models:
        Trigger, Execution, UserIdentity
        SimplePredicate, SmartPredicate, SmartCondition
        TradeSide, TriggerStatus, ExecutionStatus, MetricKind,
        PriceOperator, ConditionOperator

    Store contract:
        TriggerStore (protocol), InMemoryTriggerStore, PostgresTriggerStore,
        ShadowTriggerStore (dry-run overlay)

    Errors:
        PredicateError - malformed stored predicate
        ClaimConflictError - trigger cannot be claimed
            ExecutionAlreadyPendingError, TriggerNotActiveError
        ExecutionAlreadyFinalizedError - execution resolved twice

    Database, DatabaseConfig - asyncpg connection pool
"""
from trigger_bot.storage.database import Database, DatabaseConfig
from trigger_bot.storage.models import (
    ConditionOperator,
    Execution,
    ExecutionStatus,
    MetricKind,
    Predicate,
    PredicateError,
    PriceOperator,
    SimplePredicate,
    SmartCondition,
    SmartPredicate,
    TradeSide,
    Trigger,
    TriggerStatus,
    UserIdentity,
    parse_predicate,
)
from trigger_bot.storage.store import (
    ClaimConflictError,
    ExecutionAlreadyFinalizedError,
    ExecutionAlreadyPendingError,
    InMemoryTriggerStore,
    ShadowTriggerStore,
    TriggerNotActiveError,
    TriggerStore,
)
from trigger_bot.storage.postgres_store import PostgresTriggerStore

__all__ = [
    # Database
    "Database",
    "DatabaseConfig",
    # Models
    "ConditionOperator",
    "Execution",
    "ExecutionStatus",
    "MetricKind",
    "Predicate",
    "PredicateError",
    "PriceOperator",
    "SimplePredicate",
    "SmartCondition",
    "SmartPredicate",
    "TradeSide",
    "Trigger",
    "TriggerStatus",
    "UserIdentity",
    "parse_predicate",
    # Store
    "TriggerStore",
    "InMemoryTriggerStore",
    "PostgresTriggerStore",
    "ShadowTriggerStore",
    "ClaimConflictError",
    "ExecutionAlreadyPendingError",
    "TriggerNotActiveError",
    "ExecutionAlreadyFinalizedError",
]
