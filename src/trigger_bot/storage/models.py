"""
Pydantic models for triggers and execution records.

These models mirror seed/01_schema.sql. The engine owns Trigger.status and
every Execution row; predicate fields belong to the trigger management API
and are never written here.

IMPORTANT: All monetary fields (amounts, prices, metric values) use Decimal.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class PredicateError(Exception):
    """Raised when a stored predicate cannot be interpreted."""

    def __init__(self, message: str, trigger_id: Optional[str] = None):
        self.trigger_id = trigger_id
        prefix = f"Trigger {trigger_id}: " if trigger_id else ""
        super().__init__(f"{prefix}{message}")


# =============================================================================
# ENUMS
# =============================================================================


class TradeSide(str, Enum):
    """Direction of the swap."""

    BUY = "BUY"  # amount is in quote currency
    SELL = "SELL"  # amount is in base asset


class TriggerStatus(str, Enum):
    """Trigger lifecycle state. Only ACTIVE triggers are evaluated."""

    ACTIVE = "ACTIVE"
    EXECUTED = "EXECUTED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not TriggerStatus.ACTIVE


class ExecutionStatus(str, Enum):
    """Execution attempt state. PENDING resolves exactly once."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PriceOperator(str, Enum):
    """Simple predicate comparison. Both bounds are inclusive."""

    ABOVE = "ABOVE"
    BELOW = "BELOW"


class ConditionOperator(str, Enum):
    """Smart condition comparison. Both bounds are strict."""

    GT = "GT"
    LT = "LT"


class MetricKind(str, Enum):
    """Market and technical metrics a smart condition may reference."""

    PRICE = "PRICE"
    RSI = "RSI"
    VOLUME = "VOLUME"
    MA = "MA"
    SENTIMENT = "SENTIMENT"
    GAS = "GAS"


# =============================================================================
# PREDICATES
# =============================================================================


class SimplePredicate(BaseModel):
    """Price threshold: ABOVE fires at price >= target, BELOW at price <= target."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["simple"] = "simple"
    operator: PriceOperator
    target_price: Decimal = Field(gt=0)


class SmartCondition(BaseModel):
    """One typed metric comparison inside a SmartPredicate."""

    model_config = ConfigDict(frozen=True)

    metric: MetricKind
    operator: ConditionOperator
    value: Decimal

    def describe(self) -> str:
        symbol = ">" if self.operator is ConditionOperator.GT else "<"
        return f"{self.metric.value} {symbol} {self.value}"


class SmartPredicate(BaseModel):
    """Conjunction of metric conditions (AND, in declaration order)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["smart"] = "smart"
    conditions: tuple[SmartCondition, ...] = Field(min_length=1)

    @property
    def metrics(self) -> list[MetricKind]:
        """Distinct metrics referenced, in first-use order."""
        seen: dict[MetricKind, None] = {}
        for condition in self.conditions:
            seen.setdefault(condition.metric, None)
        return list(seen)


Predicate = Union[SimplePredicate, SmartPredicate]


# =============================================================================
# TRIGGERS & EXECUTIONS
# =============================================================================


class UserIdentity(BaseModel):
    """Owner of a trigger, as the swap executor and notifier need it."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    wallet_address: str
    email: Optional[str] = None
    telegram_chat_id: Optional[str] = None


class Trigger(BaseModel):
    """A standing instruction to swap once the predicate holds."""

    model_config = ConfigDict(frozen=True)

    id: str
    user: UserIdentity
    symbol: str
    side: TradeSide
    amount: Decimal = Field(gt=0)
    predicate: Predicate = Field(discriminator="kind")
    status: TriggerStatus = TriggerStatus.ACTIVE
    slippage_percent: Decimal = Decimal("5")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status is TriggerStatus.ACTIVE

    @property
    def short_id(self) -> str:
        return self.id[:8]


class Execution(BaseModel):
    """One recorded attempt to settle a matched trigger."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    trigger_id: str
    symbol: str
    side: TradeSide
    amount: Decimal
    observed_price: Decimal
    status: ExecutionStatus = ExecutionStatus.PENDING
    tx_reference: Optional[str] = None  # only on SUCCESS
    error_detail: Optional[str] = None  # only on FAILED
    executed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finalized_at: Optional[datetime] = None


# =============================================================================
# RAW PREDICATE PARSING
# =============================================================================


def parse_predicate(
    operator: Optional[str],
    target_price: Any,
    smart_conditions: Any,
    side: TradeSide,
    trigger_id: Optional[str] = None,
) -> Predicate:
    """
    Build a predicate from stored columns.

    Rows carry either a price threshold or a JSON list of smart conditions.
    Legacy rows without an operator fall back to the side: BUY waits for the
    price to drop (BELOW), SELL waits for it to rise (ABOVE).

    Raises:
        PredicateError: if the row is malformed (empty condition list,
            unknown metric or operator, missing threshold).
    """
    if smart_conditions is not None:
        if isinstance(smart_conditions, (str, bytes)):
            try:
                smart_conditions = json.loads(smart_conditions)
            except ValueError as e:
                raise PredicateError(f"Invalid smart conditions JSON: {e}", trigger_id)

        if not isinstance(smart_conditions, list) or not smart_conditions:
            raise PredicateError("Smart predicate has no conditions", trigger_id)

        try:
            return SmartPredicate(
                conditions=tuple(SmartCondition(**c) for c in smart_conditions)
            )
        except (TypeError, ValidationError) as e:
            raise PredicateError(f"Invalid smart condition: {e}", trigger_id)

    if target_price is None:
        raise PredicateError("Trigger has neither a target price nor conditions", trigger_id)

    if operator is None:
        operator = PriceOperator.BELOW if side is TradeSide.BUY else PriceOperator.ABOVE

    try:
        return SimplePredicate(
            operator=PriceOperator(operator),
            target_price=Decimal(str(target_price)),
        )
    except (ValueError, InvalidOperation, ValidationError) as e:
        raise PredicateError(f"Invalid price predicate: {e}", trigger_id)
