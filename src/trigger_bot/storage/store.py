"""
Trigger store contract and an in-memory implementation.

The store is the durable side of the at-most-one-execution guarantee:
try_claim_execution() is the only way to create an Execution and refuses
while another PENDING execution exists for the same trigger.

InMemoryTriggerStore is used by dry runs and tests. The PostgreSQL
implementation lives in storage.postgres_store.
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from .models import Execution, ExecutionStatus, Trigger, TriggerStatus


class ClaimConflictError(Exception):
    """The trigger cannot be claimed for execution right now."""

    def __init__(self, trigger_id: str, reason: str):
        self.trigger_id = trigger_id
        self.reason = reason
        super().__init__(f"Cannot claim trigger {trigger_id}: {reason}")


class ExecutionAlreadyPendingError(ClaimConflictError):
    """Another attempt for this trigger is still in flight."""

    def __init__(self, trigger_id: str, execution_id: Optional[str] = None):
        self.execution_id = execution_id
        detail = f" ({execution_id})" if execution_id else ""
        super().__init__(trigger_id, f"execution already pending{detail}")


class TriggerNotActiveError(ClaimConflictError):
    """Trigger is missing or has left ACTIVE."""

    def __init__(self, trigger_id: str, status: Optional[TriggerStatus] = None):
        self.status = status
        reason = f"status is {status.value}" if status else "trigger not found"
        super().__init__(trigger_id, reason)


class ExecutionAlreadyFinalizedError(Exception):
    """Attempt to resolve an execution that is not PENDING."""

    def __init__(self, execution_id: str, status: Optional[ExecutionStatus] = None):
        self.execution_id = execution_id
        self.status = status
        state = status.value if status else "missing"
        super().__init__(f"Execution {execution_id} cannot be finalized (is {state})")


@runtime_checkable
class TriggerStore(Protocol):
    """Persistence contract consumed by the engine."""

    async def list_active(self) -> list[Trigger]:
        ...

    async def get_trigger(self, trigger_id: str) -> Optional[Trigger]:
        ...

    async def try_claim_execution(
        self, trigger_id: str, observed_price: Decimal
    ) -> Execution:
        """Create a PENDING execution or raise ClaimConflictError."""
        ...

    async def finalize_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        tx_reference: Optional[str] = None,
        error_detail: Optional[str] = None,
    ) -> Execution:
        """Resolve a PENDING execution or raise ExecutionAlreadyFinalizedError."""
        ...

    async def set_trigger_status(self, trigger_id: str, status: TriggerStatus) -> bool:
        """Move an ACTIVE trigger to a terminal status. False if it was not ACTIVE."""
        ...

    async def get_executions(self, trigger_id: str) -> list[Execution]:
        ...


def validate_finalize_args(
    status: ExecutionStatus,
    tx_reference: Optional[str],
    error_detail: Optional[str],
) -> None:
    if status is ExecutionStatus.PENDING:
        raise ValueError("Cannot finalize an execution back to PENDING")
    if status is ExecutionStatus.SUCCESS and not tx_reference:
        raise ValueError("A successful execution needs a transaction reference")
    if status is ExecutionStatus.FAILED and tx_reference:
        raise ValueError("A failed execution cannot carry a transaction reference")


def validate_terminal_status(status: TriggerStatus) -> None:
    if not status.is_terminal:
        raise ValueError("Triggers can only be moved to a terminal status")


class InMemoryTriggerStore:
    """
    Process-local TriggerStore.

    A single asyncio.Lock makes claim, finalize and status updates atomic
    with respect to each other, matching the transactional guarantees of the
    PostgreSQL store.

    Usage:
        store = InMemoryTriggerStore()
        await store.add_trigger(trigger)
        execution = await store.try_claim_execution(trigger.id, Decimal("2990"))
    """

    def __init__(self, triggers: Optional[list[Trigger]] = None) -> None:
        self._triggers: dict[str, Trigger] = {t.id: t for t in triggers or []}
        self._executions: dict[str, Execution] = {}
        self._lock = asyncio.Lock()

    async def add_trigger(self, trigger: Trigger) -> None:
        async with self._lock:
            self._triggers[trigger.id] = trigger

    async def cancel_trigger(self, trigger_id: str) -> bool:
        """User-initiated cancellation (owned by the trigger management API)."""
        return await self.set_trigger_status(trigger_id, TriggerStatus.CANCELLED)

    async def list_active(self) -> list[Trigger]:
        async with self._lock:
            active = [t for t in self._triggers.values() if t.is_active]
        return sorted(active, key=lambda t: t.created_at)

    async def get_trigger(self, trigger_id: str) -> Optional[Trigger]:
        return self._triggers.get(trigger_id)

    async def try_claim_execution(
        self, trigger_id: str, observed_price: Decimal
    ) -> Execution:
        async with self._lock:
            trigger = self._triggers.get(trigger_id)
            if trigger is None or not trigger.is_active:
                raise TriggerNotActiveError(
                    trigger_id, trigger.status if trigger else None
                )

            pending = self._pending_for(trigger_id)
            if pending is not None:
                raise ExecutionAlreadyPendingError(trigger_id, pending.id)

            execution = Execution(
                id=str(uuid.uuid4()),
                trigger_id=trigger_id,
                symbol=trigger.symbol,
                side=trigger.side,
                amount=trigger.amount,
                observed_price=observed_price,
            )
            self._executions[execution.id] = execution
            return execution.model_copy()

    async def finalize_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        tx_reference: Optional[str] = None,
        error_detail: Optional[str] = None,
    ) -> Execution:
        validate_finalize_args(status, tx_reference, error_detail)

        async with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None or execution.status is not ExecutionStatus.PENDING:
                raise ExecutionAlreadyFinalizedError(
                    execution_id, execution.status if execution else None
                )

            finalized = execution.model_copy(
                update={
                    "status": status,
                    "tx_reference": tx_reference,
                    "error_detail": error_detail,
                    "finalized_at": datetime.now(timezone.utc),
                }
            )
            self._executions[execution_id] = finalized
            return finalized.model_copy()

    async def set_trigger_status(self, trigger_id: str, status: TriggerStatus) -> bool:
        validate_terminal_status(status)

        async with self._lock:
            trigger = self._triggers.get(trigger_id)
            if trigger is None or not trigger.is_active:
                return False
            self._triggers[trigger_id] = trigger.model_copy(
                update={"status": status, "updated_at": datetime.now(timezone.utc)}
            )
            return True

    async def get_executions(self, trigger_id: str) -> list[Execution]:
        return sorted(
            (e.model_copy() for e in self._executions.values() if e.trigger_id == trigger_id),
            key=lambda e: e.executed_at,
        )

    def _pending_for(self, trigger_id: str) -> Optional[Execution]:
        for execution in self._executions.values():
            if (
                execution.trigger_id == trigger_id
                and execution.status is ExecutionStatus.PENDING
            ):
                return execution
        return None

    async def add_if_absent(self, trigger: Trigger) -> Trigger:
        """Insert the trigger unless it is already known; return the stored copy."""
        async with self._lock:
            return self._triggers.setdefault(trigger.id, trigger)


class ShadowTriggerStore:
    """
    Read-through TriggerStore for dry runs against a real database.

    Triggers are read from the source store, but claims, finalizations and
    status changes land in a process-local InMemoryTriggerStore. The source
    never sees a write, so paper executions cannot consume live triggers.

    Usage:
        store = ShadowTriggerStore(PostgresTriggerStore(db))
        triggers = await store.list_active()
    """

    def __init__(
        self, source: TriggerStore, shadow: Optional[InMemoryTriggerStore] = None
    ) -> None:
        self._source = source
        self._shadow = shadow or InMemoryTriggerStore()

    @property
    def source(self) -> TriggerStore:
        return self._source

    async def list_active(self) -> list[Trigger]:
        active = []
        for trigger in await self._source.list_active():
            current = await self._shadow.add_if_absent(trigger)
            if current.is_active:
                active.append(current)
        return active

    async def get_trigger(self, trigger_id: str) -> Optional[Trigger]:
        current = await self._shadow.get_trigger(trigger_id)
        if current is not None:
            return current
        trigger = await self._source.get_trigger(trigger_id)
        if trigger is None:
            return None
        return await self._shadow.add_if_absent(trigger)

    async def try_claim_execution(
        self, trigger_id: str, observed_price: Decimal
    ) -> Execution:
        await self.get_trigger(trigger_id)
        return await self._shadow.try_claim_execution(trigger_id, observed_price)

    async def finalize_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        tx_reference: Optional[str] = None,
        error_detail: Optional[str] = None,
    ) -> Execution:
        return await self._shadow.finalize_execution(
            execution_id, status, tx_reference, error_detail
        )

    async def set_trigger_status(self, trigger_id: str, status: TriggerStatus) -> bool:
        await self.get_trigger(trigger_id)
        return await self._shadow.set_trigger_status(trigger_id, status)

    async def get_executions(self, trigger_id: str) -> list[Execution]:
        recorded = await self._source.get_executions(trigger_id)
        simulated = await self._shadow.get_executions(trigger_id)
        return sorted(recorded + simulated, key=lambda e: e.executed_at)
