"""
Execution Coordinator - drives one trigger activation to a terminal record.

Attempt lifecycle:
    1. Claim     store creates a PENDING execution (refused if one exists
                 or the trigger left ACTIVE)
    2. Settle    swap executor, bounded by settle_timeout_seconds
    3. Finalize  SUCCESS -> trigger EXECUTED, then best-effort notify
                 FAILED  -> trigger stays ACTIVE if the error kind is
                            retryable, otherwise trigger FAILED and an
                            operator alert

Attempts are serialized per trigger id, never globally. Inside this process
an attempt on a trigger that is already being attempted fails fast; across
processes the store's claim provides the same guarantee.

A settlement that times out is looked up once by its reference when the
executor supports it, so a swap that landed late is recorded as SUCCESS
rather than retried.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from trigger_bot.monitoring.alerting import AlertManager, ExecutionSummary, Notifier, NullNotifier
from trigger_bot.storage.models import Execution, ExecutionStatus, Trigger, TriggerStatus
from trigger_bot.storage.store import ClaimConflictError, TriggerStore

from .errors import SettlementErrorKind, classify_error, is_retryable
from .swap import ReconcilingSwapExecutor, SwapExecutor, SwapReceipt, SwapRequest

logger = logging.getLogger(__name__)

CLAIM_CONFLICT = "CLAIM_CONFLICT"


@dataclass
class CoordinatorConfig:
    """Configuration for execution attempts."""

    settle_timeout_seconds: float = 120.0
    reconcile_on_timeout: bool = True
    lookup_timeout_seconds: float = 15.0


@dataclass
class ExecutionResult:
    """Result of an execution attempt."""

    success: bool
    trigger_id: str
    execution_id: Optional[str] = None
    tx_reference: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # SettlementErrorKind value or CLAIM_CONFLICT
    retryable: Optional[bool] = None
    trigger_status: Optional[TriggerStatus] = None

    @property
    def claim_conflict(self) -> bool:
        return self.error_kind == CLAIM_CONFLICT


class ExecutionCoordinator:
    """
    Owns the execution state machine for single trigger activations.

    Usage:
        coordinator = ExecutionCoordinator(store, PaperSwapExecutor())
        result = await coordinator.attempt(trigger, observed_price=Decimal("2990"))
        if result.success:
            print(result.tx_reference)
    """

    def __init__(
        self,
        store: TriggerStore,
        executor: SwapExecutor,
        notifier: Optional[Notifier] = None,
        config: Optional[CoordinatorConfig] = None,
        alerts: Optional[AlertManager] = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._notifier = notifier or NullNotifier()
        self._config = config or CoordinatorConfig()
        self._alerts = alerts

        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def config(self) -> CoordinatorConfig:
        return self._config

    @property
    def in_flight(self) -> list[str]:
        """Trigger ids with an attempt in progress in this process."""
        return [trigger_id for trigger_id, lock in self._locks.items() if lock.locked()]

    def is_in_flight(self, trigger_id: str) -> bool:
        lock = self._locks.get(trigger_id)
        return lock is not None and lock.locked()

    async def attempt(self, trigger: Trigger, observed_price: Decimal) -> ExecutionResult:
        """
        Run one execution attempt for a matched trigger.

        Returns a claim-conflict result without side effects if another
        attempt for the trigger is in progress. Store failures while
        finalizing are logged and re-raised; the PENDING row they leave
        behind keeps the trigger blocked until it is resolved.
        """
        lock = self._locks.setdefault(trigger.id, asyncio.Lock())
        if lock.locked():
            logger.info(f"Trigger {trigger.short_id} already has an attempt in progress")
            return self._conflict(trigger.id, "execution already in progress")

        try:
            async with lock:
                return await self._attempt_locked(trigger, observed_price)
        finally:
            if not lock.locked() and self._locks.get(trigger.id) is lock:
                del self._locks[trigger.id]

    async def _attempt_locked(self, trigger: Trigger, observed_price: Decimal) -> ExecutionResult:
        try:
            execution = await self._store.try_claim_execution(trigger.id, observed_price)
        except ClaimConflictError as e:
            logger.info(f"Claim refused for trigger {trigger.short_id}: {e.reason}")
            return self._conflict(trigger.id, str(e))

        logger.info(
            f"Executing trigger {trigger.short_id}: {trigger.side.value} {trigger.amount} "
            f"{trigger.symbol} @ {observed_price} (execution {execution.id})"
        )

        request = SwapRequest(
            user=trigger.user,
            side=trigger.side,
            amount=trigger.amount,
            symbol=trigger.symbol,
            slippage_percent=trigger.slippage_percent,
            reference=execution.id,
        )

        try:
            receipt = await asyncio.wait_for(
                self._executor.settle(request),
                timeout=self._config.settle_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            kind = classify_error(e)
            receipt = None
            if kind is SettlementErrorKind.TIMEOUT:
                receipt = await self._reconcile(request)
            if receipt is None:
                return await self._record_failure(trigger, execution, e, kind)

        return await self._record_success(trigger, execution, receipt)

    async def _reconcile(self, request: SwapRequest) -> Optional[SwapReceipt]:
        if not self._config.reconcile_on_timeout:
            return None
        if not isinstance(self._executor, ReconcilingSwapExecutor):
            return None

        try:
            receipt = await asyncio.wait_for(
                self._executor.lookup(request.reference),
                timeout=self._config.lookup_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Could not reconcile timed-out settlement {request.reference}: {e}")
            return None

        if receipt is not None:
            logger.info(
                f"Timed-out settlement {request.reference} landed as {receipt.tx_reference}"
            )
        return receipt

    async def _record_success(
        self, trigger: Trigger, execution: Execution, receipt: SwapReceipt
    ) -> ExecutionResult:
        try:
            finalized = await self._store.finalize_execution(
                execution.id, ExecutionStatus.SUCCESS, tx_reference=receipt.tx_reference
            )
            applied = await self._store.set_trigger_status(trigger.id, TriggerStatus.EXECUTED)
        except Exception:
            logger.exception(
                f"Failed to record successful execution {execution.id} "
                f"(tx {receipt.tx_reference}) for trigger {trigger.short_id}"
            )
            raise

        trigger_status = TriggerStatus.EXECUTED
        if not applied:
            trigger_status = await self._current_status(trigger.id)
            logger.info(
                f"Trigger {trigger.short_id} left ACTIVE during settlement "
                f"(now {trigger_status.value if trigger_status else 'missing'})"
            )

        logger.info(
            f"Trigger {trigger.short_id} executed: {trigger.side.value} {trigger.amount} "
            f"{trigger.symbol}, tx {receipt.tx_reference}"
        )

        await self._notify(trigger, finalized)

        return ExecutionResult(
            success=True,
            trigger_id=trigger.id,
            execution_id=execution.id,
            tx_reference=receipt.tx_reference,
            trigger_status=trigger_status,
        )

    async def _record_failure(
        self,
        trigger: Trigger,
        execution: Execution,
        error: BaseException,
        kind: SettlementErrorKind,
    ) -> ExecutionResult:
        retryable = is_retryable(kind)
        message = str(error) or type(error).__name__
        error_detail = message if message.startswith(f"{kind.value}:") else f"{kind.value}: {message}"

        try:
            await self._store.finalize_execution(
                execution.id, ExecutionStatus.FAILED, error_detail=error_detail
            )
            trigger_status: Optional[TriggerStatus] = TriggerStatus.ACTIVE
            applied = False
            if not retryable:
                applied = await self._store.set_trigger_status(trigger.id, TriggerStatus.FAILED)
                trigger_status = TriggerStatus.FAILED if applied else await self._current_status(trigger.id)
        except Exception:
            logger.exception(
                f"Failed to record failed execution {execution.id} for trigger {trigger.short_id}"
            )
            raise

        if retryable:
            logger.warning(
                f"Trigger {trigger.short_id} attempt failed ({error_detail}); will retry next tick"
            )
        else:
            logger.error(f"Trigger {trigger.short_id} failed permanently: {error_detail}")
            if applied:
                await self._alert_failed(trigger, error_detail)

        return ExecutionResult(
            success=False,
            trigger_id=trigger.id,
            execution_id=execution.id,
            error=error_detail,
            error_kind=kind.value,
            retryable=retryable,
            trigger_status=trigger_status,
        )

    async def _alert_failed(self, trigger: Trigger, error_detail: str) -> None:
        if self._alerts is None:
            return
        try:
            await asyncio.to_thread(
                self._alerts.alert_trigger_failed, trigger.id, trigger.symbol, error_detail
            )
        except Exception as e:
            logger.warning(f"Failed to send failure alert for trigger {trigger.short_id}: {e}")

    async def _current_status(self, trigger_id: str) -> Optional[TriggerStatus]:
        current = await self._store.get_trigger(trigger_id)
        return current.status if current else None

    async def _notify(self, trigger: Trigger, execution: Execution) -> None:
        summary = ExecutionSummary(
            trigger_id=trigger.id,
            execution_id=execution.id,
            symbol=execution.symbol,
            side=execution.side,
            amount=execution.amount,
            observed_price=execution.observed_price,
            tx_reference=execution.tx_reference or "",
            executed_at=execution.executed_at,
        )
        try:
            await self._notifier.notify(trigger.user, summary)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Notification failed for trigger {trigger.short_id}: {e}")

    @staticmethod
    def _conflict(trigger_id: str, reason: str) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            trigger_id=trigger_id,
            error=reason,
            error_kind=CLAIM_CONFLICT,
        )

    def status(self) -> Dict[str, Any]:
        return {
            "in_flight": self.in_flight,
            "settle_timeout_seconds": self._config.settle_timeout_seconds,
        }
