"""
Execution repository with atomic per-trigger claims.

CRITICAL: try_claim() is the de-duplication point for trade execution.
Two schedulers (or a scheduler and a manual request) racing on the same
trigger must never both create a PENDING execution.
"""
from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import asyncpg

from trigger_bot.storage.models import Execution, ExecutionStatus, TriggerStatus
from trigger_bot.storage.repositories.base import BaseRepository
from trigger_bot.storage.store import (
    ExecutionAlreadyFinalizedError,
    ExecutionAlreadyPendingError,
    TriggerNotActiveError,
)

logger = logging.getLogger(__name__)


def claim_lock_key(trigger_id: str) -> int:
    """
    Stable advisory lock key for a trigger.

    Python's hash() is randomized per process, so derive the key from
    SHA-256 to get the same lock in every scheduler instance.
    """
    digest = hashlib.sha256(f"trigger-claim:{trigger_id}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class ExecutionRepository(BaseRepository[Execution]):
    """Repository for execution attempts."""

    model_class = Execution

    def _record_to_model(self, record) -> Optional[Execution]:
        if record is None:
            return None
        data = dict(record)
        data["amount"] = Decimal(str(data["amount"]))
        data["observed_price"] = Decimal(str(data["observed_price"]))
        return Execution(**data)

    async def try_claim(self, trigger_id: str, observed_price: Decimal) -> Execution:
        """
        Atomically verify the trigger is ACTIVE and insert a PENDING execution.

        Holds pg_advisory_xact_lock for the trigger for the whole transaction,
        so the status check and the insert cannot interleave with another
        claimant. The partial unique index on PENDING rows backs this up.

        Raises:
            TriggerNotActiveError: trigger missing or not ACTIVE
            ExecutionAlreadyPendingError: another attempt is in flight
        """
        async with self.db.transaction() as conn:
            await conn.execute("SELECT pg_advisory_xact_lock($1)", claim_lock_key(trigger_id))

            trigger = await conn.fetchrow(
                "SELECT symbol, side, amount, status FROM triggers WHERE id = $1",
                trigger_id,
            )
            if trigger is None:
                raise TriggerNotActiveError(trigger_id)

            status = TriggerStatus(trigger["status"])
            if status is not TriggerStatus.ACTIVE:
                raise TriggerNotActiveError(trigger_id, status)

            pending_id = await conn.fetchval(
                """
                SELECT id FROM executions
                WHERE trigger_id = $1 AND status = 'PENDING'
                LIMIT 1
                """,
                trigger_id,
            )
            if pending_id is not None:
                raise ExecutionAlreadyPendingError(trigger_id, pending_id)

            try:
                record = await conn.fetchrow(
                    """
                    INSERT INTO executions
                    (id, trigger_id, symbol, side, amount, observed_price,
                     status, executed_at)
                    VALUES ($1, $2, $3, $4, $5, $6, 'PENDING', $7)
                    RETURNING *
                    """,
                    str(uuid.uuid4()),
                    trigger_id,
                    trigger["symbol"],
                    trigger["side"],
                    trigger["amount"],
                    observed_price,
                    datetime.now(timezone.utc),
                )
            except asyncpg.UniqueViolationError:
                raise ExecutionAlreadyPendingError(trigger_id)

        return self._record_to_model(record)

    async def finalize(
        self,
        execution_id: str,
        status: ExecutionStatus,
        tx_reference: Optional[str] = None,
        error_detail: Optional[str] = None,
    ) -> Execution:
        """
        Resolve a PENDING execution exactly once.

        Raises:
            ExecutionAlreadyFinalizedError: row missing or no longer PENDING
        """
        query = """
            UPDATE executions
            SET status = $2, tx_reference = $3, error_detail = $4, finalized_at = $5
            WHERE id = $1 AND status = 'PENDING'
            RETURNING *
        """
        record = await self.db.fetchrow(
            query,
            execution_id,
            status.value,
            tx_reference,
            error_detail,
            datetime.now(timezone.utc),
        )
        if record is not None:
            return self._record_to_model(record)

        current = await self.db.fetchval(
            "SELECT status FROM executions WHERE id = $1", execution_id
        )
        raise ExecutionAlreadyFinalizedError(
            execution_id, ExecutionStatus(current) if current else None
        )

    async def get_by_trigger(self, trigger_id: str, limit: int = 50) -> list[Execution]:
        """Attempt history for a trigger, oldest first."""
        query = """
            SELECT * FROM executions
            WHERE trigger_id = $1
            ORDER BY executed_at
            LIMIT $2
        """
        records = await self.db.fetch(query, trigger_id, limit)
        return self._records_to_models(records)
