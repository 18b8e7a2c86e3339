"""
PostgreSQL-backed TriggerStore.

Thin facade over TriggerRepository and ExecutionRepository that exposes
exactly the operations the engine consumes.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from trigger_bot.storage.database import Database
from trigger_bot.storage.models import Execution, ExecutionStatus, Trigger, TriggerStatus
from trigger_bot.storage.repositories import ExecutionRepository, TriggerRepository
from trigger_bot.storage.store import validate_finalize_args

logger = logging.getLogger(__name__)


class PostgresTriggerStore:
    """
    TriggerStore over asyncpg.

    Usage:
        db = Database(DatabaseConfig(url=...))
        await db.initialize()
        store = PostgresTriggerStore(db)
        triggers = await store.list_active()
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._triggers = TriggerRepository(db)
        self._executions = ExecutionRepository(db)

    async def list_active(self) -> list[Trigger]:
        return await self._triggers.get_active()

    async def get_trigger(self, trigger_id: str) -> Optional[Trigger]:
        return await self._triggers.get_by_id(trigger_id)

    async def try_claim_execution(
        self, trigger_id: str, observed_price: Decimal
    ) -> Execution:
        return await self._executions.try_claim(trigger_id, observed_price)

    async def finalize_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        tx_reference: Optional[str] = None,
        error_detail: Optional[str] = None,
    ) -> Execution:
        validate_finalize_args(status, tx_reference, error_detail)
        return await self._executions.finalize(
            execution_id, status, tx_reference, error_detail
        )

    async def set_trigger_status(self, trigger_id: str, status: TriggerStatus) -> bool:
        updated = await self._triggers.update_status_if_active(trigger_id, status)
        if not updated:
            logger.info(
                f"Trigger {trigger_id} was no longer ACTIVE; status {status.value} not applied"
            )
        return updated

    async def get_executions(self, trigger_id: str) -> list[Execution]:
        return await self._executions.get_by_trigger(trigger_id)
