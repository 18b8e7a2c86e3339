"""
Trigger repository.

Reads triggers joined with their owner and performs the engine's only
write on the triggers table: moving an ACTIVE trigger to a terminal status.
The status guard in the UPDATE makes that transition one-way, so a trigger
cancelled by its owner mid-settlement stays CANCELLED.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from trigger_bot.storage.models import (
    PredicateError,
    TradeSide,
    Trigger,
    TriggerStatus,
    UserIdentity,
    parse_predicate,
)
from trigger_bot.storage.repositories.base import BaseRepository
from trigger_bot.storage.store import validate_terminal_status

logger = logging.getLogger(__name__)

_SELECT_TRIGGERS = """
    SELECT t.id, t.symbol, t.side, t.amount, t.condition, t.target_price,
           t.smart_conditions, t.slippage, t.status, t.created_at, t.updated_at,
           u.id AS user_id, u.wallet_address, u.email, u.telegram_chat_id
    FROM triggers t
    JOIN users u ON u.id = t.user_id
"""


class TriggerRepository(BaseRepository[Trigger]):
    """Repository for standing triggers."""

    model_class = Trigger

    def _record_to_model(self, record) -> Optional[Trigger]:
        """
        Build a Trigger from a joined row.

        Raises:
            PredicateError: if the stored predicate is malformed
        """
        if record is None:
            return None

        side = TradeSide(record["side"])
        predicate = parse_predicate(
            operator=record["condition"],
            target_price=record["target_price"],
            smart_conditions=record["smart_conditions"],
            side=side,
            trigger_id=record["id"],
        )
        return Trigger(
            id=record["id"],
            user=UserIdentity(
                user_id=record["user_id"],
                wallet_address=record["wallet_address"],
                email=record["email"],
                telegram_chat_id=record["telegram_chat_id"],
            ),
            symbol=record["symbol"],
            side=side,
            amount=Decimal(str(record["amount"])),
            predicate=predicate,
            status=TriggerStatus(record["status"]),
            slippage_percent=Decimal(str(record["slippage"])),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
        )

    async def get_active(self) -> list[Trigger]:
        """
        All ACTIVE triggers, oldest first.

        Rows with a malformed predicate are logged and skipped; they stay
        ACTIVE so a corrected predicate is picked up on a later tick.
        """
        query = _SELECT_TRIGGERS + """
            WHERE t.status = 'ACTIVE'
            ORDER BY t.created_at
        """
        records = await self.db.fetch(query)

        triggers = []
        for record in records:
            try:
                triggers.append(self._record_to_model(record))
            except PredicateError as e:
                logger.warning(f"Skipping trigger with invalid predicate: {e}")
        return triggers

    async def get_by_id(self, trigger_id: str) -> Optional[Trigger]:
        query = _SELECT_TRIGGERS + " WHERE t.id = $1"
        record = await self.db.fetchrow(query, trigger_id)
        return self._record_to_model(record)

    async def update_status_if_active(
        self, trigger_id: str, status: TriggerStatus
    ) -> bool:
        """
        Move an ACTIVE trigger to `status`.

        Returns:
            True if the row was ACTIVE and is now updated, False otherwise
        """
        validate_terminal_status(status)

        query = """
            UPDATE triggers
            SET status = $2, updated_at = $3
            WHERE id = $1 AND status = 'ACTIVE'
            RETURNING id
        """
        result = await self.db.fetchval(
            query, trigger_id, status.value, datetime.now(timezone.utc)
        )
        return result is not None
