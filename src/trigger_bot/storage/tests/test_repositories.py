"""
Tests for the PostgreSQL repositories against a mocked Database.

These pin the claim protocol: advisory lock, status re-check, pending
check, insert, all inside one transaction.
"""
import pytest
from decimal import Decimal

import asyncpg

from trigger_bot.storage import (
    ExecutionAlreadyFinalizedError,
    ExecutionAlreadyPendingError,
    ExecutionStatus,
    PostgresTriggerStore,
    PriceOperator,
    SmartPredicate,
    TriggerNotActiveError,
    TriggerStatus,
)
from trigger_bot.storage.repositories import (
    ExecutionRepository,
    TriggerRepository,
    claim_lock_key,
)


class TestTriggerRepository:

    @pytest.mark.asyncio
    async def test_builds_trigger_with_owner(self, mock_db, trigger_row):
        mock_db.fetch.return_value = [trigger_row(email="a@b.c", telegram_chat_id="99")]

        triggers = await TriggerRepository(mock_db).get_active()

        assert len(triggers) == 1
        trigger = triggers[0]
        assert trigger.user.wallet_address == "0xabc"
        assert trigger.user.telegram_chat_id == "99"
        assert trigger.predicate.operator is PriceOperator.BELOW
        assert trigger.slippage_percent == Decimal("5")

    @pytest.mark.asyncio
    async def test_reads_smart_conditions_json(self, mock_db, trigger_row):
        mock_db.fetch.return_value = [
            trigger_row(
                condition=None,
                target_price=None,
                smart_conditions='[{"metric": "RSI", "operator": "LT", "value": 30}]',
            )
        ]

        triggers = await TriggerRepository(mock_db).get_active()

        assert isinstance(triggers[0].predicate, SmartPredicate)

    @pytest.mark.asyncio
    async def test_skips_rows_with_malformed_predicates(self, mock_db, trigger_row):
        mock_db.fetch.return_value = [
            trigger_row(id="bad", condition=None, target_price=None, smart_conditions="[]"),
            trigger_row(id="good"),
        ]

        triggers = await TriggerRepository(mock_db).get_active()

        assert [t.id for t in triggers] == ["good"]

    @pytest.mark.asyncio
    async def test_get_by_id_missing_returns_none(self, mock_db):
        mock_db.fetchrow.return_value = None

        assert await TriggerRepository(mock_db).get_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_status_update_is_guarded_by_active(self, mock_db):
        mock_db.fetchval.return_value = "trig-1"

        updated = await TriggerRepository(mock_db).update_status_if_active(
            "trig-1", TriggerStatus.EXECUTED
        )

        assert updated is True
        query, trigger_id, status = mock_db.fetchval.call_args[0][:3]
        assert "status = 'ACTIVE'" in query
        assert trigger_id == "trig-1"
        assert status == "EXECUTED"

    @pytest.mark.asyncio
    async def test_status_update_reports_not_applied(self, mock_db):
        mock_db.fetchval.return_value = None

        updated = await TriggerRepository(mock_db).update_status_if_active(
            "trig-1", TriggerStatus.FAILED
        )

        assert updated is False


class TestExecutionClaim:

    @pytest.mark.asyncio
    async def test_claim_takes_advisory_lock_and_inserts(self, mock_db, execution_row):
        conn = mock_db._mock_conn
        conn.fetchrow.side_effect = [
            {"symbol": "ETH", "side": "BUY", "amount": Decimal("100"), "status": "ACTIVE"},
            execution_row(),
        ]
        conn.fetchval.return_value = None

        execution = await ExecutionRepository(mock_db).try_claim("trig-1", Decimal("2990"))

        assert execution.status is ExecutionStatus.PENDING
        conn.execute.assert_awaited_once_with(
            "SELECT pg_advisory_xact_lock($1)", claim_lock_key("trig-1")
        )
        insert_args = conn.fetchrow.call_args_list[1][0]
        assert "INSERT INTO executions" in insert_args[0]
        assert insert_args[2] == "trig-1"
        assert insert_args[6] == Decimal("2990")

    @pytest.mark.asyncio
    async def test_claim_refused_when_pending_exists(self, mock_db):
        conn = mock_db._mock_conn
        conn.fetchrow.side_effect = [
            {"symbol": "ETH", "side": "BUY", "amount": Decimal("100"), "status": "ACTIVE"},
        ]
        conn.fetchval.return_value = "exec-0"

        with pytest.raises(ExecutionAlreadyPendingError) as exc_info:
            await ExecutionRepository(mock_db).try_claim("trig-1", Decimal("2990"))

        assert exc_info.value.execution_id == "exec-0"
        assert conn.fetchrow.await_count == 1  # never inserted

    @pytest.mark.asyncio
    async def test_claim_refused_for_inactive_trigger(self, mock_db):
        conn = mock_db._mock_conn
        conn.fetchrow.side_effect = [
            {"symbol": "ETH", "side": "BUY", "amount": Decimal("100"), "status": "CANCELLED"},
        ]

        with pytest.raises(TriggerNotActiveError) as exc_info:
            await ExecutionRepository(mock_db).try_claim("trig-1", Decimal("2990"))

        assert exc_info.value.status is TriggerStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_claim_refused_for_missing_trigger(self, mock_db):
        mock_db._mock_conn.fetchrow.side_effect = [None]

        with pytest.raises(TriggerNotActiveError):
            await ExecutionRepository(mock_db).try_claim("ghost", Decimal("1"))

    @pytest.mark.asyncio
    async def test_unique_violation_is_a_claim_conflict(self, mock_db):
        conn = mock_db._mock_conn
        conn.fetchrow.side_effect = [
            {"symbol": "ETH", "side": "BUY", "amount": Decimal("100"), "status": "ACTIVE"},
            asyncpg.UniqueViolationError("duplicate key value"),
        ]

        with pytest.raises(ExecutionAlreadyPendingError):
            await ExecutionRepository(mock_db).try_claim("trig-1", Decimal("2990"))

    def test_lock_key_is_stable_and_distinct(self):
        assert claim_lock_key("trig-1") == claim_lock_key("trig-1")
        assert claim_lock_key("trig-1") != claim_lock_key("trig-2")
        assert -(2 ** 63) <= claim_lock_key("trig-1") < 2 ** 63


class TestExecutionFinalize:

    @pytest.mark.asyncio
    async def test_finalize_updates_pending_row(self, mock_db, execution_row):
        mock_db.fetchrow.return_value = execution_row(status="SUCCESS", tx_reference="0xtx")

        execution = await ExecutionRepository(mock_db).finalize(
            "exec-1", ExecutionStatus.SUCCESS, tx_reference="0xtx"
        )

        assert execution.status is ExecutionStatus.SUCCESS
        query = mock_db.fetchrow.call_args[0][0]
        assert "status = 'PENDING'" in query

    @pytest.mark.asyncio
    async def test_finalize_twice_raises(self, mock_db):
        mock_db.fetchrow.return_value = None
        mock_db.fetchval.return_value = "FAILED"

        with pytest.raises(ExecutionAlreadyFinalizedError) as exc_info:
            await ExecutionRepository(mock_db).finalize(
                "exec-1", ExecutionStatus.SUCCESS, tx_reference="0xtx"
            )

        assert exc_info.value.status is ExecutionStatus.FAILED


class TestPostgresTriggerStore:

    @pytest.mark.asyncio
    async def test_validates_before_touching_database(self, mock_db):
        store = PostgresTriggerStore(mock_db)

        with pytest.raises(ValueError):
            await store.finalize_execution("exec-1", ExecutionStatus.SUCCESS)

        mock_db.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_status_reports_guard(self, mock_db):
        mock_db.fetchval.return_value = None
        store = PostgresTriggerStore(mock_db)

        assert await store.set_trigger_status("trig-1", TriggerStatus.EXECUTED) is False
