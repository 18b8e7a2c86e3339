"""
Integration test fixtures.

These fixtures apply seed/01_schema.sql to the database named by
INTEGRATION_DATABASE_URL (or TEST_DATABASE_URL) and skip when neither is set.
"""
import os
import uuid
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from trigger_bot.storage import Database, DatabaseConfig, PostgresTriggerStore

# Mark all tests in this directory as integration tests
pytestmark = pytest.mark.integration

SCHEMA_FILE = Path(__file__).resolve().parents[2] / "seed" / "01_schema.sql"


@pytest.fixture(scope="module")
def integration_db_url():
    url = os.environ.get("INTEGRATION_DATABASE_URL", os.environ.get("TEST_DATABASE_URL"))
    if not url:
        pytest.skip("INTEGRATION_DATABASE_URL / TEST_DATABASE_URL not set")
    return url


@pytest_asyncio.fixture
async def integration_db(integration_db_url) -> AsyncGenerator[Database, None]:
    """Database with the trigger schema applied."""
    database = Database(DatabaseConfig(url=integration_db_url, max_connections=20))
    await database.initialize()
    async with database.transaction() as conn:
        await conn.execute(SCHEMA_FILE.read_text())

    yield database

    await database.close()


@pytest_asyncio.fixture
async def seeded_trigger(integration_db: Database) -> AsyncGenerator[str, None]:
    """An ACTIVE BUY ETH BELOW 3000 trigger; removed after the test."""
    suffix = uuid.uuid4().hex[:12]
    user_id, trigger_id = f"user-{suffix}", f"trigger-{suffix}"

    async with integration_db.transaction() as conn:
        await conn.execute(
            "INSERT INTO users (id, wallet_address) VALUES ($1, $2)", user_id, "0xabc"
        )
        await conn.execute(
            """
            INSERT INTO triggers (id, user_id, symbol, side, amount, condition, target_price)
            VALUES ($1, $2, 'ETH', 'BUY', 100, 'BELOW', 3000)
            """,
            trigger_id,
            user_id,
        )

    yield trigger_id

    async with integration_db.transaction() as conn:
        await conn.execute("DELETE FROM executions WHERE trigger_id = $1", trigger_id)
        await conn.execute("DELETE FROM triggers WHERE id = $1", trigger_id)
        await conn.execute("DELETE FROM users WHERE id = $1", user_id)


@pytest.fixture
def pg_store(integration_db: Database) -> PostgresTriggerStore:
    return PostgresTriggerStore(integration_db)
