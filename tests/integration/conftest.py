"""
Integration fixtures against a real PostgreSQL server.

Set DATABASE_URL to a primary the test user can create tables on; the tests
are skipped otherwise.
"""

import os
import uuid
from typing import AsyncGenerator

import asyncpg
import pytest

from pglockwatch.core.connection import ConnectionManager
from pglockwatch.core.poller import LockWatcher

@pytest.fixture
def dsn() -> str:
    value = os.environ.get("DATABASE_URL")
    if not value:
        pytest.skip("DATABASE_URL is not set")
    return value

@pytest.fixture
async def watcher(dsn) -> AsyncGenerator[LockWatcher, None]:
    watcher = LockWatcher(ConnectionManager(dsn, replica_backoff=0.1))
    yield watcher
    await watcher.close()

@pytest.fixture
async def scratch_table(dsn) -> AsyncGenerator[str, None]:
    """A throwaway table with one row, dropped afterwards."""
    name = f"pglockwatch_{uuid.uuid4().hex[:12]}"
    conn = await asyncpg.connect(dsn)
    try:
        await conn.execute(f"CREATE TABLE {name} (id int PRIMARY KEY, balance int)")
        await conn.execute(f"INSERT INTO {name} VALUES (1, 100)")
        yield name
    finally:
        await conn.execute(f"DROP TABLE IF EXISTS {name}")
        await conn.close()
