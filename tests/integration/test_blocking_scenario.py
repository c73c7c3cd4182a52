import asyncio

import asyncpg
import pytest

from pglockwatch.core.connection import ConnectionState
from pglockwatch.core.models import RelationTarget
from pglockwatch.core.render import describe_process

pytestmark = pytest.mark.integration

async def wait_for_blocked(watcher, pid, attempts=50):
    for _ in range(attempts):
        snapshot = await watcher.poll_once()
        if pid in snapshot.processes and snapshot.processes[pid].is_blocked:
            return snapshot
        await asyncio.sleep(0.1)
    raise AssertionError(f"process {pid} never showed up as blocked")

@pytest.mark.asyncio
async def test_nothing_blocked(watcher):
    assert await watcher.get_blocked_processes() == []
    assert watcher.connections.state is ConnectionState.PRIMARY

@pytest.mark.asyncio
async def test_row_lock_chain(dsn, watcher, scratch_table):
    holder = await asyncpg.connect(dsn)
    waiter = await asyncpg.connect(dsn)
    try:
        holder_pid = await holder.fetchval("SELECT pg_backend_pid()")
        waiter_pid = await waiter.fetchval("SELECT pg_backend_pid()")

        holder_tx = holder.transaction()
        await holder_tx.start()
        await holder.execute(f"UPDATE {scratch_table} SET balance = balance - 1 WHERE id = 1")

        pending = asyncio.create_task(
            waiter.execute(f"UPDATE {scratch_table} SET balance = balance + 1 WHERE id = 1")
        )
        snapshot = await wait_for_blocked(watcher, waiter_pid)

        blocked = snapshot.processes[waiter_pid]
        assert blocked.blocked_by_pids == (holder_pid,)
        assert blocked.blocked_by[0] is snapshot.processes[holder_pid]
        assert not snapshot.processes[holder_pid].is_blocked
        assert blocked.waiting_locks

        held = [lock for lock in snapshot.processes[holder_pid].locks if isinstance(lock.target, RelationTarget)]
        assert any(lock.relation_name == scratch_table and lock.relation_kind == "r" for lock in held)

        text = describe_process(blocked)
        assert f"Process {waiter_pid} " in text
        assert f"Process {holder_pid} " in text
        assert "idle in transaction" in text

        await holder_tx.rollback()
        await asyncio.wait_for(pending, timeout=5)
    finally:
        await waiter.close()
        await holder.close()

@pytest.mark.asyncio
async def test_table_lock_blocks_a_queue(dsn, watcher, scratch_table):
    holder = await asyncpg.connect(dsn)
    first = await asyncpg.connect(dsn)
    second = await asyncpg.connect(dsn)
    try:
        first_pid = await first.fetchval("SELECT pg_backend_pid()")
        second_pid = await second.fetchval("SELECT pg_backend_pid()")

        holder_tx = holder.transaction()
        await holder_tx.start()
        await holder.execute(f"LOCK TABLE {scratch_table} IN ACCESS EXCLUSIVE MODE")

        pending = [
            asyncio.create_task(first.fetch(f"SELECT * FROM {scratch_table}")),
        ]
        await wait_for_blocked(watcher, first_pid)
        pending.append(asyncio.create_task(second.fetch(f"SELECT * FROM {scratch_table}")))
        snapshot = await wait_for_blocked(watcher, second_pid)

        blocked_pids = [p.pid for p in snapshot.blocked]
        assert first_pid in blocked_pids
        assert second_pid in blocked_pids
        for process in snapshot.processes.values():
            for blocker in process.blocked_by:
                assert snapshot.processes[blocker.pid] is blocker

        await holder_tx.rollback()
        await asyncio.wait_for(asyncio.gather(*pending), timeout=5)
    finally:
        await second.close()
        await first.close()
        await holder.close()
