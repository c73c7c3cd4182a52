"""Discovery queries for lock waiters and their blockers.

Both queries run inside the same repeatable-read transaction, so the lock rows
describe the same moment as the activity rows.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional, Tuple

from pglockwatch.core.errors import DecodeError
from pglockwatch.core.executor import QueryExecutor
from pglockwatch.core.logger import get_logger
from pglockwatch.core.models import (
    BackendProcess,
    ClassObjectTarget,
    LockRecord,
    LockTarget,
    RelationPageTarget,
    RelationTarget,
    RelationTupleTarget,
    SpeculativeTokenTarget,
    TransactionIdTarget,
    UnknownTarget,
    VirtualXidTarget,
)

logger = get_logger(__name__)

_ACTIVITY_COLUMNS = """
        a.pid, a.state, a.wait_event_type, a.wait_event, a.query, a.backend_type,
        a.datname, a.usename, a.application_name,
        a.client_addr, a.client_hostname, a.client_port,
        a.backend_start, a.xact_start, a.query_start, a.state_change,
        a.backend_xid,
        pg_catalog.pg_blocking_pids(a.pid)::int4[] AS blocked_by
"""

# Seeded by every lock waiter, then expanded through pg_blocking_pids() until
# no new blocker shows up. Blockers that are not waiting themselves (e.g. idle
# in transaction) are included so they can be described.
ACTIVITY_SQL = f"""
    WITH RECURSIVE activities AS (
        SELECT {_ACTIVITY_COLUMNS}
        FROM pg_catalog.pg_stat_activity a
        WHERE a.wait_event_type = 'Lock'
        UNION
        SELECT {_ACTIVITY_COLUMNS}
        FROM pg_catalog.pg_stat_activity a, activities
        WHERE a.pid = ANY(activities.blocked_by)
    )
    SELECT
        pid, state, blocked_by, wait_event_type, wait_event,
        query, backend_type, datname, usename, application_name,
        client_addr, client_hostname, client_port,
        current_timestamp AS current_database_time,
        backend_start, xact_start, query_start, state_change,
        backend_xid
    FROM activities
"""

LOCKS_SQL = """
    SELECT
        l.pid, l.locktype, l.mode, l.granted, l.waitstart,
        l.relation, l.page, l.tuple, l.virtualxid, l.transactionid,
        l.classid, l.objid, l.objsubid, l.virtualtransaction,
        rel.relname, coalesce(rel.relkind, '')::text AS relkind
    FROM pg_catalog.pg_locks l
    LEFT JOIN pg_catalog.pg_class rel ON rel.oid = l.relation
    WHERE l.pid = ANY($1::int4[])
    ORDER BY l.pid, l.granted, l.locktype, l.mode
"""


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def _optional_datetime(value: Any, column: str) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    raise TypeError(f"column {column} is {type(value).__name__}, expected timestamptz")


def decode_activity_row(row: Mapping[str, Any]) -> BackendProcess:
    """Turn one activity row into a process node without locks or edges."""
    try:
        current = row["current_database_time"]
        if not isinstance(current, datetime):
            raise TypeError("current_database_time is not a timestamp")
        return BackendProcess(
            pid=int(row["pid"]),
            state=row["state"] or "",
            wait_event_type=row["wait_event_type"] or "",
            wait_event=row["wait_event"] or "",
            backend_type=row["backend_type"] or "",
            query=row["query"] or "",
            current_database_time=current,
            database=row["datname"],
            username=row["usename"],
            application=row["application_name"] or "",
            client_address=row["client_addr"],
            client_hostname=row["client_hostname"],
            client_port=_optional_int(row["client_port"]),
            backend_start=_optional_datetime(row["backend_start"], "backend_start"),
            transaction_start=_optional_datetime(row["xact_start"], "xact_start"),
            query_start=_optional_datetime(row["query_start"], "query_start"),
            state_change=_optional_datetime(row["state_change"], "state_change"),
            backend_xid=_optional_int(row["backend_xid"]),
            blocked_by_pids=tuple(int(pid) for pid in (row["blocked_by"] or ())),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Unexpected pg_stat_activity row: {e!r}") from e


def decode_lock_target(row: Mapping[str, Any]) -> LockTarget:
    """Pick the lock target variant from the columns that are set."""
    relation = row["relation"]
    page = row["page"]
    tuple_index = row["tuple"]
    if relation is not None:
        base = (int(relation), row["relname"], row["relkind"] or "")
        if page is not None and tuple_index is not None:
            return RelationTupleTarget(*base, page=int(page), tuple_index=int(tuple_index))
        if page is not None:
            return RelationPageTarget(*base, page=int(page))
        return RelationTarget(*base)
    if row["virtualxid"] is not None:
        return VirtualXidTarget(virtual_xid=str(row["virtualxid"]))
    if row["transactionid"] is not None:
        if row["objid"] is not None:
            return SpeculativeTokenTarget(transaction_id=int(row["transactionid"]), obj_id=int(row["objid"]))
        return TransactionIdTarget(transaction_id=int(row["transactionid"]))
    if row["classid"] is not None or row["objid"] is not None:
        return ClassObjectTarget(
            class_id=_optional_int(row["classid"]),
            obj_id=_optional_int(row["objid"]),
            obj_sub_id=_optional_int(row["objsubid"]),
        )
    return UnknownTarget()


def decode_lock_row(row: Mapping[str, Any]) -> LockRecord:
    try:
        granted = row["granted"]
        if not isinstance(granted, bool):
            raise TypeError(f"granted is {type(granted).__name__}, expected bool")
        return LockRecord(
            pid=int(row["pid"]),
            lock_type=row["locktype"] or "",
            mode=row["mode"] or "",
            granted=granted,
            target=decode_lock_target(row),
            wait_start=_optional_datetime(row["waitstart"], "waitstart"),
            virtual_transaction=row["virtualtransaction"],
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Unexpected pg_locks row: {e!r}") from e


async def fetch_blocked_subgraph(executor: QueryExecutor) -> Tuple[List[BackendProcess], List[LockRecord]]:
    """Fetch lock waiters, their transitive blockers, and all of their locks.

    Returns no locks, and issues no lock query, when nothing is waiting.
    """
    activity = await executor.execute(ACTIVITY_SQL)
    processes = [decode_activity_row(row) for row in activity.rows]
    if not processes:
        return [], []

    pids = [p.pid for p in processes]
    lock_result = await executor.execute(LOCKS_SQL, [pids])
    locks = [decode_lock_row(row) for row in lock_result.rows]

    logger.debug("Fetched blocking subgraph", {"processes": len(processes), "locks": len(locks)})
    return processes, locks
