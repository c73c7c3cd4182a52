from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import pytest

from pglockwatch.core.models import BackendProcess

DB_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_now():
    return DB_NOW


@pytest.fixture
def activity_row():
    """Factory for pg_stat_activity rows as returned by the activity query."""
    def make(pid: int, blocked_by=(), wait_event_type="Lock", state_change_seconds_ago=10, **overrides) -> Dict[str, Any]:
        row = {
            "pid": pid,
            "state": "active",
            "blocked_by": None if blocked_by is None else list(blocked_by),
            "wait_event_type": wait_event_type,
            "wait_event": "relation" if wait_event_type == "Lock" else "ClientRead",
            "query": f"UPDATE accounts SET balance = 0 -- {pid}",
            "backend_type": "client backend",
            "datname": "app",
            "usename": "app_user",
            "application_name": "psql",
            "client_addr": None,
            "client_hostname": None,
            "client_port": -1,
            "current_database_time": DB_NOW,
            "backend_start": DB_NOW - timedelta(hours=1),
            "xact_start": DB_NOW - timedelta(minutes=5),
            "query_start": DB_NOW - timedelta(seconds=state_change_seconds_ago),
            "state_change": DB_NOW - timedelta(seconds=state_change_seconds_ago),
            "backend_xid": None,
        }
        row.update(overrides)
        return row
    return make


@pytest.fixture
def lock_row():
    """Factory for pg_locks rows joined with pg_class, all target columns NULL."""
    def make(pid: int, locktype="relation", mode="AccessExclusiveLock", granted=True, **overrides) -> Dict[str, Any]:
        row = {
            "pid": pid,
            "locktype": locktype,
            "mode": mode,
            "granted": granted,
            "waitstart": None,
            "relation": None,
            "page": None,
            "tuple": None,
            "virtualxid": None,
            "transactionid": None,
            "classid": None,
            "objid": None,
            "objsubid": None,
            "virtualtransaction": f"3/{pid}",
            "relname": None,
            "relkind": "",
        }
        row.update(overrides)
        return row
    return make


@pytest.fixture
def make_process():
    """Factory for decoded process nodes."""
    def make(pid: int, blocked_by=(), wait_event_type="Lock", state_change_seconds_ago=10, **overrides) -> BackendProcess:
        fields = {
            "pid": pid,
            "state": "active",
            "wait_event_type": wait_event_type,
            "wait_event": "relation" if wait_event_type == "Lock" else "ClientRead",
            "backend_type": "client backend",
            "query": f"UPDATE accounts SET balance = 0 -- {pid}",
            "current_database_time": DB_NOW,
            "application": "psql",
            "query_start": DB_NOW - timedelta(seconds=state_change_seconds_ago),
            "state_change": DB_NOW - timedelta(seconds=state_change_seconds_ago),
            "blocked_by_pids": tuple(blocked_by),
        }
        fields.update(overrides)
        return BackendProcess(**fields)
    return make
