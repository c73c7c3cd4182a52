from __future__ import annotations
import asyncio
import asyncpg
from typing import Any, Callable, Protocol, List, Dict, Optional
from dataclasses import dataclass

from pglockwatch.core.errors import ConnectionLostError, QueryError

# Failures that mean the connection itself is gone, not just the statement.
CONNECTION_ERRORS = (OSError, asyncpg.PostgresConnectionError, asyncpg.InterfaceError)

@dataclass
class QueryResult:
    rows: List[Dict[str, Any]]
    row_count: Optional[int]
    fields: Optional[List[Dict[str, Any]]]

class QueryExecutor(Protocol):
    async def execute(self, sql: str, params: Optional[List[Any]] = None, timeout_ms: Optional[int] = None) -> QueryResult:
        ...

class AsyncpgSessionExecutor:
    """Runs read queries on one asyncpg connection.

    ``on_connection_lost`` is called before a network-level failure is
    re-raised, so the owner of the connection can drop it.
    """

    def __init__(self, connection: asyncpg.Connection, on_connection_lost: Optional[Callable[[], None]] = None):
        self._connection = connection
        self._on_connection_lost = on_connection_lost

    async def execute(self, sql: str, params: Optional[List[Any]] = None, timeout_ms: Optional[int] = None) -> QueryResult:
        timeout = timeout_ms / 1000 if timeout_ms else None
        try:
            results = await self._connection.fetch(sql, *(params or []), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise QueryError(f"Query timed out after {timeout_ms}ms") from e
        except CONNECTION_ERRORS as e:
            if self._on_connection_lost:
                self._on_connection_lost()
            raise ConnectionLostError(f"Connection lost while querying: {e}") from e
        except asyncpg.PostgresError as e:
            raise QueryError(f"Query failed: {e}") from e

        rows = [dict(row) for row in results]
        fields = [{"name": name} for name in results[0].keys()] if results else []
        return QueryResult(
            rows=rows,
            row_count=len(rows),
            fields=fields,
        )
