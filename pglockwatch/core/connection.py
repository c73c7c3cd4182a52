"""Single primary-only connection with replica detection.

The manager owns at most one asyncpg connection. Every read transaction is
opened only after the server has confirmed it is not in recovery; a replica
is closed and the connection retried after a fixed backoff, forever.
"""
from __future__ import annotations

import asyncio
import enum
from typing import Any, List, Optional

import asyncpg

from pglockwatch.core.config import DEFAULT_REPLICA_BACKOFF_SECONDS
from pglockwatch.core.errors import (
    ConnectError,
    ConnectionLostError,
    LockWatchError,
    QueryError,
    ShutdownRequested,
    TransactionError,
)
from pglockwatch.core.executor import CONNECTION_ERRORS, AsyncpgSessionExecutor, QueryResult
from pglockwatch.core.logger import get_logger

logger = get_logger(__name__)


class ConnectionState(enum.Enum):
    ABSENT = "absent"
    UNVERIFIED = "unverified"
    PRIMARY = "primary"
    REPLICA = "replica"  # pending reconnect


class ReadTransaction:
    """A read-only repeatable-read transaction for one fetch cycle.

    Use as ``async with``; the transaction is always rolled back on exit.
    """

    def __init__(self, manager: "ConnectionManager", connection: asyncpg.Connection, transaction):
        self._manager = manager
        self._connection = connection
        self._transaction = transaction
        self._executor = AsyncpgSessionExecutor(connection, on_connection_lost=manager.invalidate)
        self._released = False

    async def execute(self, sql: str, params: Optional[List[Any]] = None, timeout_ms: Optional[int] = None) -> QueryResult:
        if self._released:
            raise TransactionError("Read transaction was already released")
        return await self._executor.execute(sql, params, timeout_ms)

    async def release(self) -> None:
        """Roll back the transaction. Safe to call more than once.

        Nothing is sent when the manager has already dropped the connection;
        the server aborts the transaction when the session ends.
        """
        if self._released:
            return
        self._released = True
        if not self._manager.holds(self._connection):
            return
        try:
            await self._transaction.rollback()
        except CONNECTION_ERRORS as e:
            self._manager.invalidate()
            raise ConnectionLostError(f"Connection lost during rollback: {e}") from e
        except asyncpg.PostgresError as e:
            raise TransactionError(f"Rollback failed: {e}") from e

    async def __aenter__(self) -> "ReadTransaction":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc is None:
            await self.release()
            return
        # the error from the body wins over a failed rollback
        try:
            await self.release()
        except LockWatchError as e:
            logger.warning("Rollback failed after an earlier error", {"error": str(e), "cause": repr(exc)})


class ConnectionManager:
    """Owns the one connection used by a watcher.

    Not safe for concurrent use; the poller runs one cycle at a time.
    """

    def __init__(self, dsn: str, replica_backoff: float = DEFAULT_REPLICA_BACKOFF_SECONDS):
        self._dsn = dsn
        self._replica_backoff = replica_backoff
        self._connection: Optional[asyncpg.Connection] = None
        self.state = ConnectionState.ABSENT

    @property
    def connected(self) -> bool:
        return self._connection is not None

    def holds(self, connection: asyncpg.Connection) -> bool:
        return connection is not None and self._connection is connection

    async def acquire_read_transaction(self, stop: Optional[asyncio.Event] = None) -> ReadTransaction:
        """Return a read-only transaction on a confirmed primary.

        Raises:
            ConnectError: The server could not be reached or refused us.
            TransactionError: BEGIN failed on a confirmed primary.
            ShutdownRequested: ``stop`` was set during the replica backoff.
        """
        if self._connection is not None:
            await self._verify_primary()
            if self.state is ConnectionState.REPLICA:
                logger.info("Connected server became a replica, reconnecting to primary")
                await self.close()

        while self._connection is None:
            await self._connect()
            await self._verify_primary()
            if self.state is ConnectionState.REPLICA:
                logger.warning(
                    "Connected to a replica, reconnecting to primary",
                    {"backoff_seconds": self._replica_backoff},
                )
                await self.close()
                await self._backoff(stop)

        return await self._begin()

    async def close(self) -> None:
        connection = self._connection
        self._connection = None
        self.state = ConnectionState.ABSENT
        if connection is None:
            return
        try:
            await connection.close()
        except CONNECTION_ERRORS as e:
            logger.debug("Ignoring error while closing connection", {"error": str(e)})

    def invalidate(self) -> None:
        """Forget the connection after a network failure, without a close handshake."""
        connection = self._connection
        self._connection = None
        self.state = ConnectionState.ABSENT
        if connection is not None:
            connection.terminate()

    async def _connect(self) -> None:
        try:
            self._connection = await asyncpg.connect(self._dsn)
        except (asyncio.TimeoutError, asyncpg.PostgresError, *CONNECTION_ERRORS) as e:
            raise ConnectError(f"Cannot connect to PostgreSQL: {e}") from e
        self.state = ConnectionState.UNVERIFIED
        logger.debug("Connection opened")

    async def _verify_primary(self) -> None:
        try:
            in_recovery = await self._connection.fetchval("SELECT pg_is_in_recovery()")
        except CONNECTION_ERRORS as e:
            self.invalidate()
            raise ConnectionLostError(f"Connection lost while checking recovery status: {e}") from e
        except asyncpg.PostgresError as e:
            await self.close()
            raise QueryError(f"Recovery status check failed: {e}") from e

        self.state = ConnectionState.REPLICA if in_recovery else ConnectionState.PRIMARY

    async def _backoff(self, stop: Optional[asyncio.Event]) -> None:
        if stop is None:
            await asyncio.sleep(self._replica_backoff)
            return
        try:
            await asyncio.wait_for(stop.wait(), timeout=self._replica_backoff)
        except asyncio.TimeoutError:
            return
        raise ShutdownRequested("Stop requested while waiting to reconnect to primary")

    async def _begin(self) -> ReadTransaction:
        connection = self._connection
        transaction = connection.transaction(isolation="repeatable_read", readonly=True)
        try:
            await transaction.start()
        except CONNECTION_ERRORS as e:
            self.invalidate()
            raise ConnectionLostError(f"Connection lost while starting transaction: {e}") from e
        except asyncpg.PostgresError as e:
            raise TransactionError(f"Cannot start read transaction: {e}") from e
        return ReadTransaction(self, connection, transaction)

