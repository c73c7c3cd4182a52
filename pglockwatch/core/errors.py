"""Exception hierarchy for the lock watcher."""


class LockWatchError(Exception):
    """Base exception for all pglockwatch errors."""


class ConfigurationError(LockWatchError):
    """Invalid or missing configuration."""


class ConnectError(LockWatchError):
    """Could not establish a connection to the database."""


class ConnectionLostError(ConnectError):
    """An established connection failed at the network level."""


class TransactionError(LockWatchError):
    """BEGIN or ROLLBACK of the read transaction failed."""


class QueryError(LockWatchError):
    """A discovery query failed."""


class DecodeError(LockWatchError):
    """A returned row did not have the expected shape."""


class DuplicatePidError(LockWatchError):
    """The same backend PID was returned more than once in one snapshot."""

    def __init__(self, pid: int):
        super().__init__(f"backend process {pid} was returned multiple times")
        self.pid = pid


class ShutdownRequested(LockWatchError):
    """A stop was requested while waiting to reconnect."""
