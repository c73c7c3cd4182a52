"""Backend processes, their locks, and the per-cycle snapshot.

Nodes never embed other nodes. ``BackendProcess.blocked_by`` resolves the
blocker PIDs through the snapshot's PID arena, so a blocking cycle between two
processes is just two PID lists pointing at each other.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union

LOCK_WAIT_EVENT_TYPE = "Lock"

# pg_class.relkind codes
RELATION_KINDS = {
    "r": "table",
    "i": "index",
    "S": "sequence",
    "t": "TOAST table",
    "v": "view",
    "m": "materialized view",
    "c": "composite type",
    "f": "foreign table",
    "p": "partitioned table",
    "I": "partitioned index",
}


@dataclass(frozen=True)
class RelationTarget:
    target_kind: ClassVar[str] = "relation"

    relation_oid: int
    relation_name: Optional[str]
    relation_kind: str


@dataclass(frozen=True)
class RelationPageTarget(RelationTarget):
    target_kind: ClassVar[str] = "page"

    page: int


@dataclass(frozen=True)
class RelationTupleTarget(RelationPageTarget):
    target_kind: ClassVar[str] = "tuple"

    tuple_index: int


@dataclass(frozen=True)
class VirtualXidTarget:
    target_kind: ClassVar[str] = "virtualxid"

    virtual_xid: str


@dataclass(frozen=True)
class TransactionIdTarget:
    target_kind: ClassVar[str] = "transactionid"

    transaction_id: int


@dataclass(frozen=True)
class SpeculativeTokenTarget(TransactionIdTarget):
    """Speculative insertion token (INSERT ... ON CONFLICT); pg_locks puts the token in objid."""
    target_kind: ClassVar[str] = "spectoken"

    obj_id: int


@dataclass(frozen=True)
class ClassObjectTarget:
    target_kind: ClassVar[str] = "object"

    class_id: Optional[int]
    obj_id: Optional[int]
    obj_sub_id: Optional[int]


@dataclass(frozen=True)
class UnknownTarget:
    target_kind: ClassVar[str] = "unknown"


LockTarget = Union[
    RelationTarget,
    RelationPageTarget,
    RelationTupleTarget,
    VirtualXidTarget,
    TransactionIdTarget,
    SpeculativeTokenTarget,
    ClassObjectTarget,
    UnknownTarget,
]


@dataclass(frozen=True)
class LockRecord:
    """One pg_locks row belonging to a backend process.

    Target fields that the lock's target does not carry read as ``None``.
    """
    pid: int
    lock_type: str
    mode: str
    granted: bool
    target: LockTarget = field(default_factory=UnknownTarget)
    wait_start: Optional[datetime] = None
    virtual_transaction: Optional[str] = None

    def _target_field(self, name: str) -> Any:
        return getattr(self.target, name, None)

    @property
    def relation_oid(self) -> Optional[int]:
        return self._target_field("relation_oid")

    @property
    def relation_name(self) -> Optional[str]:
        return self._target_field("relation_name")

    @property
    def relation_kind(self) -> Optional[str]:
        return self._target_field("relation_kind")

    @property
    def page(self) -> Optional[int]:
        return self._target_field("page")

    @property
    def tuple_index(self) -> Optional[int]:
        return self._target_field("tuple_index")

    @property
    def virtual_xid(self) -> Optional[str]:
        return self._target_field("virtual_xid")

    @property
    def transaction_id(self) -> Optional[int]:
        return self._target_field("transaction_id")

    @property
    def class_id(self) -> Optional[int]:
        return self._target_field("class_id")

    @property
    def obj_id(self) -> Optional[int]:
        return self._target_field("obj_id")

    @property
    def obj_sub_id(self) -> Optional[int]:
        return self._target_field("obj_sub_id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pid": self.pid,
            "lock_type": self.lock_type,
            "mode": self.mode,
            "granted": self.granted,
            "wait_start": self.wait_start,
            "virtual_transaction": self.virtual_transaction,
            "target": {"kind": self.target.target_kind, **asdict(self.target)},
        }


@dataclass(frozen=True)
class BackendProcess:
    """A PostgreSQL backend process as seen in one snapshot."""
    pid: int
    # idle, idle in transaction, active, or "" for background workers
    state: str
    # Activity, Client, Lock, ... ("" when not waiting)
    wait_event_type: str
    wait_event: str
    backend_type: str
    # "<insufficient privilege>" unless connected as a superuser or pg_read_all_stats
    query: str
    current_database_time: datetime
    database: Optional[str] = None
    username: Optional[str] = None
    application: str = ""
    client_address: Optional[Any] = None
    client_hostname: Optional[str] = None
    # -1 for a UNIX socket
    client_port: Optional[int] = None
    backend_start: Optional[datetime] = None
    transaction_start: Optional[datetime] = None
    query_start: Optional[datetime] = None
    state_change: Optional[datetime] = None
    backend_xid: Optional[int] = None
    blocked_by_pids: Tuple[int, ...] = ()
    locks: Tuple[LockRecord, ...] = ()
    arena: Mapping[int, "BackendProcess"] = field(
        default_factory=lambda: MappingProxyType({}), repr=False, compare=False
    )

    @property
    def is_blocked(self) -> bool:
        return self.wait_event_type == LOCK_WAIT_EVENT_TYPE

    def active_for_at_least(self, seconds: float) -> bool:
        """True unless the current state is known to be younger than ``seconds``."""
        duration = self.state_duration
        return duration is None or duration.total_seconds() >= seconds

    @property
    def blocked_by(self) -> List["BackendProcess"]:
        """Processes this one waits behind. PIDs missing from the snapshot are skipped."""
        return [self.arena[pid] for pid in self.blocked_by_pids if pid in self.arena]

    @property
    def waiting_locks(self) -> List[LockRecord]:
        return [lock for lock in self.locks if not lock.granted]

    def _since(self, moment: Optional[datetime]) -> Optional[timedelta]:
        if moment is None:
            return None
        return self.current_database_time - moment

    @property
    def state_duration(self) -> Optional[timedelta]:
        return self._since(self.state_change)

    @property
    def query_duration(self) -> Optional[timedelta]:
        return self._since(self.query_start)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pid": self.pid,
            "state": self.state,
            "wait_event_type": self.wait_event_type,
            "wait_event": self.wait_event,
            "backend_type": self.backend_type,
            "query": self.query,
            "database": self.database,
            "username": self.username,
            "application": self.application,
            "client_address": str(self.client_address) if self.client_address is not None else None,
            "client_hostname": self.client_hostname,
            "client_port": self.client_port,
            "current_database_time": self.current_database_time,
            "backend_start": self.backend_start,
            "transaction_start": self.transaction_start,
            "query_start": self.query_start,
            "state_change": self.state_change,
            "backend_xid": self.backend_xid,
            "blocked_by": list(self.blocked_by_pids),
            "locks": [lock.to_dict() for lock in self.locks],
        }


@dataclass(frozen=True)
class Snapshot:
    """Every process observed in one poll cycle.

    ``processes`` holds lock waiters and their blockers alike; ``blocked`` is
    the ordered subset that is actually waiting on a lock.
    """
    processes: Mapping[int, BackendProcess]
    blocked: Tuple[BackendProcess, ...]
    taken_at: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self.blocked)
