"""Human-readable narrative for a blocked process and its blocking chain."""
from __future__ import annotations

from datetime import timedelta
from typing import FrozenSet, List, Optional

from pglockwatch.core.models import (
    RELATION_KINDS,
    BackendProcess,
    ClassObjectTarget,
    LockRecord,
    RelationTarget,
    SpeculativeTokenTarget,
    TransactionIdTarget,
    VirtualXidTarget,
)

QUERY_PREVIEW_LENGTH = 40

# Every transaction holds an exclusive lock on its own (virtual) XID.
SKIP_HOLDING_LOCK_ON_ITSELF = True


def format_duration(delta: Optional[timedelta]) -> str:
    if delta is None:
        return "an unknown time"
    total = max(delta.total_seconds(), 0.0)
    if total < 60:
        return f"{total:.3f}s"
    minutes, seconds = divmod(int(total), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes}m{seconds}s"
    return f"{minutes}m{seconds}s"


def _relation_label(target: RelationTarget) -> str:
    kind = RELATION_KINDS.get(target.relation_kind)
    if kind:
        return f"{kind} {target.relation_name}"
    if target.relation_kind == "":
        if not target.relation_name:
            return f"unknown OID {target.relation_oid}"
        return f"unknown OID {target.relation_name} ({target.relation_oid})"
    if not target.relation_name:
        return f"[{target.relation_kind}] {target.relation_oid}"
    return f"[{target.relation_kind}] {target.relation_name} ({target.relation_oid})"


def describe_lock_target(lock: LockRecord, process: BackendProcess) -> Optional[str]:
    """Describe what a lock points at, or None for a granted lock on the process's own XID."""
    target = lock.target
    parts: List[str] = []

    if isinstance(target, RelationTarget):
        parts.append(_relation_label(target))
        if lock.page is not None:
            parts.append(f"page {lock.page}")
        if lock.tuple_index is not None:
            parts.append(f"tuple {lock.tuple_index}")
    elif isinstance(target, VirtualXidTarget):
        if target.virtual_xid == lock.virtual_transaction:
            if lock.granted and SKIP_HOLDING_LOCK_ON_ITSELF:
                return None
            parts.append(f"itself (virtual XID {target.virtual_xid})")
        else:
            parts.append(f"virtual XID {target.virtual_xid}")
    elif isinstance(target, TransactionIdTarget):
        if target.transaction_id == process.backend_xid:
            if lock.granted and SKIP_HOLDING_LOCK_ON_ITSELF:
                return None
            parts.append(f"itself (XID {target.transaction_id})")
        else:
            parts.append(f"transaction XID {target.transaction_id}")
        if isinstance(target, SpeculativeTokenTarget):
            parts.append(f"speculative insertion token {target.obj_id}")
    elif isinstance(target, ClassObjectTarget):
        if target.class_id is not None:
            parts.append(f"class id {target.class_id}")
        if target.obj_id is not None:
            parts.append(f"object id {target.obj_id}")
        if target.obj_sub_id is not None:
            parts.append(f"object sub-id {target.obj_sub_id}")

    if not parts:
        parts.append("unknown target")
    return ", ".join(parts)


def _query_preview(query: str) -> str:
    return query.replace("\r", "").replace("\n", " ")[:QUERY_PREVIEW_LENGTH]


def _describe_lines(process: BackendProcess, path: FrozenSet[int]) -> List[str]:
    now = process.current_database_time
    lines = [
        f'Process {process.pid} ({process.backend_type} "{process.application}") is '
        f"{process.state or 'in no state'} for {format_duration(process.state_duration)} "
        f"({process.wait_event_type}:{process.wait_event})"
    ]

    if not process.query:
        lines.append("  (no query)")
    elif process.state == "active":
        lines.append(f"  running for {format_duration(process.query_duration)}: {_query_preview(process.query)}")
    else:
        lines.append(
            f"  last query started {format_duration(process.query_duration)} ago: {_query_preview(process.query)}"
        )

    if not process.locks:
        lines.append("  (holding no locks)")
    for lock in process.locks:
        target = describe_lock_target(lock, process)
        if target is None:
            continue
        verb = "holding" if lock.granted else "waiting for"
        line = f"  {verb} {lock.lock_type}/{lock.mode} lock on {target}"
        if lock.wait_start is not None:
            line += f" (since {format_duration(now - lock.wait_start)})"
        lines.append(line)

    if not process.blocked_by_pids:
        lines.append("  (blocked by no processes)")
        return lines

    lines.append(f"  blocked by {len(process.blocked_by_pids)} processes:")
    path = path | {process.pid}
    for pid in process.blocked_by_pids:
        blocker = process.arena.get(pid)
        if blocker is None:
            nested = [f"process {pid} (not present in this snapshot)"]
        elif pid in path:
            nested = [f"process {pid} (already described above; blocking cycle)"]
        else:
            nested = _describe_lines(blocker, path)
        prefix = "- "
        for text in nested:
            lines.append(f"  {prefix}{text}")
            prefix = "  "
    return lines


def describe_process(process: BackendProcess) -> str:
    """Render a process and, recursively, everything it waits behind.

    Each branch stops at a PID already on the current path, so blocking
    cycles terminate.
    """
    return "\n".join(_describe_lines(process, frozenset())) + "\n"
