"""Assemble fetched rows into a blocking graph.

Every fetched process goes into a PID-keyed arena. Edges stay PID lists that
are looked up in the arena on access, so nothing here walks ``blocked_by``
and a blocking cycle needs no special handling. Callers that follow the chain
recursively must guard against cycles themselves.
"""
from __future__ import annotations

import dataclasses
from collections import defaultdict
from types import MappingProxyType
from typing import Dict, Iterable, List

from pglockwatch.core.errors import DuplicatePidError
from pglockwatch.core.logger import get_logger
from pglockwatch.core.models import BackendProcess, LockRecord, Snapshot

logger = get_logger(__name__)


def _presentation_order(process: BackendProcess):
    # Oldest state change first; processes without one go last.
    changed = process.state_change
    return (changed is None, changed.timestamp() if changed else 0.0, process.pid)


def assemble_snapshot(processes: Iterable[BackendProcess], locks: Iterable[LockRecord]) -> Snapshot:
    """Build the full snapshot from decoded activity and lock rows.

    Raises:
        DuplicatePidError: The same PID appeared in more than one activity row.
    """
    rows: Dict[int, BackendProcess] = {}
    for process in processes:
        if process.pid in rows:
            raise DuplicatePidError(process.pid)
        rows[process.pid] = process

    locks_by_pid: Dict[int, List[LockRecord]] = defaultdict(list)
    for lock in locks:
        locks_by_pid[lock.pid].append(lock)

    arena: Dict[int, BackendProcess] = {}
    view = MappingProxyType(arena)
    for pid, process in rows.items():
        missing = [blocker for blocker in process.blocked_by_pids if blocker not in rows]
        if missing:
            logger.warning(
                "Blocking process not found in activity",
                {"pid": pid, "missing_blockers": missing},
            )
        arena[pid] = dataclasses.replace(process, locks=tuple(locks_by_pid.get(pid, ())), arena=view)

    orphaned = set(locks_by_pid) - set(arena)
    if orphaned:
        logger.debug("Ignoring locks of processes outside the snapshot", {"pids": sorted(orphaned)})

    blocked = sorted((p for p in arena.values() if p.is_blocked), key=_presentation_order)
    taken_at = next(iter(arena.values())).current_database_time if arena else None
    return Snapshot(processes=view, blocked=tuple(blocked), taken_at=taken_at)


def assemble(processes: Iterable[BackendProcess], locks: Iterable[LockRecord]) -> List[BackendProcess]:
    """Return the lock-waiting processes, oldest state change first."""
    return list(assemble_snapshot(processes, locks).blocked)
