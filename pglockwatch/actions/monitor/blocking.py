import json
from typing import Dict, Any, List
from fastmcp.exceptions import ToolError
from pglockwatch.core.context import ActionContext, take_snapshot
from pglockwatch.core.errors import LockWatchError
from pglockwatch.core.models import BackendProcess
from pglockwatch.core.render import describe_process

async def _blocked_processes(params: Dict[str, Any], context: ActionContext) -> List[BackendProcess]:
    min_active = params.get("min_active_duration")
    if min_active is None:
        min_active = 0.0
    if min_active < 0:
        raise ToolError("min_active_duration must not be negative")

    try:
        snapshot = await take_snapshot(context)
    except LockWatchError as e:
        raise ToolError(f"Lock snapshot failed: {e}") from e

    return [p for p in snapshot.blocked if p.active_for_at_least(min_active)]

async def blocked_handler(params: Dict[str, Any], context: ActionContext) -> str:
    """Get processes blocked on locks, with their locks and blockers, as JSON."""
    processes = await _blocked_processes(params, context)

    blockers: Dict[int, BackendProcess] = {}
    for process in processes:
        for blocker in process.blocked_by:
            if not blocker.is_blocked:
                blockers.setdefault(blocker.pid, blocker)

    result = {
        "blocked": [p.to_dict() for p in processes],
        "blockers": [b.to_dict() for b in blockers.values()],
        "count": len(processes),
    }
    return json.dumps(result, default=str)

async def describe_handler(params: Dict[str, Any], context: ActionContext) -> str:
    """Get a readable narrative of every blocked process."""
    processes = await _blocked_processes(params, context)
    if not processes:
        return "No processes are blocked on a lock."
    return "\n".join(describe_process(p) for p in processes)
