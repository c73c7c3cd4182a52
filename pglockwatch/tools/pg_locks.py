from typing import Literal
from fastmcp.exceptions import ToolError
from pglockwatch.dependencies import CurrentActionContext
from pglockwatch.core.context import ActionContext
from pglockwatch.app import mcp
from pglockwatch.actions.monitor.blocking import blocked_handler, describe_handler

LOCK_ACTIONS = {
    "blocked": blocked_handler,
    "describe": describe_handler,
}

@mcp.tool()
async def pg_locks(
    action: Literal["blocked", "describe"],
    min_active_duration: float | None = None,
    context: ActionContext = CurrentActionContext(),
) -> str:
    """Lock contention diagnosis. Read-only.

    Actions:
    - blocked: Processes waiting on a lock plus their blockers, as JSON
    - describe: Readable blocking chain for every waiting process

    min_active_duration skips processes whose current state is younger
    than that many seconds.
    """
    handler = LOCK_ACTIONS.get(action)
    if not handler:
        raise ToolError(f"Unknown action: {action}")

    params = {
        "min_active_duration": min_active_duration,
    }

    return await handler(params, context)
