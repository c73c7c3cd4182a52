from pglockwatch.dependencies import CurrentActionContext
from pglockwatch.core.context import ActionContext
from pglockwatch.app import mcp
from pglockwatch.actions.monitor.blocking import blocked_handler, describe_handler

@mcp.resource("postgres://monitor/blocking")
async def blocking_resource(ctx: ActionContext = CurrentActionContext()) -> str:
    """Processes currently blocked on locks."""
    return await blocked_handler({}, ctx)

@mcp.resource("postgres://monitor/blocking/narrative")
async def blocking_narrative_resource(ctx: ActionContext = CurrentActionContext()) -> str:
    """Readable blocking chains."""
    return await describe_handler({}, ctx)
