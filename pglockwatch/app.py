from contextlib import asynccontextmanager

from fastmcp import FastMCP

from pglockwatch.core.config import WatchSettings
from pglockwatch.core.connection import ConnectionManager
from pglockwatch.core.context import ActionContext
from pglockwatch.core.poller import LockWatcher


# Lifespan context manager for initialization/cleanup
@asynccontextmanager
async def lifespan(server: FastMCP):
    """Build the lock watcher once at startup and close its connection on shutdown."""
    settings = WatchSettings.from_env()
    watcher = LockWatcher(ConnectionManager(settings.dsn, replica_backoff=settings.replica_backoff))
    action_context = ActionContext(watcher=watcher, settings=settings)

    try:
        yield {"action_context": action_context}
    finally:
        await watcher.close()


mcp = FastMCP(
    name="pglockwatch",
    version="1.0.0",
    instructions=(
        "pglockwatch PostgreSQL lock monitor - Inspect processes blocked on locks"
        " and the chain of processes blocking them. Read-only."
    ),
    lifespan=lifespan,
)

# Health endpoint
@mcp.custom_route("/health", methods=["GET"])
async def health(request):
    """Returns the health status of the server."""
    from starlette.responses import JSONResponse

    return JSONResponse({"status": "ok"})
