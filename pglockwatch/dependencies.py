"""Custom FastMCP dependencies for pglockwatch."""

from __future__ import annotations

from typing import TYPE_CHECKING, cast

from fastmcp.dependencies import Dependency

if TYPE_CHECKING:
    from pglockwatch.core.context import ActionContext


class _CurrentActionContext(Dependency["ActionContext"]):
    """Async context manager for ActionContext dependency."""

    async def __aenter__(self) -> ActionContext:
        """Get the ActionContext from server lifespan."""
        from fastmcp.server.dependencies import get_server

        server = get_server()
        lifespan_result = getattr(server, "_lifespan_result", None)
        if not lifespan_result:
            raise RuntimeError(
                "ActionContext not available. Server lifespan may not have completed."
            )

        action_context = lifespan_result.get("action_context")
        if action_context is None:
            raise RuntimeError(
                "ActionContext not found in server lifespan. "
                "Ensure the lifespan context manager sets action_context."
            )

        return action_context

    async def __aexit__(self, *args: object) -> None:
        pass


def CurrentActionContext() -> ActionContext:
    """Get the current ActionContext instance.

    This dependency provides access to the ActionContext which holds the
    lock watcher and the settings it was built from.

    Returns:
        A dependency that resolves to the active ActionContext instance

    Raises:
        RuntimeError: If no active ActionContext found

    Example:
        ```python
        from pglockwatch.dependencies import CurrentActionContext

        @mcp.tool()
        async def blocked_count(
            ctx: ActionContext = CurrentActionContext()
        ) -> int:
            snapshot = await take_snapshot(ctx)
            return len(snapshot)
        ```
    """
    return cast("ActionContext", _CurrentActionContext())
