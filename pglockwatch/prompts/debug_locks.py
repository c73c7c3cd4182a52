from fastmcp import Context
from fastmcp.prompts import Message
from pglockwatch.app import mcp

@mcp.prompt()
async def debug_lock_contention(ctx: Context) -> list[Message]:
    """Debug lock contention issues.

    Guides the LLM to walk the blocking chain back to its root.
    """
    return [
        Message(
            role="user",
            content="""Investigate database lock contention:

1. Use `pg_locks` with `action="describe"` to see every process waiting on a lock and what it waits behind.
2. Use `pg_locks` with `action="blocked"` for the structured data (PIDs, lock modes, relations, timestamps).
3. Follow `blocked_by` to the root blockers: processes that hold locks but are not waiting themselves, often `idle in transaction`.
4. Watch for blocking cycles; PostgreSQL's deadlock detector resolves them after `deadlock_timeout`.
5. Provide recommendations for resolving contention based on the findings. Do not terminate backends yourself.
"""
        )
    ]
