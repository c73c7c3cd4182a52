import asyncio
from dataclasses import dataclass, field

from pglockwatch.core.config import WatchSettings
from pglockwatch.core.models import Snapshot
from pglockwatch.core.poller import LockWatcher

@dataclass
class ActionContext:
    """Holds shared application state for tool actions."""
    watcher: LockWatcher
    settings: WatchSettings
    cycle_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

async def take_snapshot(ctx: ActionContext) -> Snapshot:
    """
    Runs one fetch cycle on the shared watcher.

    Concurrent tool calls are serialized, since the watcher owns a single
    connection and a single in-flight transaction.
    """
    async with ctx.cycle_lock:
        return await ctx.watcher.poll_once()
