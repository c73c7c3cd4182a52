import asyncio
import inspect
from typing import Awaitable, Callable, List, Optional, Union

from pglockwatch.core.connection import ConnectionManager
from pglockwatch.core.errors import ShutdownRequested
from pglockwatch.core.fetcher import fetch_blocked_subgraph
from pglockwatch.core.graph import assemble_snapshot
from pglockwatch.core.logger import get_logger
from pglockwatch.core.models import BackendProcess, Snapshot

logger = get_logger(__name__)

OnBlocked = Callable[[BackendProcess], Union[None, Awaitable[None]]]


async def wait_for_stop(stop: Optional[asyncio.Event], seconds: float) -> bool:
    """Sleep for ``seconds``; return True early if ``stop`` gets set."""
    if stop is None:
        await asyncio.sleep(seconds)
        return False
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


class LockWatcher:
    """Runs fetch cycles over one ConnectionManager, one cycle at a time."""

    def __init__(self, connections: ConnectionManager):
        self.connections = connections

    async def poll_once(self, stop: Optional[asyncio.Event] = None) -> Snapshot:
        """Run one acquire/fetch/assemble/release cycle."""
        async with await self.connections.acquire_read_transaction(stop) as tx:
            processes, locks = await fetch_blocked_subgraph(tx)
            snapshot = assemble_snapshot(processes, locks)

        logger.debug(
            "Poll cycle complete",
            {"processes": len(snapshot.processes), "blocked": len(snapshot.blocked)},
        )
        return snapshot

    async def get_blocked_processes(self) -> List[BackendProcess]:
        """One-shot lookup. The connection stays open; call ``close()`` when done."""
        snapshot = await self.poll_once()
        return list(snapshot.blocked)

    async def run(self, interval: float, on_blocked: OnBlocked, stop: Optional[asyncio.Event] = None) -> None:
        """Poll every ``interval`` seconds until cancelled, stopped, or a cycle fails.

        ``on_blocked`` is called once per blocked process, in order, and
        awaited if it returns an awaitable. Any cycle failure is raised to the
        caller; the connection is closed on every exit path.
        """
        logger.info("Lock watcher started", {"interval_seconds": interval})
        try:
            while True:
                if await wait_for_stop(stop, interval):
                    break
                snapshot = await self.poll_once(stop)
                for process in snapshot.blocked:
                    result = on_blocked(process)
                    if inspect.isawaitable(result):
                        await result
        except ShutdownRequested:
            pass
        finally:
            await self.connections.close()
        logger.info("Lock watcher stopped")

    async def close(self) -> None:
        await self.connections.close()
