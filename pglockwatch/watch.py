"""Command-line lock watcher.

Polls the database and logs a narrative for every process blocked on a lock
for at least ``--min-active-duration`` seconds. Runs until interrupted or the
first failed cycle; restarting is left to the process supervisor.
"""
import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from pglockwatch.core.config import WatchSettings
from pglockwatch.core.connection import ConnectionManager
from pglockwatch.core.errors import LockWatchError
from pglockwatch.core.logger import get_logger
from pglockwatch.core.models import BackendProcess
from pglockwatch.core.poller import LockWatcher
from pglockwatch.core.render import describe_process

logger = get_logger("pglockwatch.watch")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pglockwatch",
        description="Log PostgreSQL processes that are blocked on locks, with their blocking chain.",
    )
    parser.add_argument("--dsn", help="connection string of the database (default: $DATABASE_URL)")
    parser.add_argument(
        "--interval", type=float,
        help="seconds between lock retrievals (default: $PGLOCKWATCH_INTERVAL or 1)",
    )
    parser.add_argument(
        "--min-active-duration", type=float,
        help="minimum seconds a process must be in its current state to be reported "
             "(default: $PGLOCKWATCH_MIN_ACTIVE_DURATION or 0.1)",
    )
    return parser.parse_args(argv)


def make_reporter(min_active_duration: float):
    def report(process: BackendProcess) -> None:
        if not process.active_for_at_least(min_active_duration):
            return
        logger.warning(
            "%(narrative)s",
            {
                "narrative": describe_process(process),
                "pid": process.pid,
                "blocked_by": list(process.blocked_by_pids),
            },
        )
    return report


async def watch(settings: WatchSettings) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops; Ctrl+C still cancels via KeyboardInterrupt
            pass

    watcher = LockWatcher(ConnectionManager(settings.dsn, replica_backoff=settings.replica_backoff))
    await watcher.run(settings.interval, make_reporter(settings.min_active_duration), stop=stop)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = WatchSettings.from_env(
            dsn=args.dsn,
            interval=args.interval,
            min_active_duration=args.min_active_duration,
        )
    except LockWatchError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    try:
        asyncio.run(watch(settings))
    except LockWatchError as e:
        logger.error(f"Lock watcher failed: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
