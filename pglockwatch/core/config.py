import os
from dataclasses import dataclass
from typing import Mapping, Optional

from pglockwatch.core.errors import ConfigurationError

DEFAULT_INTERVAL_SECONDS = 1.0
DEFAULT_MIN_ACTIVE_DURATION_SECONDS = 0.1
DEFAULT_REPLICA_BACKOFF_SECONDS = 5.0


def _seconds(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number of seconds, got {raw!r}")
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {raw!r}")
    return value


@dataclass(frozen=True)
class WatchSettings:
    """Runtime settings for the poller and the MCP server."""
    dsn: str
    interval: float = DEFAULT_INTERVAL_SECONDS
    min_active_duration: float = DEFAULT_MIN_ACTIVE_DURATION_SECONDS
    replica_backoff: float = DEFAULT_REPLICA_BACKOFF_SECONDS

    def __post_init__(self):
        if not self.dsn:
            raise ConfigurationError("A connection string is required (set DATABASE_URL or pass --dsn).")
        if self.interval <= 0:
            raise ConfigurationError(f"Poll interval must be positive, got {self.interval}")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, **overrides) -> "WatchSettings":
        """Build settings from environment variables, with explicit overrides winning."""
        if env is None:
            env = os.environ

        values = {
            "dsn": env.get("DATABASE_URL", ""),
            "interval": _seconds(env, "PGLOCKWATCH_INTERVAL", DEFAULT_INTERVAL_SECONDS),
            "min_active_duration": _seconds(
                env, "PGLOCKWATCH_MIN_ACTIVE_DURATION", DEFAULT_MIN_ACTIVE_DURATION_SECONDS
            ),
            "replica_backoff": _seconds(env, "PGLOCKWATCH_REPLICA_BACKOFF", DEFAULT_REPLICA_BACKOFF_SECONDS),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
