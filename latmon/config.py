"""Process settings read from LATMON_* environment variables."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

CHECKPOINT_INTERVAL_MS = 5 * 60 * 1000
PERFORMANCE_CONFIG_KEY = "database_performance_config"


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    database_path: Path = Path("data/latmon.db")
    bind_host: str = "0.0.0.0"
    port: int = 3003
    poll_interval_ms: int = 15000
    probe_timeout_ms: int = 1000
    max_concurrent_probes: int = 20
    recorder_queue_max: int = 1000
    retention_days: int = 30
    prober: str = "ping"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from the environment (or an explicit mapping)."""
        if env is None:
            env = os.environ

        prober = env.get("LATMON_PROBER", "ping").strip().lower() or "ping"
        if prober not in ("ping", "fake"):
            raise ValueError(f"LATMON_PROBER must be 'ping' or 'fake', got {prober!r}")

        return cls(
            database_path=Path(env.get("LATMON_DATABASE_PATH", "data/latmon.db")),
            bind_host=env.get("LATMON_BIND_HOST", "0.0.0.0"),
            port=_int(env, "LATMON_PORT", 3003),
            poll_interval_ms=_int(env, "LATMON_POLL_INTERVAL_MS", 15000),
            probe_timeout_ms=_int(env, "LATMON_PROBE_TIMEOUT_MS", 1000),
            max_concurrent_probes=_int(env, "LATMON_MAX_CONCURRENT_PROBES", 20),
            recorder_queue_max=_int(env, "LATMON_RECORDER_QUEUE_MAX", 1000),
            retention_days=_int(env, "LATMON_RETENTION_DAYS", 30),
            prober=prober,
        )
