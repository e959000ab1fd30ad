"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_CACHE_DB_PATH = DATA_DIR / "cache.sqlite"
DEFAULT_LOG_PATH = LOGS_DIR / "fetchcore.log"

ENV_PREFIX = "FETCHCORE_"


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve CACHE_DB_PATH to an absolute path."""
    if not env_value:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        return DEFAULT_CACHE_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


@dataclass
class Settings:
    """Tunables for the request pipeline, cache store and tracer."""

    # queue processor
    idle_delay_seconds: float = 0.1  # recheck interval when nothing is due
    dispatch_delay_seconds: float = 0.25  # global throttle between entries
    retry_base_delay_seconds: float = 1.0
    retry_backoff_multiplier: float = 2.0
    retry_max_delay_seconds: float = 60.0
    retry_jitter_factor: float = 0.1

    # cache store
    cache_db_path: str | None = None
    cache_max_entries: int = 10_000
    cache_sweep_interval_seconds: float = 300.0

    # tracer
    trace_history_size: int = 1000
    trace_buffer_linger_seconds: float = 1.0

    # transport
    http_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """Build settings from FETCHCORE_* env vars, then explicit overrides."""
        values: dict = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            default = f.default
            if isinstance(default, bool):
                values[f.name] = raw.lower() in ("1", "true", "yes")
            elif isinstance(default, int):
                values[f.name] = int(raw)
            elif isinstance(default, float):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw

        if "cache_db_path" not in values and os.getenv("CACHE_DB_PATH"):
            values["cache_db_path"] = os.getenv("CACHE_DB_PATH")

        values.update(overrides)
        return cls(**values)
