"""Transcript reconciler configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value or not value.strip():
        return default
    return Path(value.strip()).expanduser()


# Agent transcript storage (<claude_dir>/projects/<hash>/<session>.jsonl)
CLAUDE_DIR = _env_path("RECONCILER_CLAUDE_DIR", Path.home() / ".claude")

LOG_LEVEL = os.getenv("RECONCILER_LOG_LEVEL", "INFO").strip().upper() or "INFO"

# Transcript watcher tuning
WATCH_FORCE_POLLING = _env_bool("RECONCILER_WATCH_FORCE_POLLING", False)
WATCH_POLL_INTERVAL_MS = _env_int("RECONCILER_WATCH_POLL_INTERVAL_MS", 1500)
FILE_WAIT_SECONDS = _env_int("RECONCILER_FILE_WAIT_SECONDS", 60)

# Observability
OTEL_ENABLED = _env_bool("RECONCILER_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("RECONCILER_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("RECONCILER_OTEL_SERVICE_NAME", "transcript-reconciler")
PROM_PORT = _env_int("RECONCILER_PROM_PORT", 0)

# Server settings
HOST = os.getenv("RECONCILER_HOST", "0.0.0.0")
PORT = _env_int("RECONCILER_PORT", 8000)

# CORS
FRONTEND_ORIGIN = os.getenv("RECONCILER_FRONTEND_ORIGIN", "http://localhost:3000")
