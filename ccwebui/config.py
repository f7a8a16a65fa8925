"""ccwebui Backend Configuration."""
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


def _env_path(name: str) -> Path | None:
    value = (os.getenv(name) or "").strip()
    if not value:
        return None
    return Path(value).expanduser()


# Assistant CLI and its on-disk state. When unset, both are resolved
# relative to the user's home directory at request time.
CLAUDE_CLI_PATH = os.getenv("CCWEBUI_CLAUDE_CLI", "claude")
CLAUDE_HOME = _env_path("CCWEBUI_CLAUDE_HOME")
CLAUDE_CONFIG_FILE = _env_path("CCWEBUI_CLAUDE_CONFIG")

# History view
PREVIEW_LENGTH = _env_int("CCWEBUI_PREVIEW_LENGTH", 100)

# Streaming: max bytes of a single assistant output line
STREAM_LINE_LIMIT = _env_int("CCWEBUI_STREAM_LINE_LIMIT", 10 * 1024 * 1024)

# Project info: git lookups, and the repository a hosted workspace was cloned from
GIT_TIMEOUT_SECONDS = _env_int("CCWEBUI_GIT_TIMEOUT_SECONDS", 5)
CLONE_REPO = os.getenv("CLONE_REPO", "").strip()
CLONE_BRANCH = os.getenv("CLONE_BRANCH", "").strip()
CLONE_PR = os.getenv("CLONE_PR", "").strip()

# Logging / observability
LOG_LEVEL = os.getenv("CCWEBUI_LOG_LEVEL", "INFO").upper()
OTEL_ENABLED = _env_bool("CCWEBUI_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("CCWEBUI_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("CCWEBUI_OTEL_SERVICE_NAME", "ccwebui-backend")
PROM_PORT = _env_int("CCWEBUI_PROM_PORT", 0)

# Server settings
HOST = os.getenv("CCWEBUI_HOST", "127.0.0.1")
PORT = _env_int("CCWEBUI_PORT", 8080)

# CORS
FRONTEND_ORIGIN = os.getenv("CCWEBUI_FRONTEND_ORIGIN", "http://localhost:3000")
