"""Code Insights configuration."""
import os
import sys
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


def _default_cursor_dir() -> Path:
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "Cursor" / "User"
    if sys.platform == "win32":
        appdata = os.getenv("APPDATA") or str(home / "AppData" / "Roaming")
        return Path(appdata) / "Cursor" / "User"
    return home / ".config" / "Cursor" / "User"


# Local state
CONFIG_DIR = _env_path("CODEINSIGHTS_CONFIG_DIR", Path.home() / ".code-insights")
SYNC_STATE_FILE = CONFIG_DIR / "sync-state.json"
DEVICE_ID_FILE = CONFIG_DIR / "device-id"

# Session store
DB_PATH = _env_path("CODEINSIGHTS_DB_PATH", CONFIG_DIR / "sessions.db")

# Provider roots
CLAUDE_PROJECTS_DIR = _env_path("CODEINSIGHTS_CLAUDE_DIR", Path.home() / ".claude" / "projects")
CLAUDE_SETTINGS_FILE = CLAUDE_PROJECTS_DIR.parent / "settings.json"
CURSOR_DATA_DIR = _env_path("CODEINSIGHTS_CURSOR_DIR", _default_cursor_dir())
CODEX_HOME = _env_path("CODEX_HOME", Path.home() / ".codex")

# Logging
LOG_LEVEL = os.getenv("CODEINSIGHTS_LOG_LEVEL", "INFO").strip().upper() or "INFO"

# Observability
OTEL_ENABLED = _env_bool("CODEINSIGHTS_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("CODEINSIGHTS_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("CODEINSIGHTS_OTEL_SERVICE_NAME", "code-insights-sync")

# Watch mode
WATCH_DEBOUNCE_MS = _env_int("CODEINSIGHTS_WATCH_DEBOUNCE_MS", 1600)

# Hook command installed into Claude Code settings
HOOK_MARKER = "code-insights"
HOOK_COMMAND = os.getenv("CODEINSIGHTS_HOOK_COMMAND", "code-insights sync -q")
