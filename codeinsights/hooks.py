"""Install or remove the Claude Code ``Stop`` hook that runs a quiet sync."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from codeinsights import config
from codeinsights.errors import CodeInsightsError

logger = logging.getLogger("codeinsights.hooks")

HOOK_EVENT = "Stop"


def _load_settings(settings_file: Path) -> dict[str, Any]:
    if not settings_file.exists():
        return {}
    try:
        data = json.loads(settings_file.read_text(encoding="utf-8") or "{}")
    except json.JSONDecodeError as exc:
        raise CodeInsightsError(f"Cannot parse {settings_file}: {exc}") from exc
    if not isinstance(data, dict):
        raise CodeInsightsError(f"Unexpected settings format in {settings_file}")
    return data


def _write_settings(settings_file: Path, settings: dict[str, Any]) -> None:
    settings_file.parent.mkdir(parents=True, exist_ok=True)
    settings_file.write_text(json.dumps(settings, indent=2) + "\n", encoding="utf-8")


def _hook_commands(entry: Any) -> list[str]:
    """Commands in one hook matcher entry (object or legacy plain-string form)."""
    if not isinstance(entry, dict):
        return []
    commands: list[str] = []
    for hook in entry.get("hooks") or []:
        if isinstance(hook, str):
            commands.append(hook)
        elif isinstance(hook, dict) and isinstance(hook.get("command"), str):
            commands.append(hook["command"])
    return commands


def _is_ours(entry: Any) -> bool:
    return any(config.HOOK_MARKER in command for command in _hook_commands(entry))


def is_hook_installed(settings_file: Path | None = None) -> bool:
    settings = _load_settings(settings_file or config.CLAUDE_SETTINGS_FILE)
    hooks = settings.get("hooks") if isinstance(settings.get("hooks"), dict) else {}
    return any(_is_ours(entry) for entry in hooks.get(HOOK_EVENT) or [])


def install_hook(settings_file: Path | None = None, command: str | None = None) -> bool:
    """Add the sync hook. Returns False when it was already present."""
    path = settings_file or config.CLAUDE_SETTINGS_FILE
    settings = _load_settings(path)
    hooks = settings.setdefault("hooks", {})
    if not isinstance(hooks, dict):
        raise CodeInsightsError(f"Unexpected hooks format in {path}")

    existing = list(hooks.get(HOOK_EVENT) or [])
    if any(_is_ours(entry) for entry in existing):
        return False

    existing.append(
        {
            "matcher": "",
            "hooks": [{"type": "command", "command": command or config.HOOK_COMMAND}],
        }
    )
    hooks[HOOK_EVENT] = existing
    _write_settings(path, settings)
    logger.info(f"Installed {HOOK_EVENT} hook in {path}")
    return True


def uninstall_hook(settings_file: Path | None = None) -> bool:
    """Remove the sync hook. Returns False when nothing was removed."""
    path = settings_file or config.CLAUDE_SETTINGS_FILE
    if not path.exists():
        return False
    settings = _load_settings(path)
    hooks = settings.get("hooks")
    if not isinstance(hooks, dict) or not hooks.get(HOOK_EVENT):
        return False

    remaining = [entry for entry in hooks[HOOK_EVENT] if not _is_ours(entry)]
    if len(remaining) == len(hooks[HOOK_EVENT]):
        return False

    if remaining:
        hooks[HOOK_EVENT] = remaining
    else:
        del hooks[HOOK_EVENT]
    if not hooks:
        del settings["hooks"]
    _write_settings(path, settings)
    logger.info(f"Removed {HOOK_EVENT} hook from {path}")
    return True
