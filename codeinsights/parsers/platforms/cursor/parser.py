"""Parse Cursor composer conversations out of ``state.vscdb`` SQLite files.

A single database holds many composer sessions, so discovery returns virtual
locators (``<db path>#<composer id>``), one per session.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from codeinsights.date_utils import EPOCH, file_mtime, parse_timestamp, utc_now
from codeinsights.models import (
    MAX_CODE_BLOCK_CHARS,
    MAX_CONTENT_CHARS,
    ParsedMessage,
    ParsedSession,
    ToolCall,
    cap_text,
)
from codeinsights.parsers.locators import make_virtual_locator
from codeinsights.parsers.sessions import build_session, message_bounds, project_name_from_path

SOURCE_TOOL = "cursor"
SESSION_ID_PREFIX = "cursor:"
GLOBAL_PROJECT_PATH = "cursor://global"

_COMPOSER_KEY_PREFIX = "composerData:"
_ITEM_TABLE_COMPOSER_KEY = "composer.composerData"

logger = logging.getLogger("codeinsights.parsers")


def _connect_readonly(db_path: Path) -> sqlite3.Connection:
    return sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)


def _has_table(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (name,),
    ).fetchone()
    return row is not None


def _load_json(value: Any) -> Any:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if not isinstance(value, str) or not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return None


def _item_table_composers(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    if not _has_table(conn, "ItemTable"):
        return []
    row = conn.execute(
        "SELECT value FROM ItemTable WHERE key = ?",
        (_ITEM_TABLE_COMPOSER_KEY,),
    ).fetchone()
    data = _load_json(row[0]) if row else None
    if not isinstance(data, dict):
        return []
    composers = data.get("allComposers") or data.get("composers") or []
    return [c for c in composers if isinstance(c, dict)] if isinstance(composers, list) else []


def resolve_workspace_path(workspace_dir: Path) -> str | None:
    """Folder opened in a workspace, read from its ``workspace.json``."""
    workspace_json = workspace_dir / "workspace.json"
    if not workspace_json.is_file():
        return None
    try:
        data = json.loads(workspace_json.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    folder = data.get("folder") if isinstance(data, dict) else None
    if not isinstance(folder, str) or not folder:
        return None
    parsed = urlparse(folder)
    if parsed.scheme and parsed.path:
        return unquote(parsed.path)
    return folder


def get_composer_ids(db_path: Path) -> list[str]:
    """Composer ids in a database: key-per-composer layout first, then the ItemTable blob."""
    try:
        with closing(_connect_readonly(db_path)) as conn:
            ids: list[str] = []
            if _has_table(conn, "cursorDiskKV"):
                rows = conn.execute(
                    "SELECT key FROM cursorDiskKV WHERE key LIKE ?",
                    (f"{_COMPOSER_KEY_PREFIX}%",),
                ).fetchall()
                for (key,) in rows:
                    composer_id = str(key)[len(_COMPOSER_KEY_PREFIX):]
                    if composer_id:
                        ids.append(composer_id)

            if not ids:
                for composer in _item_table_composers(conn):
                    composer_id = composer.get("composerId")
                    if composer_id:
                        ids.append(str(composer_id))
            return ids
    except sqlite3.Error as exc:
        logger.debug(f"Cannot list composers in {db_path}: {exc}")
        return []


def discover_databases(data_dir: Path, project_filter: str | None = None) -> list[Path]:
    if not data_dir.is_dir():
        return []

    needle = project_filter.lower() if project_filter else None
    db_paths: list[Path] = []
    workspace_storage = data_dir / "workspaceStorage"
    if workspace_storage.is_dir():
        for workspace_dir in sorted(workspace_storage.iterdir()):
            db_path = workspace_dir / "state.vscdb"
            if not workspace_dir.is_dir() or not db_path.is_file():
                continue
            if needle:
                project_path = resolve_workspace_path(workspace_dir)
                if project_path and needle not in project_path.lower():
                    continue
            db_paths.append(db_path)

    global_db = data_dir / "globalStorage" / "state.vscdb"
    if global_db.is_file():
        db_paths.append(global_db)
    return db_paths


def discover_sessions(data_dir: Path, project_filter: str | None = None) -> list[str]:
    locators: list[str] = []
    for db_path in discover_databases(data_dir, project_filter):
        for composer_id in get_composer_ids(db_path):
            locators.append(make_virtual_locator(str(db_path), composer_id))
    return locators


def _load_composer(conn: sqlite3.Connection, composer_id: str) -> dict[str, Any] | None:
    if _has_table(conn, "cursorDiskKV"):
        row = conn.execute(
            "SELECT value FROM cursorDiskKV WHERE key = ?",
            (f"{_COMPOSER_KEY_PREFIX}{composer_id}",),
        ).fetchone()
        data = _load_json(row[0]) if row else None
        if isinstance(data, dict):
            return data

    for composer in _item_table_composers(conn):
        if composer.get("composerId") == composer_id:
            return composer
    return None


def _message_type(bubble: dict[str, Any]) -> str:
    if bubble.get("type") == 1 or bubble.get("role") == "user":
        return "user"
    if bubble.get("type") == 2 or bubble.get("role") == "assistant":
        return "assistant"
    return "system"


def _bubble_tool_calls(bubble: dict[str, Any], index: int) -> list[ToolCall]:
    calls: list[ToolCall] = []
    tool_data = bubble.get("toolFormerData")
    if isinstance(tool_data, str):
        tool_data = _load_json(tool_data)
    if isinstance(tool_data, dict):
        name = tool_data.get("name") or tool_data.get("toolName")
        if name:
            tool_input = tool_data.get("input") or tool_data.get("arguments") or {}
            calls.append(
                ToolCall(
                    id=str(bubble.get("bubbleId") or f"tool-{index}"),
                    name=str(name),
                    input=tool_input if isinstance(tool_input, dict) else {"value": tool_input},
                )
            )

    code_blocks = bubble.get("codeBlocks")
    if isinstance(code_blocks, list):
        for block in code_blocks:
            if not isinstance(block, dict):
                continue
            file_path = block.get("uri") or block.get("filePath")
            if not file_path:
                continue
            if isinstance(file_path, dict):
                file_path = file_path.get("fsPath") or file_path.get("path") or ""
            code = block.get("code") if isinstance(block.get("code"), str) else ""
            calls.append(
                ToolCall(
                    id=f"codeblock-{index}-{len(calls)}",
                    name="Edit",
                    input={"file_path": str(file_path), "code": cap_text(code, MAX_CODE_BLOCK_CHARS)},
                )
            )
    return calls


def extract_messages(composer: dict[str, Any], composer_id: str) -> list[ParsedMessage]:
    session_id = f"{SESSION_ID_PREFIX}{composer_id}"
    conversation = composer.get("conversation") or composer.get("messages") or []
    if not isinstance(conversation, list):
        return []

    messages: list[ParsedMessage] = []
    for index, bubble in enumerate(conversation):
        if not isinstance(bubble, dict):
            continue
        message_type = _message_type(bubble)
        raw_content = bubble.get("richText") or bubble.get("text") or bubble.get("content") or ""
        content = raw_content if isinstance(raw_content, str) else str(raw_content)
        if not content and message_type != "system":
            continue

        # Bubbles without createdAt keep the epoch and are left out of session bounds.
        timestamp = parse_timestamp(bubble.get("createdAt")) or EPOCH
        messages.append(
            ParsedMessage(
                id=str(bubble.get("bubbleId") or f"cursor-{composer_id}-{index}"),
                sessionId=session_id,
                type=message_type,
                content=cap_text(content, MAX_CONTENT_CHARS),
                toolCalls=_bubble_tool_calls(bubble, index),
                timestamp=timestamp,
            )
        )
    return messages


def _session_bounds(
    messages: list[ParsedMessage],
    composer: dict[str, Any],
    db_path: Path,
) -> tuple[datetime, datetime]:
    created_at = parse_timestamp(composer.get("createdAt"))
    last_updated = parse_timestamp(composer.get("lastUpdatedAt") or composer.get("updatedAt"))
    fallback = file_mtime(db_path) or utc_now()

    bounds = message_bounds(messages)
    if bounds:
        started_at, ended_at = bounds
    else:
        started_at = created_at or last_updated or fallback
        ended_at = started_at

    if last_updated and last_updated > ended_at:
        ended_at = last_updated
    return started_at, max(started_at, ended_at)


def parse_session(db_path: Path, composer_id: str) -> ParsedSession | None:
    try:
        with closing(_connect_readonly(db_path)) as conn:
            composer = _load_composer(conn, composer_id)
    except sqlite3.Error as exc:
        logger.debug(f"Cannot read composer {composer_id} from {db_path}: {exc}")
        return None

    if not composer:
        return None

    messages = extract_messages(composer, composer_id)
    if not messages:
        return None

    project_path = resolve_workspace_path(db_path.parent) or GLOBAL_PROJECT_PATH
    started_at, ended_at = _session_bounds(messages, composer, db_path)
    name = composer.get("name")

    return build_session(
        session_id=f"{SESSION_ID_PREFIX}{composer_id}",
        project_path=project_path,
        project_name=project_name_from_path(project_path),
        messages=messages,
        started_at=started_at,
        ended_at=ended_at,
        source_tool=SOURCE_TOOL,
        summary=name if isinstance(name, str) and name else None,
    )
