"""Parse Codex CLI rollout files (``rollout-*.jsonl``) into ParsedSession models.

The first line carries session metadata; every following line is an event.
Assistant output arrives as a series of completed items and is folded into a
single assistant message per turn.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from codeinsights.date_utils import parse_timestamp, utc_now
from codeinsights.models import (
    MAX_CONTENT_CHARS,
    MAX_THINKING_CHARS,
    MAX_TOOL_OUTPUT_CHARS,
    MessageUsage,
    ParsedMessage,
    ParsedSession,
    SessionUsage,
    ToolCall,
    ToolResult,
    cap_text,
)
from codeinsights.parsers.sessions import (
    aggregate_usage,
    build_session,
    message_bounds,
    project_name_from_path,
)
from codeinsights.pricing import UsageEntry, calculate_cost, token_count

SOURCE_TOOL = "codex-cli"
SESSION_ID_PREFIX = "codex:"
UNKNOWN_PROJECT_PATH = "codex://unknown"

ROLLOUT_DIRS = ("sessions", "archived_sessions")
QUICK_CHECK_BYTES = 2048

_USER_EVENTS = {"user_message", "userMessage"}
_ITEM_EVENTS = {"item.completed", "agent_message", "agentMessage"}

logger = logging.getLogger("codeinsights.parsers")


def discover_rollout_files(codex_home: Path, project_filter: str | None = None) -> list[Path]:
    files: list[Path] = []
    for subdir in ROLLOUT_DIRS:
        root = codex_home / subdir
        if root.is_dir():
            files.extend(sorted(p for p in root.rglob("rollout-*.jsonl") if p.is_file()))

    if not project_filter:
        return files
    return [path for path in files if _matches_project(path, project_filter.lower())]


def _matches_project(path: Path, needle: str) -> bool:
    """Check the session cwd from the first line; unreadable files are kept."""
    try:
        with path.open("rb") as handle:
            head = handle.read(QUICK_CHECK_BYTES)
        first_line = head.decode("utf-8", errors="replace").split("\n", 1)[0]
        meta = json.loads(first_line)
    except (OSError, ValueError):
        return True
    if not isinstance(meta, dict):
        return True
    payload = meta.get("payload") if isinstance(meta.get("payload"), dict) else {}
    cwd = meta.get("cwd") or payload.get("cwd") or ""
    return needle in str(cwd).lower()


def parse_session_meta(line: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    if parsed.get("type") == "session_meta" and isinstance(parsed.get("payload"), dict):
        meta = dict(parsed["payload"])
        meta.setdefault("timestamp", parsed.get("timestamp"))
        return meta if meta.get("id") else None
    if parsed.get("id"):
        return parsed
    return None


def _codex_usage_entry(usage: dict[str, Any], model: str) -> UsageEntry:
    """Map Codex token counts onto the shared pricing keys.

    ``input_tokens`` includes the cached portion, which is billed as cache reads.
    """
    input_tokens = token_count(usage, "input_tokens")
    cached = token_count(usage, "cached_input_tokens")
    return UsageEntry(
        model=model or "unknown",
        usage={
            "input_tokens": max(0, input_tokens - cached),
            "output_tokens": token_count(usage, "output_tokens"),
            "cache_read_input_tokens": cached,
        },
    )


@dataclass
class TurnAccumulator:
    """Assistant output collected since the last turn boundary."""

    session_id: str
    text: str = ""
    thinking: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    usage: dict[str, Any] | None = None
    tool_counter: int = 0

    def next_tool_id(self, prefix: str, item_id: Any = None) -> str:
        self.tool_counter += 1
        return str(item_id) if item_id else f"codex-{prefix}-{self.tool_counter}"

    def is_empty(self) -> bool:
        return not self.text.strip() and not self.tool_calls

    def flush(self, messages: list[ParsedMessage], timestamp: datetime, model: str) -> None:
        """Emit the pending assistant message, if any, and reset the turn."""
        if not self.is_empty():
            usage = None
            if self.usage:
                entry = _codex_usage_entry(self.usage, model)
                usage = MessageUsage(
                    inputTokens=token_count(self.usage, "input_tokens"),
                    outputTokens=token_count(self.usage, "output_tokens"),
                    cacheReadTokens=token_count(self.usage, "cached_input_tokens"),
                    model=model or "unknown",
                    estimatedCostUsd=calculate_cost([entry]),
                )
            messages.append(
                ParsedMessage(
                    id=f"codex-assistant-{len(messages)}",
                    sessionId=self.session_id,
                    type="assistant",
                    content=cap_text(self.text.strip(), MAX_CONTENT_CHARS),
                    thinking=cap_text(self.thinking, MAX_THINKING_CHARS) if self.thinking else None,
                    toolCalls=list(self.tool_calls),
                    toolResults=list(self.tool_results),
                    usage=usage,
                    timestamp=timestamp,
                )
            )
        self.text = ""
        self.thinking = None
        self.tool_calls = []
        self.tool_results = []
        self.usage = None

    def add_item(self, item: dict[str, Any], payload: dict[str, Any], fallback_type: str) -> None:
        item_type = item.get("type") or fallback_type
        if item_type in ("agent_message", "agentMessage"):
            text = item.get("text") or payload.get("text") or ""
            self.text += f"{text}\n"
        elif item_type in ("command_execution", "commandExecution"):
            tool_id = self.next_tool_id("tool", item.get("id"))
            self.tool_calls.append(
                ToolCall(
                    id=tool_id,
                    name="shell",
                    input={"command": item.get("command") or "", "cwd": item.get("cwd") or ""},
                )
            )
            output = item.get("aggregatedOutput")
            if output:
                self.tool_results.append(
                    ToolResult(toolUseId=tool_id, output=cap_text(str(output), MAX_TOOL_OUTPUT_CHARS))
                )
        elif item_type in ("file_change", "fileChange"):
            for change in item.get("changes") or []:
                if not isinstance(change, dict):
                    continue
                tool_id = self.next_tool_id("file")
                self.tool_calls.append(
                    ToolCall(
                        id=tool_id,
                        name="apply_patch",
                        input={"path": change.get("path") or "", "kind": change.get("kind") or ""},
                    )
                )
                if change.get("diff"):
                    self.tool_results.append(
                        ToolResult(toolUseId=tool_id, output=cap_text(str(change["diff"]), MAX_TOOL_OUTPUT_CHARS))
                    )
        elif item_type in ("mcp_tool_call", "mcpToolCall"):
            tool_id = self.next_tool_id("mcp", item.get("id"))
            arguments = item.get("arguments")
            self.tool_calls.append(
                ToolCall(
                    id=tool_id,
                    name=str(item.get("tool") or "mcp_tool"),
                    input=arguments if isinstance(arguments, dict) else {},
                )
            )
            if item.get("result"):
                self.tool_results.append(
                    ToolResult(toolUseId=tool_id, output=cap_text(str(item["result"]), MAX_TOOL_OUTPUT_CHARS))
                )
        elif item_type == "reasoning":
            reasoning = item.get("summary") or item.get("text")
            self.thinking = reasoning if isinstance(reasoning, str) and reasoning else None


def _user_content(payload: dict[str, Any]) -> str | None:
    if isinstance(payload.get("text"), str):
        return payload["text"]
    if isinstance(payload.get("message"), str):
        return payload["message"]
    content = payload.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            str(part.get("text") or "")
            for part in content
            if isinstance(part, dict) and part.get("type") in ("text", "input_text")
        )
    item = payload.get("item")
    if isinstance(item, dict):
        return _user_content(item)
    return None


def _read_lines(path: Path) -> list[str]:
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        return [line for line in handle if line.strip()]


def parse_rollout_file(path: Path) -> ParsedSession | None:
    try:
        lines = _read_lines(path)
    except OSError as exc:
        logger.debug(f"Cannot read {path}: {exc}")
        return None
    if not lines:
        return None

    meta = parse_session_meta(lines[0])
    if not meta:
        return None

    session_id = f"{SESSION_ID_PREFIX}{meta['id']}"
    model = str(meta.get("model") or "")
    last_timestamp = parse_timestamp(meta.get("timestamp")) or utc_now()
    messages: list[ParsedMessage] = []
    usage_entries: list[UsageEntry] = []
    turn = TurnAccumulator(session_id=session_id)

    for line in lines[1:]:
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(event, dict):
            continue

        payload = event.get("payload") if isinstance(event.get("payload"), dict) else event
        event_type = payload.get("type") or event.get("type")
        event_timestamp = parse_timestamp(payload.get("timestamp") or payload.get("createdAt")) or parse_timestamp(
            event.get("timestamp")
        )

        if event_type in _USER_EVENTS:
            turn.flush(messages, last_timestamp, model)
            content = _user_content(payload)
            if content:
                timestamp = event_timestamp or last_timestamp
                messages.append(
                    ParsedMessage(
                        id=str(payload.get("id") or f"codex-user-{len(messages)}"),
                        sessionId=session_id,
                        type="user",
                        content=cap_text(content, MAX_CONTENT_CHARS),
                        timestamp=timestamp,
                    )
                )
                last_timestamp = timestamp
        elif event_type in _ITEM_EVENTS:
            item = payload.get("item") if isinstance(payload.get("item"), dict) else payload
            turn.add_item(item, payload, event_type)
        elif event_type == "turn.completed":
            if payload.get("model"):
                model = str(payload["model"])
            usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else payload
            if usage.get("input_tokens"):
                turn.usage = usage
                usage_entries.append(_codex_usage_entry(usage, model))
            if event_timestamp:
                last_timestamp = event_timestamp
            turn.flush(messages, last_timestamp, model)

    turn.flush(messages, last_timestamp, model)
    if not messages:
        return None

    bounds = message_bounds(messages)
    started_at, ended_at = bounds if bounds else (last_timestamp, last_timestamp)
    project_path = str(meta.get("cwd") or UNKNOWN_PROJECT_PATH)

    return build_session(
        session_id=session_id,
        project_path=project_path,
        project_name=project_name_from_path(project_path),
        messages=messages,
        started_at=started_at,
        ended_at=ended_at,
        source_tool=SOURCE_TOOL,
        tool_version=str(meta["cli_version"]) if meta.get("cli_version") else None,
        usage=_session_usage(usage_entries, model),
    )


def _session_usage(entries: list[UsageEntry], model: str) -> SessionUsage | None:
    """Codex reports usage per turn; input totals include the cached portion."""
    usage = aggregate_usage(entries)
    if usage is None:
        return None
    usage.totalInputTokens += usage.cacheReadTokens
    usage.modelsUsed = [model] if model else []
    usage.primaryModel = model or "unknown"
    return usage
