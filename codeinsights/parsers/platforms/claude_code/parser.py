"""Parse Claude Code JSONL session logs into ParsedSession models."""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from codeinsights.date_utils import file_mtime, parse_timestamp, utc_now
from codeinsights.models import (
    MAX_CONTENT_CHARS,
    MAX_THINKING_CHARS,
    MAX_TOOL_OUTPUT_CHARS,
    MessageUsage,
    ParsedMessage,
    ParsedSession,
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

SOURCE_TOOL = "claude-code"

_SESSION_FILE_PATTERN = re.compile(r"^([a-f0-9-]+|agent-[a-f0-9]+)\.jsonl$")
_MESSAGE_TYPES = {"user", "assistant", "system"}

logger = logging.getLogger("codeinsights.parsers")


def discover_session_files(projects_dir: Path, project_filter: str | None = None) -> list[Path]:
    """List ``<project>/*.jsonl`` and ``<project>/subagents/*.jsonl`` transcripts."""
    if not projects_dir.is_dir():
        return []

    needle = project_filter.lower() if project_filter else None
    files: list[Path] = []
    for project_dir in sorted(projects_dir.iterdir()):
        if project_dir.name.startswith(".") or not project_dir.is_dir():
            continue
        if needle and needle not in project_dir.name.lower():
            continue

        files.extend(sorted(p for p in project_dir.glob("*.jsonl") if p.is_file()))
        subagents_dir = project_dir / "subagents"
        if subagents_dir.is_dir():
            files.extend(sorted(p for p in subagents_dir.glob("*.jsonl") if p.is_file()))
    return files


def extract_session_id(path: Path) -> str | None:
    match = _SESSION_FILE_PATTERN.match(path.name)
    return match.group(1) if match else None


def decode_project_path(path: Path) -> str:
    """Turn ``projects/-Users-me-app/<file>`` into ``/Users/me/app``."""
    parts = path.parts
    if "projects" in parts:
        index = len(parts) - 1 - list(reversed(parts)).index("projects")
        if index < len(parts) - 1:
            encoded = parts[index + 1]
            return re.sub(r"^-", "/", encoded).replace("-", "/")
    return str(path)


def _text_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts = [
        block["text"]
        for block in content
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str) and block["text"]
    ]
    return "\n".join(parts)


def _thinking_content(content: Any) -> str | None:
    if not isinstance(content, list):
        return None
    parts = [
        block["thinking"]
        for block in content
        if isinstance(block, dict)
        and block.get("type") == "thinking"
        and isinstance(block.get("thinking"), str)
        and block["thinking"]
    ]
    return "\n".join(parts) if parts else None


def _tool_calls(content: Any) -> list[ToolCall]:
    if not isinstance(content, list):
        return []
    calls: list[ToolCall] = []
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_use":
            continue
        name = block.get("name")
        if not isinstance(name, str) or not name:
            continue
        tool_input = block.get("input")
        calls.append(
            ToolCall(
                id=str(block.get("id") or ""),
                name=name,
                input=tool_input if isinstance(tool_input, dict) else {},
            )
        )
    return calls


def _tool_result_to_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks = [
            block["text"]
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str) and block["text"]
        ]
        return "\n".join(chunks)
    return ""


def _tool_results(content: Any) -> list[ToolResult]:
    if not isinstance(content, list):
        return []
    results: list[ToolResult] = []
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_result":
            continue
        tool_use_id = block.get("tool_use_id")
        if not tool_use_id:
            continue
        results.append(
            ToolResult(
                toolUseId=str(tool_use_id),
                output=cap_text(_tool_result_to_text(block.get("content")), MAX_TOOL_OUTPUT_CHARS),
            )
        )
    return results


def _usage_entry(entry: dict[str, Any]) -> UsageEntry | None:
    message = entry.get("message")
    if not isinstance(message, dict):
        return None
    model = message.get("model")
    usage = message.get("usage")
    if not model or not isinstance(usage, dict):
        return None
    return UsageEntry(model=str(model), usage=usage)


def _message_usage(usage_entry: UsageEntry) -> MessageUsage:
    usage = usage_entry.usage
    return MessageUsage(
        inputTokens=token_count(usage, "input_tokens"),
        outputTokens=token_count(usage, "output_tokens"),
        cacheCreationTokens=token_count(usage, "cache_creation_input_tokens"),
        cacheReadTokens=token_count(usage, "cache_read_input_tokens"),
        model=usage_entry.model,
        estimatedCostUsd=calculate_cost([usage_entry]),
    )


def _parse_message(entry: dict[str, Any], session_id: str, timestamp: datetime, index: int) -> ParsedMessage | None:
    message = entry.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not content:
        return None

    text = _text_content(content)
    thinking = _thinking_content(content)
    tool_calls = _tool_calls(content)
    tool_results = _tool_results(content)
    if not text and not thinking and not tool_calls and not tool_results:
        return None

    usage = None
    if entry.get("type") == "assistant":
        usage_entry = _usage_entry(entry)
        if usage_entry:
            usage = _message_usage(usage_entry)

    return ParsedMessage(
        id=str(entry.get("uuid") or f"{session_id}-{index}"),
        sessionId=session_id,
        type=entry["type"],
        content=cap_text(text, MAX_CONTENT_CHARS),
        thinking=cap_text(thinking, MAX_THINKING_CHARS) if thinking else None,
        toolCalls=tool_calls,
        toolResults=tool_results,
        usage=usage,
        timestamp=timestamp,
        parentId=_optional_str(entry.get("parentUuid")),
    )


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _read_entries(path: Path) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(entry, dict):
                entries.append(entry)
    return entries


def parse_session_file(path: Path) -> ParsedSession | None:
    """Parse a single JSONL transcript; None when nothing usable is found."""
    session_id = extract_session_id(path)
    if not session_id:
        return None

    try:
        entries = _read_entries(path)
    except OSError as exc:
        logger.debug(f"Cannot read {path}: {exc}")
        return None

    summary: str | None = None
    records: list[dict[str, Any]] = []
    for entry in entries:
        entry_type = entry.get("type")
        if entry_type == "summary":
            if isinstance(entry.get("summary"), str):
                summary = entry["summary"]
        elif entry_type in _MESSAGE_TYPES:
            records.append(entry)

    if not records:
        return None

    first = records[0]
    project_path = first.get("cwd") if isinstance(first.get("cwd"), str) and first.get("cwd") else decode_project_path(path)

    messages: list[ParsedMessage] = []
    usage_entries: list[UsageEntry] = []
    last_timestamp = file_mtime(path) or utc_now()
    for index, record in enumerate(records):
        timestamp = parse_timestamp(record.get("timestamp")) or last_timestamp
        last_timestamp = timestamp
        if record.get("isMeta"):
            continue

        usage_entry = _usage_entry(record)
        if usage_entry:
            usage_entries.append(usage_entry)

        parsed = _parse_message(record, session_id, timestamp, index)
        if parsed:
            messages.append(parsed)

    if not messages:
        return None

    bounds = message_bounds(messages)
    started_at, ended_at = bounds if bounds else (messages[0].timestamp, messages[-1].timestamp)

    return build_session(
        session_id=session_id,
        project_path=project_path,
        project_name=project_name_from_path(project_path),
        messages=messages,
        started_at=started_at,
        ended_at=ended_at,
        source_tool=SOURCE_TOOL,
        summary=summary,
        git_branch=_optional_str(first.get("gitBranch")),
        tool_version=_optional_str(first.get("version")),
        usage=aggregate_usage(usage_entries),
    )
