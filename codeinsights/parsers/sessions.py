"""Session assembly helpers shared by the platform parsers."""
from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Iterable, Optional

from codeinsights.date_utils import is_epoch
from codeinsights.models import (
    USAGE_SOURCE_NATIVE,
    ParsedMessage,
    ParsedSession,
    SessionUsage,
)
from codeinsights.parsers.titles import apply_title
from codeinsights.pricing import UsageEntry, calculate_cost, token_count


def aggregate_usage(entries: list[UsageEntry]) -> SessionUsage | None:
    """Sum raw usage blocks; None when the source recorded no usage at all."""
    if not entries:
        return None

    model_counts: Counter[str] = Counter(entry.model for entry in entries)
    # Counter preserves first-seen order, and max() keeps the first of equal counts.
    models_used = list(model_counts)
    primary_model = max(models_used, key=lambda model: model_counts[model]) if models_used else "unknown"

    return SessionUsage(
        totalInputTokens=sum(token_count(e.usage, "input_tokens") for e in entries),
        totalOutputTokens=sum(token_count(e.usage, "output_tokens") for e in entries),
        cacheCreationTokens=sum(token_count(e.usage, "cache_creation_input_tokens") for e in entries),
        cacheReadTokens=sum(token_count(e.usage, "cache_read_input_tokens") for e in entries),
        estimatedCostUsd=calculate_cost(entries),
        modelsUsed=models_used,
        primaryModel=primary_model,
        usageSource=USAGE_SOURCE_NATIVE,
    )


def message_bounds(messages: Iterable[ParsedMessage]) -> tuple[datetime, datetime] | None:
    """Earliest and latest non-epoch message timestamps."""
    timestamps = [m.timestamp for m in messages if not is_epoch(m.timestamp)]
    if not timestamps:
        return None
    return min(timestamps), max(timestamps)


def build_session(
    *,
    session_id: str,
    project_path: str,
    project_name: str,
    messages: list[ParsedMessage],
    started_at: datetime,
    ended_at: datetime,
    source_tool: str,
    summary: Optional[str] = None,
    git_branch: Optional[str] = None,
    tool_version: Optional[str] = None,
    usage: SessionUsage | None = None,
) -> ParsedSession:
    session = ParsedSession(
        id=session_id,
        projectPath=project_path,
        projectName=project_name,
        summary=summary,
        startedAt=started_at,
        endedAt=max(started_at, ended_at),
        messageCount=len(messages),
        userMessageCount=sum(1 for m in messages if m.type == "user"),
        assistantMessageCount=sum(1 for m in messages if m.type == "assistant"),
        toolCallCount=sum(len(m.toolCalls) for m in messages),
        gitBranch=git_branch,
        toolVersion=tool_version,
        sourceTool=source_tool,
        usage=usage,
        messages=messages,
    )
    return apply_title(session)


def project_name_from_path(project_path: str) -> str:
    parts = [part for part in project_path.replace("\\", "/").split("/") if part]
    return parts[-1] if parts else "unknown"
