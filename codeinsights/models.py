"""Pydantic models for the canonical session/message representation."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

# Content caps are applied by the parsers, so every provider stores the same sizes.
MAX_CONTENT_CHARS = 10_000
MAX_THINKING_CHARS = 5_000
MAX_TOOL_OUTPUT_CHARS = 1_000
MAX_CODE_BLOCK_CHARS = 1_000

USAGE_SOURCE_NATIVE = "native"


def cap_text(value: Optional[str], limit: int) -> str:
    text = value or ""
    return text if len(text) <= limit else text[:limit]


# ── Message-level models ───────────────────────────────────────────

class ToolCall(BaseModel):
    id: str = ""
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    toolUseId: str
    output: str = ""


class MessageUsage(BaseModel):
    inputTokens: int = 0
    outputTokens: int = 0
    cacheCreationTokens: int = 0
    cacheReadTokens: int = 0
    model: str = "unknown"
    estimatedCostUsd: float = 0.0


class ParsedMessage(BaseModel):
    id: str
    sessionId: str
    type: str  # "user" | "assistant" | "system"
    content: str = ""
    thinking: Optional[str] = None
    toolCalls: list[ToolCall] = Field(default_factory=list)
    toolResults: list[ToolResult] = Field(default_factory=list)
    usage: Optional[MessageUsage] = None
    timestamp: datetime
    parentId: Optional[str] = None


# ── Session-level models ───────────────────────────────────────────

class SessionUsage(BaseModel):
    totalInputTokens: int = 0
    totalOutputTokens: int = 0
    cacheCreationTokens: int = 0
    cacheReadTokens: int = 0
    estimatedCostUsd: float = 0.0
    modelsUsed: list[str] = Field(default_factory=list)
    primaryModel: str = "unknown"
    usageSource: str = USAGE_SOURCE_NATIVE


class ParsedSession(BaseModel):
    id: str
    projectPath: str
    projectName: str
    summary: Optional[str] = None
    generatedTitle: Optional[str] = None
    titleSource: Optional[str] = None  # "claude" | "user_message" | "character" | "fallback"
    sessionCharacter: Optional[str] = None
    startedAt: datetime
    endedAt: datetime
    messageCount: int = 0
    userMessageCount: int = 0
    assistantMessageCount: int = 0
    toolCallCount: int = 0
    gitBranch: Optional[str] = None
    toolVersion: Optional[str] = None
    sourceTool: str = ""  # "claude-code" | "cursor" | "codex-cli"
    usage: Optional[SessionUsage] = None
    messages: list[ParsedMessage] = Field(default_factory=list)


class GeneratedTitle(BaseModel):
    title: str
    source: str
    character: Optional[str] = None


# ── Sync models ────────────────────────────────────────────────────

class SyncOptions(BaseModel):
    force: bool = False
    project: Optional[str] = None
    dryRun: bool = False
    quiet: bool = False
    source: Optional[str] = None


class UsageTotals(BaseModel):
    totalInputTokens: int = 0
    totalOutputTokens: int = 0
    cacheCreationTokens: int = 0
    cacheReadTokens: int = 0
    estimatedCostUsd: float = 0.0


class UsageRecalculation(BaseModel):
    sessionsWithUsage: int = 0
    totals: UsageTotals = Field(default_factory=UsageTotals)


class SyncResult(BaseModel):
    discovered: int = 0
    pending: int = 0
    synced: int = 0
    alreadySynced: int = 0
    skipped: int = 0
    messagesUploaded: int = 0
    errors: int = 0
    dryRun: bool = False
    pendingLocators: list[str] = Field(default_factory=list)
    usageStats: Optional[UsageRecalculation] = None
    durationMs: int = 0
