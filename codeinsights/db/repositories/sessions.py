"""SQLite storage for synced sessions and their messages."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import aiosqlite

from codeinsights.date_utils import format_iso
from codeinsights.identity import DeviceInfo, ProjectIdentity
from codeinsights.models import USAGE_SOURCE_NATIVE, ParsedMessage, ParsedSession


class SqliteSessionRepository:
    """Session rows plus a message table keyed by (session_id, message id)."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def exists(self, session_id: str) -> bool:
        async with self.db.execute("SELECT 1 FROM sessions WHERE id = ?", (session_id,)) as cur:
            row = await cur.fetchone()
        return row is not None

    async def upsert(self, session: ParsedSession, identity: ProjectIdentity, device: DeviceInfo) -> None:
        now = datetime.now(timezone.utc).isoformat()
        usage = session.usage
        await self.db.execute(
            """INSERT INTO sessions (
                id, project_id, project_name, project_path, git_remote_url,
                summary, generated_title, title_source, session_character,
                started_at, ended_at, message_count, user_message_count,
                assistant_message_count, tool_call_count, git_branch, tool_version,
                source_tool, device_id, device_hostname, device_platform,
                total_input_tokens, total_output_tokens, cache_creation_tokens,
                cache_read_tokens, estimated_cost_usd, models_used_json,
                primary_model, usage_source, synced_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                project_id=excluded.project_id, project_name=excluded.project_name,
                project_path=excluded.project_path, git_remote_url=excluded.git_remote_url,
                summary=excluded.summary, generated_title=excluded.generated_title,
                title_source=excluded.title_source, session_character=excluded.session_character,
                started_at=excluded.started_at, ended_at=excluded.ended_at,
                message_count=excluded.message_count, user_message_count=excluded.user_message_count,
                assistant_message_count=excluded.assistant_message_count,
                tool_call_count=excluded.tool_call_count, git_branch=excluded.git_branch,
                tool_version=excluded.tool_version, source_tool=excluded.source_tool,
                device_id=excluded.device_id, device_hostname=excluded.device_hostname,
                device_platform=excluded.device_platform,
                total_input_tokens=excluded.total_input_tokens,
                total_output_tokens=excluded.total_output_tokens,
                cache_creation_tokens=excluded.cache_creation_tokens,
                cache_read_tokens=excluded.cache_read_tokens,
                estimated_cost_usd=excluded.estimated_cost_usd,
                models_used_json=excluded.models_used_json, primary_model=excluded.primary_model,
                usage_source=excluded.usage_source, synced_at=excluded.synced_at
            """,
            (
                session.id, identity.projectId, session.projectName, session.projectPath,
                identity.gitRemoteUrl,
                session.summary, session.generatedTitle, session.titleSource, session.sessionCharacter,
                format_iso(session.startedAt), format_iso(session.endedAt),
                session.messageCount, session.userMessageCount,
                session.assistantMessageCount, session.toolCallCount,
                session.gitBranch, session.toolVersion, session.sourceTool,
                device.deviceId, device.hostname, device.platform,
                usage.totalInputTokens if usage else None,
                usage.totalOutputTokens if usage else None,
                usage.cacheCreationTokens if usage else None,
                usage.cacheReadTokens if usage else None,
                usage.estimatedCostUsd if usage else None,
                json.dumps(usage.modelsUsed) if usage else None,
                usage.primaryModel if usage else None,
                usage.usageSource if usage else None,
                now,
            ),
        )

    async def replace_messages(self, session_id: str, messages: list[ParsedMessage]) -> int:
        await self.db.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        rows = [
            (
                session_id,
                message.id,
                message.type,
                message.content,
                message.thinking,
                json.dumps([call.model_dump() for call in message.toolCalls]),
                json.dumps([result.model_dump() for result in message.toolResults]),
                message.usage.model_dump_json() if message.usage else None,
                format_iso(message.timestamp),
                message.parentId,
            )
            for message in messages
        ]
        # Duplicate message ids within one transcript keep the last occurrence.
        await self.db.executemany(
            """INSERT OR REPLACE INTO messages (
                session_id, id, type, content, thinking, tool_calls_json,
                tool_results_json, usage_json, timestamp, parent_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )
        return len(rows)

    async def get_by_id(self, session_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)) as cur:
            row = await cur.fetchone()
        return dict(row) if row else None

    async def list_messages(self, session_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM messages WHERE session_id = ? ORDER BY timestamp, rowid",
            (session_id,),
        ) as cur:
            rows = await cur.fetchall()
        return [dict(r) for r in rows]

    async def count(self, source_tool: str | None = None) -> int:
        if source_tool:
            query, params = "SELECT COUNT(*) FROM sessions WHERE source_tool = ?", (source_tool,)
        else:
            query, params = "SELECT COUNT(*) FROM sessions", ()
        async with self.db.execute(query, params) as cur:
            row = await cur.fetchone()
        return row[0] if row else 0

    async def count_by_source(self) -> dict[str, int]:
        async with self.db.execute(
            "SELECT source_tool, COUNT(*) FROM sessions GROUP BY source_tool ORDER BY source_tool"
        ) as cur:
            rows = await cur.fetchall()
        return {row[0]: row[1] for row in rows}

    async def list_native_usage(self) -> list[dict]:
        async with self.db.execute(
            """SELECT project_id, total_input_tokens, total_output_tokens,
                      cache_creation_tokens, cache_read_tokens, estimated_cost_usd
               FROM sessions WHERE usage_source = ?""",
            (USAGE_SOURCE_NATIVE,),
        ) as cur:
            rows = await cur.fetchall()
        return [dict(r) for r in rows]

    async def delete_all(self) -> None:
        await self.db.execute("DELETE FROM messages")
        await self.db.execute("DELETE FROM sessions")
