"""SQLite storage for projects and their usage counters."""
from __future__ import annotations

from datetime import datetime, timezone

import aiosqlite

from codeinsights.identity import ProjectIdentity
from codeinsights.models import UsageTotals


class SqliteProjectRepository:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert(self, identity: ProjectIdentity, name: str, path: str, last_activity: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO projects (
                id, name, path, git_remote_url, project_id_source,
                last_activity, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name, path=excluded.path,
                git_remote_url=COALESCE(excluded.git_remote_url, projects.git_remote_url),
                project_id_source=excluded.project_id_source,
                last_activity=MAX(COALESCE(projects.last_activity, ''), excluded.last_activity),
                updated_at=excluded.updated_at
            """,
            (
                identity.projectId, name, path, identity.gitRemoteUrl, identity.source,
                last_activity, now, now,
            ),
        )

    async def increment(self, project_id: str, usage: UsageTotals | None) -> None:
        """Count one new session and add its usage to the running totals."""
        totals = usage or UsageTotals()
        await self.db.execute(
            """UPDATE projects SET
                session_count = session_count + 1,
                total_input_tokens = total_input_tokens + ?,
                total_output_tokens = total_output_tokens + ?,
                cache_creation_tokens = cache_creation_tokens + ?,
                cache_read_tokens = cache_read_tokens + ?,
                estimated_cost_usd = estimated_cost_usd + ?
            WHERE id = ?""",
            (
                totals.totalInputTokens, totals.totalOutputTokens,
                totals.cacheCreationTokens, totals.cacheReadTokens,
                totals.estimatedCostUsd, project_id,
            ),
        )

    async def overwrite_usage(self, totals_by_project: dict[str, UsageTotals]) -> None:
        """Replace every project's usage totals; projects not listed are zeroed."""
        await self.db.execute(
            """UPDATE projects SET
                total_input_tokens = 0, total_output_tokens = 0,
                cache_creation_tokens = 0, cache_read_tokens = 0,
                estimated_cost_usd = 0"""
        )
        for project_id, totals in totals_by_project.items():
            await self.db.execute(
                """UPDATE projects SET
                    total_input_tokens = ?, total_output_tokens = ?,
                    cache_creation_tokens = ?, cache_read_tokens = ?,
                    estimated_cost_usd = ?
                WHERE id = ?""",
                (
                    totals.totalInputTokens, totals.totalOutputTokens,
                    totals.cacheCreationTokens, totals.cacheReadTokens,
                    round(totals.estimatedCostUsd, 4), project_id,
                ),
            )

    async def get_by_id(self, project_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM projects WHERE id = ?", (project_id,)) as cur:
            row = await cur.fetchone()
        return dict(row) if row else None

    async def list_recent(self, limit: int = 10) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM projects ORDER BY last_activity DESC LIMIT ?",
            (limit,),
        ) as cur:
            rows = await cur.fetchall()
        return [dict(r) for r in rows]

    async def delete_all(self) -> None:
        await self.db.execute("DELETE FROM projects")
