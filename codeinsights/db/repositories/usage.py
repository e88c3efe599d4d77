"""SQLite storage for the global usage totals row."""
from __future__ import annotations

from datetime import datetime, timezone

import aiosqlite

from codeinsights.models import UsageTotals

GLOBAL_USAGE_ID = "global"


class SqliteUsageRepository:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def _ensure_row(self) -> None:
        await self.db.execute(
            "INSERT OR IGNORE INTO usage_stats (id, last_updated) VALUES (?, ?)",
            (GLOBAL_USAGE_ID, datetime.now(timezone.utc).isoformat()),
        )

    async def increment(self, usage: UsageTotals) -> None:
        await self._ensure_row()
        await self.db.execute(
            """UPDATE usage_stats SET
                total_input_tokens = total_input_tokens + ?,
                total_output_tokens = total_output_tokens + ?,
                cache_creation_tokens = cache_creation_tokens + ?,
                cache_read_tokens = cache_read_tokens + ?,
                estimated_cost_usd = estimated_cost_usd + ?,
                sessions_with_usage = sessions_with_usage + 1,
                last_updated = ?
            WHERE id = ?""",
            (
                usage.totalInputTokens, usage.totalOutputTokens,
                usage.cacheCreationTokens, usage.cacheReadTokens,
                usage.estimatedCostUsd, datetime.now(timezone.utc).isoformat(),
                GLOBAL_USAGE_ID,
            ),
        )

    async def overwrite(self, totals: UsageTotals, sessions_with_usage: int) -> None:
        await self.db.execute(
            """INSERT INTO usage_stats (
                id, total_input_tokens, total_output_tokens, cache_creation_tokens,
                cache_read_tokens, estimated_cost_usd, sessions_with_usage, last_updated
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                total_input_tokens=excluded.total_input_tokens,
                total_output_tokens=excluded.total_output_tokens,
                cache_creation_tokens=excluded.cache_creation_tokens,
                cache_read_tokens=excluded.cache_read_tokens,
                estimated_cost_usd=excluded.estimated_cost_usd,
                sessions_with_usage=excluded.sessions_with_usage,
                last_updated=excluded.last_updated
            """,
            (
                GLOBAL_USAGE_ID,
                totals.totalInputTokens, totals.totalOutputTokens,
                totals.cacheCreationTokens, totals.cacheReadTokens,
                round(totals.estimatedCostUsd, 4), sessions_with_usage,
                datetime.now(timezone.utc).isoformat(),
            ),
        )

    async def get(self) -> dict | None:
        async with self.db.execute("SELECT * FROM usage_stats WHERE id = ?", (GLOBAL_USAGE_ID,)) as cur:
            row = await cur.fetchone()
        return dict(row) if row else None

    async def delete_all(self) -> None:
        await self.db.execute("DELETE FROM usage_stats")
