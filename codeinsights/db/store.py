"""Session store used by the sync engine.

``SessionStore`` is the narrow interface the engine depends on;
``SqliteSessionStore`` implements it on top of the local SQLite database.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Protocol, runtime_checkable

import aiosqlite

from codeinsights.date_utils import format_iso
from codeinsights.errors import StoreError
from codeinsights.identity import (
    DeviceInfo,
    ProjectIdentity,
    generate_stable_project_id,
    get_device_info,
)
from codeinsights.models import ParsedSession, SessionUsage, UsageRecalculation, UsageTotals
from codeinsights.db.repositories import (
    SqliteProjectRepository,
    SqliteSessionRepository,
    SqliteUsageRepository,
)

logger = logging.getLogger("codeinsights.db")


@runtime_checkable
class SessionStore(Protocol):
    async def session_exists(self, session_id: str) -> bool:
        ...

    async def upload_session(self, session: ParsedSession, is_force_sync: bool = False) -> None:
        ...

    async def upload_messages(self, session: ParsedSession) -> int:
        ...

    async def recalculate_usage_stats(self) -> UsageRecalculation:
        ...


def _usage_totals(usage: SessionUsage | None) -> UsageTotals | None:
    if usage is None:
        return None
    return UsageTotals(
        totalInputTokens=usage.totalInputTokens,
        totalOutputTokens=usage.totalOutputTokens,
        cacheCreationTokens=usage.cacheCreationTokens,
        cacheReadTokens=usage.cacheReadTokens,
        estimatedCostUsd=usage.estimatedCostUsd,
    )


class SqliteSessionStore:
    def __init__(
        self,
        db: aiosqlite.Connection,
        device: DeviceInfo | None = None,
        identity_resolver: Callable[[str], ProjectIdentity] = generate_stable_project_id,
    ):
        self.db = db
        self.sessions = SqliteSessionRepository(db)
        self.projects = SqliteProjectRepository(db)
        self.usage = SqliteUsageRepository(db)
        self._device = device
        self._identity_resolver = identity_resolver
        self._identities: dict[str, ProjectIdentity] = {}

    @property
    def device(self) -> DeviceInfo:
        if self._device is None:
            self._device = get_device_info()
        return self._device

    def project_identity(self, project_path: str) -> ProjectIdentity:
        """Resolve (and memoize for this store) the stable id for a project path."""
        identity = self._identities.get(project_path)
        if identity is None:
            identity = self._identity_resolver(project_path)
            self._identities[project_path] = identity
        return identity

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
            await self.db.commit()
        except Exception as exc:
            await self.db.rollback()
            if isinstance(exc, aiosqlite.Error):
                raise StoreError(f"{operation} failed: {exc}") from exc
            raise

    async def session_exists(self, session_id: str) -> bool:
        try:
            return await self.sessions.exists(session_id)
        except aiosqlite.Error as exc:
            raise StoreError(f"session lookup failed: {exc}") from exc

    async def upload_session(self, session: ParsedSession, is_force_sync: bool = False) -> None:
        """Upsert the project and session rows.

        Project session counts and usage counters only move for sessions the
        store has not seen before, so re-uploads never double count.
        """
        identity = self.project_identity(session.projectPath)
        device = self.device
        async with self._transaction(f"upload of session {session.id}"):
            is_new = not await self.sessions.exists(session.id)
            await self.projects.upsert(
                identity,
                name=session.projectName,
                path=session.projectPath,
                last_activity=format_iso(session.endedAt),
            )
            await self.sessions.upsert(session, identity, device)

            if is_new:
                totals = _usage_totals(session.usage)
                await self.projects.increment(identity.projectId, totals)
                if totals is not None:
                    await self.usage.increment(totals)
            elif is_force_sync:
                logger.debug(f"Re-uploaded existing session {session.id} (force sync)")

    async def upload_messages(self, session: ParsedSession) -> int:
        async with self._transaction(f"message upload for session {session.id}"):
            return await self.sessions.replace_messages(session.id, session.messages)

    async def recalculate_usage_stats(self) -> UsageRecalculation:
        """Rebuild project and global usage totals from stored native-usage sessions."""
        async with self._transaction("usage recalculation"):
            rows = await self.sessions.list_native_usage()
            by_project: dict[str, UsageTotals] = defaultdict(UsageTotals)
            overall = UsageTotals()
            for row in rows:
                for totals in (by_project[row["project_id"]], overall):
                    totals.totalInputTokens += row["total_input_tokens"] or 0
                    totals.totalOutputTokens += row["total_output_tokens"] or 0
                    totals.cacheCreationTokens += row["cache_creation_tokens"] or 0
                    totals.cacheReadTokens += row["cache_read_tokens"] or 0
                    totals.estimatedCostUsd += row["estimated_cost_usd"] or 0.0

            overall.estimatedCostUsd = round(overall.estimatedCostUsd, 4)
            await self.projects.overwrite_usage(dict(by_project))
            await self.usage.overwrite(overall, len(rows))

        logger.info(f"Recalculated usage across {len(rows)} sessions")
        return UsageRecalculation(sessionsWithUsage=len(rows), totals=overall)

    # ── Read helpers for status/reset ──────────────────────────────

    async def count_sessions(self, source_tool: str | None = None) -> int:
        try:
            return await self.sessions.count(source_tool)
        except aiosqlite.Error as exc:
            raise StoreError(f"session count failed: {exc}") from exc

    async def count_sessions_by_source(self) -> dict[str, int]:
        try:
            return await self.sessions.count_by_source()
        except aiosqlite.Error as exc:
            raise StoreError(f"session count failed: {exc}") from exc

    async def list_projects(self, limit: int = 10) -> list[dict]:
        try:
            return await self.projects.list_recent(limit)
        except aiosqlite.Error as exc:
            raise StoreError(f"project listing failed: {exc}") from exc

    async def get_usage_stats(self) -> dict | None:
        try:
            return await self.usage.get()
        except aiosqlite.Error as exc:
            raise StoreError(f"usage lookup failed: {exc}") from exc

    async def delete_all(self) -> None:
        async with self._transaction("store reset"):
            await self.sessions.delete_all()
            await self.projects.delete_all()
            await self.usage.delete_all()
        logger.info("Deleted all stored sessions, projects and usage totals")
