import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from codeinsights.db.connection import open_connection
from codeinsights.db.sqlite_migrations import run_migrations
from codeinsights.db.store import SessionStore, SqliteSessionStore
from codeinsights.identity import DeviceInfo, ProjectIdentity
from codeinsights.models import ParsedMessage, ParsedSession, SessionUsage

DEVICE = DeviceInfo(deviceId="dev123", hostname="laptop", platform="linux", username="me")


def _identity(project_path: str) -> ProjectIdentity:
    return ProjectIdentity(projectId=f"pid-{project_path.strip('/').replace('/', '-')}", source="path-hash")


def _session(
    session_id: str = "s1",
    project_path: str = "/work/api",
    usage: SessionUsage | None = None,
    message_ids: tuple[str, ...] = ("m1", "m2"),
    ended_hour: int = 11,
) -> ParsedSession:
    started = datetime(2026, 2, 1, 10, 0, tzinfo=timezone.utc)
    messages = [
        ParsedMessage(
            id=message_id,
            sessionId=session_id,
            type="user" if index % 2 == 0 else "assistant",
            content=f"message {index}",
            timestamp=started,
        )
        for index, message_id in enumerate(message_ids)
    ]
    return ParsedSession(
        id=session_id,
        projectPath=project_path,
        projectName=project_path.rstrip("/").rsplit("/", 1)[-1],
        generatedTitle="Session title",
        titleSource="user_message",
        startedAt=started,
        endedAt=datetime(2026, 2, 1, ended_hour, 0, tzinfo=timezone.utc),
        messageCount=len(messages),
        sourceTool="claude-code",
        usage=usage,
        messages=messages,
    )


def _usage(input_tokens: int, output_tokens: int, cost: float) -> SessionUsage:
    return SessionUsage(
        totalInputTokens=input_tokens,
        totalOutputTokens=output_tokens,
        estimatedCostUsd=cost,
        modelsUsed=["claude-sonnet-4-5"],
        primaryModel="claude-sonnet-4-5",
    )


class SqliteSessionStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_connection(":memory:")
        await run_migrations(self.db)
        self.store = SqliteSessionStore(self.db, device=DEVICE, identity_resolver=_identity)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_store_satisfies_protocol(self) -> None:
        self.assertIsInstance(self.store, SessionStore)

    async def test_upload_session_creates_project_and_counts_usage(self) -> None:
        await self.store.upload_session(_session(usage=_usage(1000, 200, 0.006)))

        self.assertTrue(await self.store.session_exists("s1"))
        row = await self.store.sessions.get_by_id("s1")
        assert row is not None
        self.assertEqual(row["project_id"], "pid-work-api")
        self.assertEqual(row["device_id"], "dev123")
        self.assertEqual(row["total_input_tokens"], 1000)
        self.assertEqual(row["usage_source"], "native")
        self.assertEqual(row["ended_at"], "2026-02-01T11:00:00Z")

        project = await self.store.projects.get_by_id("pid-work-api")
        assert project is not None
        self.assertEqual(project["session_count"], 1)
        self.assertEqual(project["total_input_tokens"], 1000)
        self.assertEqual(project["project_id_source"], "path-hash")

        usage = await self.store.get_usage_stats()
        assert usage is not None
        self.assertEqual(usage["sessions_with_usage"], 1)
        self.assertEqual(usage["total_output_tokens"], 200)

    async def test_reupload_does_not_double_count(self) -> None:
        session = _session(usage=_usage(1000, 200, 0.006))
        await self.store.upload_session(session)
        await self.store.upload_session(session, is_force_sync=True)

        project = await self.store.projects.get_by_id("pid-work-api")
        assert project is not None
        self.assertEqual(project["session_count"], 1)
        self.assertEqual(project["total_input_tokens"], 1000)
        usage = await self.store.get_usage_stats()
        assert usage is not None
        self.assertEqual(usage["sessions_with_usage"], 1)

    async def test_session_without_usage_counts_project_only(self) -> None:
        await self.store.upload_session(_session())

        project = await self.store.projects.get_by_id("pid-work-api")
        assert project is not None
        self.assertEqual(project["session_count"], 1)
        self.assertIsNone(await self.store.get_usage_stats())

    async def test_project_last_activity_only_moves_forward(self) -> None:
        await self.store.upload_session(_session("s1", ended_hour=15))
        await self.store.upload_session(_session("s2", ended_hour=12))

        project = await self.store.projects.get_by_id("pid-work-api")
        assert project is not None
        self.assertEqual(project["last_activity"], "2026-02-01T15:00:00Z")
        self.assertEqual(project["session_count"], 2)

    async def test_upload_messages_replaces_previous_set(self) -> None:
        await self.store.upload_session(_session())
        self.assertEqual(await self.store.upload_messages(_session()), 2)
        self.assertEqual(await self.store.upload_messages(_session(message_ids=("m1", "m3", "m3"))), 3)

        messages = await self.store.sessions.list_messages("s1")
        self.assertEqual(sorted(m["id"] for m in messages), ["m1", "m3"])

    async def test_recalculate_usage_stats_rebuilds_totals(self) -> None:
        await self.store.upload_session(_session("s1", usage=_usage(1000, 200, 0.00612)))
        await self.store.upload_session(_session("s2", usage=_usage(500, 100, 0.003)))
        await self.store.upload_session(_session("s3", project_path="/work/web", usage=_usage(10, 5, 0.0001)))
        await self.store.upload_session(_session("s4", project_path="/work/web"))

        # Drift the incremental counters, then rebuild.
        await self.db.execute("UPDATE usage_stats SET total_input_tokens = 1")
        await self.db.execute("UPDATE projects SET total_input_tokens = 1")
        await self.db.commit()

        result = await self.store.recalculate_usage_stats()

        self.assertEqual(result.sessionsWithUsage, 3)
        self.assertEqual(result.totals.totalInputTokens, 1510)
        self.assertEqual(result.totals.totalOutputTokens, 305)
        self.assertAlmostEqual(result.totals.estimatedCostUsd, 0.0092, places=4)

        usage = await self.store.get_usage_stats()
        assert usage is not None
        self.assertEqual(usage["total_input_tokens"], 1510)
        self.assertEqual(usage["sessions_with_usage"], 3)
        api = await self.store.projects.get_by_id("pid-work-api")
        web = await self.store.projects.get_by_id("pid-work-web")
        assert api is not None and web is not None
        self.assertEqual(api["total_input_tokens"], 1500)
        self.assertEqual(web["total_input_tokens"], 10)
        self.assertEqual(web["session_count"], 2)

    async def test_counts_listing_and_delete_all(self) -> None:
        await self.store.upload_session(_session("s1"))
        cursor_session = _session("cursor:c1", project_path="/work/web")
        cursor_session.sourceTool = "cursor"
        await self.store.upload_session(cursor_session)
        await self.store.upload_messages(cursor_session)

        self.assertEqual(await self.store.count_sessions(), 2)
        self.assertEqual(await self.store.count_sessions("cursor"), 1)
        self.assertEqual(await self.store.count_sessions_by_source(), {"claude-code": 1, "cursor": 1})
        self.assertEqual(len(await self.store.list_projects()), 2)

        await self.store.delete_all()
        self.assertEqual(await self.store.count_sessions(), 0)
        self.assertEqual(await self.store.list_projects(), [])
        self.assertEqual(await self.store.sessions.list_messages("cursor:c1"), [])


    async def _project_rows(self) -> list[tuple[str, int]]:
        async with self.db.execute("SELECT path, session_count FROM projects ORDER BY path") as cur:
            rows = await cur.fetchall()
        return [(row[0], row[1]) for row in rows]

    async def test_device_lookup_failure_leaves_no_project_row(self) -> None:
        store = SqliteSessionStore(self.db, identity_resolver=_identity)
        with patch("codeinsights.db.store.get_device_info", side_effect=[OSError("read-only config dir"), DEVICE]):
            with self.assertRaises(OSError):
                await store.upload_session(_session("s-a", project_path="/work/a"))
            await store.upload_session(_session("s-b", project_path="/work/b"))

        self.assertEqual(await self._project_rows(), [("/work/b", 1)])
        self.assertFalse(await store.session_exists("s-a"))

    async def test_non_database_error_rolls_back_pending_writes(self) -> None:
        with patch.object(self.store.sessions, "upsert", side_effect=RuntimeError("boom")):
            with self.assertRaises(RuntimeError):
                await self.store.upload_session(_session("s-a", project_path="/work/a"))
        await self.store.upload_session(_session("s-b", project_path="/work/b"))

        self.assertEqual(await self._project_rows(), [("/work/b", 1)])

    async def test_interrupted_message_replace_keeps_previous_messages(self) -> None:
        await self.store.upload_session(_session())
        await self.store.upload_messages(_session())

        with patch.object(self.store.db, "executemany", side_effect=RuntimeError("interrupted")):
            with self.assertRaises(RuntimeError):
                await self.store.upload_messages(_session(message_ids=("m9",)))
        await self.store.upload_session(_session("s2"))

        messages = await self.store.sessions.list_messages("s1")
        self.assertEqual(sorted(m["id"] for m in messages), ["m1", "m2"])


if __name__ == "__main__":
    unittest.main()
