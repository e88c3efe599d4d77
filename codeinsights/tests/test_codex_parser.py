import json
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from codeinsights.parsers.platforms.codex.parser import (
    UNKNOWN_PROJECT_PATH,
    discover_rollout_files,
    parse_rollout_file,
    parse_session_meta,
)

META = {
    "timestamp": "2026-03-01T09:00:00Z",
    "type": "session_meta",
    "payload": {"id": "0199-abc", "cwd": "/work/api", "cli_version": "0.40.0", "model": "gpt-5"},
}


class CodexParserTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.codex_home = Path(tmpdir.name) / ".codex"

    def _write_rollout(self, records: list, name: str = "rollout-2026-03-01T09-00-00-0199-abc.jsonl",
                       subdir: str = "sessions/2026/03/01") -> Path:
        path = self.codex_home / subdir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    def test_single_turn_with_usage(self) -> None:
        path = self._write_rollout(
            [
                META,
                {
                    "timestamp": "2026-03-01T09:00:01Z",
                    "type": "event_msg",
                    "payload": {"type": "user_message", "message": "add a health check endpoint"},
                },
                {"type": "item.completed", "item": {"type": "reasoning", "text": "Plan the route."}},
                {"type": "item.completed", "item": {"type": "agent_message", "text": "Added /health."}},
                {
                    "timestamp": "2026-03-01T09:00:09Z",
                    "type": "turn.completed",
                    "usage": {"input_tokens": 100, "output_tokens": 50},
                },
            ]
        )

        session = parse_rollout_file(path)

        self.assertIsNotNone(session)
        assert session is not None
        self.assertEqual(session.id, "codex:0199-abc")
        self.assertEqual(session.sourceTool, "codex-cli")
        self.assertEqual(session.projectPath, "/work/api")
        self.assertEqual(session.projectName, "api")
        self.assertEqual(session.toolVersion, "0.40.0")
        self.assertEqual(session.generatedTitle, "Add a health check endpoint")
        self.assertEqual(session.titleSource, "user_message")

        self.assertEqual([m.type for m in session.messages], ["user", "assistant"])
        assistant = session.messages[1]
        self.assertEqual(assistant.content, "Added /health.")
        self.assertEqual(assistant.thinking, "Plan the route.")
        self.assertEqual(assistant.timestamp, datetime(2026, 3, 1, 9, 0, 9, tzinfo=timezone.utc))
        assert assistant.usage is not None
        self.assertEqual(assistant.usage.model, "gpt-5")
        self.assertAlmostEqual(assistant.usage.estimatedCostUsd, 0.0006, places=4)

        self.assertEqual(session.startedAt, datetime(2026, 3, 1, 9, 0, 1, tzinfo=timezone.utc))
        self.assertEqual(session.endedAt, datetime(2026, 3, 1, 9, 0, 9, tzinfo=timezone.utc))
        assert session.usage is not None
        self.assertEqual(session.usage.totalInputTokens, 100)
        self.assertEqual(session.usage.totalOutputTokens, 50)
        self.assertEqual(session.usage.primaryModel, "gpt-5")
        self.assertEqual(session.usage.modelsUsed, ["gpt-5"])
        self.assertAlmostEqual(session.usage.estimatedCostUsd, 0.0006, places=4)

    def test_cached_input_is_counted_in_totals(self) -> None:
        path = self._write_rollout(
            [
                META,
                {"type": "user_message", "message": "refactor the settings loader"},
                {"type": "item.completed", "item": {"type": "agent_message", "text": "Done."}},
                {
                    "type": "turn.completed",
                    "usage": {"input_tokens": 1000, "cached_input_tokens": 800, "output_tokens": 10},
                },
            ]
        )
        session = parse_rollout_file(path)
        assert session is not None and session.usage is not None
        self.assertEqual(session.usage.totalInputTokens, 1000)
        self.assertEqual(session.usage.cacheReadTokens, 800)

    def test_tool_items_become_tool_calls(self) -> None:
        path = self._write_rollout(
            [
                META,
                {"type": "user_message", "message": "run the tests and fix failures"},
                {
                    "type": "item.completed",
                    "item": {
                        "type": "command_execution",
                        "id": "cmd-1",
                        "command": "pytest -q",
                        "aggregatedOutput": "1 failed",
                    },
                },
                {
                    "type": "item.completed",
                    "item": {
                        "type": "file_change",
                        "changes": [
                            {"path": "app/models.py", "kind": "update", "diff": "@@ -1 +1 @@"},
                            {"path": "app/views.py", "kind": "add"},
                        ],
                    },
                },
                {"type": "item.completed", "item": {"type": "mcp_tool_call", "tool": "search_docs", "arguments": {"q": "x"}}},
            ]
        )

        session = parse_rollout_file(path)

        assert session is not None
        assistant = session.messages[-1]
        self.assertEqual(assistant.type, "assistant")
        self.assertEqual([c.name for c in assistant.toolCalls], ["shell", "apply_patch", "apply_patch", "search_docs"])
        self.assertEqual(assistant.toolCalls[0].id, "cmd-1")
        self.assertEqual(assistant.toolCalls[0].input["command"], "pytest -q")
        self.assertEqual(assistant.toolCalls[1].input, {"path": "app/models.py", "kind": "update"})
        self.assertEqual([r.output for r in assistant.toolResults], ["1 failed", "@@ -1 +1 @@"])
        self.assertEqual(session.toolCallCount, 4)
        self.assertIsNone(session.usage)

    def test_bare_meta_record_and_unknown_project(self) -> None:
        path = self._write_rollout(
            [
                {"id": "bare-1", "timestamp": "2026-03-01T09:00:00Z"},
                {"type": "user_message", "content": [{"type": "input_text", "text": "hello codex friend"}]},
            ]
        )
        session = parse_rollout_file(path)
        assert session is not None
        self.assertEqual(session.id, "codex:bare-1")
        self.assertEqual(session.projectPath, UNKNOWN_PROJECT_PATH)
        self.assertEqual(session.messages[0].content, "hello codex friend")

    def test_missing_meta_returns_none(self) -> None:
        path = self._write_rollout(
            [
                {"type": "session_meta", "payload": {"cwd": "/work/api"}},
                {"type": "user_message", "message": "hello"},
            ]
        )
        self.assertIsNone(parse_rollout_file(path))
        self.assertIsNone(parse_session_meta("not json"))

    def test_rollout_without_messages_returns_none(self) -> None:
        self.assertIsNone(parse_rollout_file(self._write_rollout([META])))

    def test_discovery_covers_archived_sessions_and_filters_by_cwd(self) -> None:
        live = self._write_rollout([META])
        other_meta = dict(META, payload=dict(META["payload"], id="other", cwd="/work/web"))
        archived = self._write_rollout([other_meta], name="rollout-old.jsonl", subdir="archived_sessions")
        self._write_rollout([META], name="notes.jsonl")

        self.assertEqual(discover_rollout_files(self.codex_home), [live, archived])
        self.assertEqual(discover_rollout_files(self.codex_home, "WORK/API"), [live])

    def test_missing_home_discovers_nothing(self) -> None:
        self.assertEqual(discover_rollout_files(self.codex_home / "nope"), [])

    def test_reasoning_only_turn_is_dropped_but_usage_counts(self) -> None:
        path = self._write_rollout(
            [
                META,
                {"type": "user_message", "message": "think about the cache layout"},
                {"type": "item.completed", "item": {"type": "reasoning", "text": "Weighing options."}},
                {"type": "turn.completed", "usage": {"input_tokens": 200, "output_tokens": 20}},
                {"type": "user_message", "message": "now add the cache module"},
                {"type": "item.completed", "item": {"type": "agent_message", "text": "Added cache.py."}},
                {"type": "turn.completed", "usage": {"input_tokens": 100, "output_tokens": 50}},
            ]
        )

        session = parse_rollout_file(path)

        assert session is not None
        self.assertEqual([m.type for m in session.messages], ["user", "user", "assistant"])
        assistant = session.messages[-1]
        self.assertIsNone(assistant.thinking)
        assert assistant.usage is not None
        self.assertEqual(assistant.usage.inputTokens, 100)
        assert session.usage is not None
        self.assertEqual(session.usage.totalInputTokens, 300)
        self.assertEqual(session.usage.totalOutputTokens, 70)

    def test_later_reasoning_replaces_earlier(self) -> None:
        path = self._write_rollout(
            [
                META,
                {"type": "user_message", "message": "pick a queue library"},
                {"type": "item.completed", "item": {"type": "reasoning", "text": "First pass."}},
                {"type": "item.completed", "item": {"type": "reasoning", "summary": "Second pass."}},
                {"type": "item.completed", "item": {"type": "agent_message", "text": "Use the stdlib queue."}},
            ]
        )

        session = parse_rollout_file(path)

        assert session is not None
        self.assertEqual(session.messages[-1].thinking, "Second pass.")


if __name__ == "__main__":
    unittest.main()
