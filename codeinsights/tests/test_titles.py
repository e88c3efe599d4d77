import unittest
from datetime import datetime, timezone

from codeinsights.models import ParsedMessage, ParsedSession, ToolCall
from codeinsights.parsers.titles import (
    TITLE_SCORE_THRESHOLD,
    apply_title,
    clean_title,
    detect_session_character,
    generate_title,
    score_user_message,
)

_TS = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def _message(index: int, type_: str, content: str = "", tools: list[ToolCall] | None = None) -> ParsedMessage:
    return ParsedMessage(
        id=f"m{index}",
        sessionId="s1",
        type=type_,
        content=content,
        toolCalls=tools or [],
        timestamp=_TS,
    )


def _session(messages: list[ParsedMessage], summary: str | None = None) -> ParsedSession:
    return ParsedSession(
        id="s1",
        projectPath="/work/myproj",
        projectName="myproj",
        summary=summary,
        startedAt=_TS,
        endedAt=_TS,
        messageCount=len(messages),
        userMessageCount=sum(1 for m in messages if m.type == "user"),
        assistantMessageCount=sum(1 for m in messages if m.type == "assistant"),
        toolCallCount=sum(len(m.toolCalls) for m in messages),
        sourceTool="claude-code",
        messages=messages,
    )


def _tool(name: str, file_path: str | None = None) -> ToolCall:
    return ToolCall(id=f"t-{name}", name=name, input={"file_path": file_path} if file_path else {})


class GenerateTitleTests(unittest.TestCase):
    def test_summary_takes_precedence_over_user_messages(self) -> None:
        session = _session(
            [_message(0, "user", "fix the login bug")],
            summary="**Refactor** auth middleware",
        )
        result = generate_title(session)
        self.assertEqual(result.source, "claude")
        self.assertEqual(result.title, "Refactor auth middleware")

    def test_short_action_request_becomes_user_message_title(self) -> None:
        result = generate_title(_session([_message(0, "user", "fix the login bug")]))
        self.assertEqual(result.source, "user_message")
        self.assertEqual(result.title, "Fix the login bug")

    def test_acknowledgements_are_skipped(self) -> None:
        session = _session(
            [
                _message(0, "user", "ok"),
                _message(1, "user", "Can you add a dark mode toggle to settings"),
            ]
        )
        result = generate_title(session)
        self.assertEqual(result.source, "user_message")
        self.assertEqual(result.title, "Add a dark mode toggle to settings")

    def test_character_title_when_no_user_message_scores(self) -> None:
        session = _session(
            [
                _message(0, "user", "ok"),
                _message(1, "assistant", "Done.", [_tool("Edit", "/work/myproj/src/app.py")]),
            ]
        )
        result = generate_title(session)
        self.assertEqual(result.source, "character")
        self.assertEqual(result.character, "quick_task")
        self.assertEqual(result.title, "Updated: app.py")

    def test_bug_hunt_title_uses_edited_file(self) -> None:
        session = _session(
            [
                _message(0, "user", "broken build"),
                _message(1, "assistant", "Patching.", [_tool("Edit", "/work/myproj/parser.py")]),
                _message(2, "assistant", "Resolved."),
            ]
        )
        result = generate_title(session)
        self.assertEqual(result.character, "bug_hunt")
        self.assertEqual(result.title, "Fixed: parser.py")

    def test_fallback_names_project_and_message_count(self) -> None:
        result = generate_title(_session([_message(0, "user", "ok"), _message(1, "user", "yes")]))
        self.assertEqual(result.source, "fallback")
        self.assertEqual(result.title, "myproj session (2 messages)")
        self.assertIsNone(result.character)

    def test_apply_title_sets_character_without_character_title(self) -> None:
        session = _session(
            [
                _message(0, "user", "fix the login bug"),
                _message(1, "assistant", "Done.", [_tool("Edit", "/work/myproj/login.py")]),
            ]
        )
        apply_title(session)
        self.assertEqual(session.titleSource, "user_message")
        self.assertEqual(session.sessionCharacter, "quick_task")


class ScoringAndCleanupTests(unittest.TestCase):
    def test_score_buckets(self) -> None:
        self.assertEqual(score_user_message("hi there"), 0)
        self.assertEqual(score_user_message("add retries to the http client now"), 80)
        self.assertEqual(score_user_message("why does the cache miss on restart?"), 70)
        self.assertEqual(score_user_message("the cache misses after every restart today"), 60)
        self.assertLess(score_user_message("the " * 60), TITLE_SCORE_THRESHOLD)

    def test_clean_title_truncates_long_titles(self) -> None:
        title = clean_title("x" * 70)
        self.assertEqual(len(title), 60)
        self.assertTrue(title.endswith("..."))

    def test_clean_title_strips_greeting_and_markup(self) -> None:
        self.assertEqual(clean_title("hey, `update`   the  #docs"), "Update the docs")


class SessionCharacterTests(unittest.TestCase):
    def test_exploration_when_reads_dominate(self) -> None:
        tools = [_tool("Read", f"/f{i}.py") for i in range(4)]
        session = _session([_message(0, "user", "look around"), _message(1, "assistant", "Read.", tools)])
        self.assertEqual(detect_session_character(session), "exploration")

    def test_feature_build_when_three_files_created(self) -> None:
        tools = [_tool("Write", f"/new/f{i}.py") for i in range(3)]
        session = _session([_message(0, "user", "scaffold"), _message(1, "assistant", "Created.", tools)])
        self.assertEqual(detect_session_character(session), "feature_build")

    def test_no_character_for_plain_chat(self) -> None:
        session = _session([_message(0, "user", "hello"), _message(1, "assistant", "hi")])
        self.assertIsNone(detect_session_character(session))

    def test_deep_focus_starts_at_fifty_messages(self) -> None:
        def build(count: int) -> ParsedSession:
            messages = [_message(0, "assistant", "Editing.", [_tool("Edit", "/work/myproj/core.py")])]
            messages += [_message(i, "user" if i % 2 else "assistant", "keep going") for i in range(1, count)]
            return _session(messages)

        self.assertIsNone(detect_session_character(build(49)))
        self.assertEqual(detect_session_character(build(50)), "deep_focus")

    def test_refactor_needs_more_than_ten_edits(self) -> None:
        def build(edits: int) -> ParsedSession:
            tools = [_tool("Edit", f"/work/myproj/mod{i}.py") for i in range(edits)]
            return _session([_message(0, "user", "rename the handlers"), _message(1, "assistant", "Renamed.", tools)])

        self.assertEqual(detect_session_character(build(10)), "quick_task")
        self.assertEqual(detect_session_character(build(11)), "refactor")

    def test_learning_needs_three_questions(self) -> None:
        questions = ["how does the scheduler pick a worker?", "what is a lease?", "why use a heap here?"]

        def build(asked: list[str]) -> ParsedSession:
            messages: list[ParsedMessage] = []
            for question in asked:
                messages.append(_message(len(messages), "user", question))
                messages.append(_message(len(messages), "assistant", "Here is how it works."))
            return _session(messages)

        self.assertIsNone(detect_session_character(build(questions[:2])))
        self.assertEqual(detect_session_character(build(questions)), "learning")

    def test_learning_requires_fewer_tool_calls_than_messages(self) -> None:
        messages = [
            _message(0, "user", "how does the scheduler pick a worker?"),
            _message(1, "user", "what is a lease?"),
            _message(2, "user", "why use a heap here?"),
            _message(3, "assistant", "Let me check.", [_tool("Bash") for _ in range(4)]),
        ]
        self.assertIsNone(detect_session_character(_session(messages)))


if __name__ == "__main__":
    unittest.main()
