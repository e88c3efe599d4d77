"""Rule-based session title and character classification.

The cascade is evaluated in order and the first applicable rule wins:
source summary, a well-scored user message, a character-derived title, a
lower-scored user message, and finally a generic project fallback.
"""
from __future__ import annotations

import re
from collections import Counter
from typing import NamedTuple

from codeinsights.models import GeneratedTitle, ParsedMessage, ParsedSession

TITLE_SOURCE_SUMMARY = "claude"
TITLE_SOURCE_USER_MESSAGE = "user_message"
TITLE_SOURCE_CHARACTER = "character"
TITLE_SOURCE_FALLBACK = "fallback"

# User-message scoring
TITLE_SCORE_THRESHOLD = 40
MAX_USER_MESSAGES_SCORED = 3
MIN_TITLE_WORDS = 3
MAX_TITLE_WORDS = 100
LONG_MESSAGE_WORDS = 50
LONG_MESSAGE_FALLBACK_WORDS = 20
MIN_FIRST_SENTENCE_CHARS = 10

# Title cleanup
MAX_TITLE_CHARS = 60
TRUNCATED_TITLE_CHARS = 57

# Character detection
DEEP_FOCUS_MIN_MESSAGES = 50
DEEP_FOCUS_MAX_FILES = 3
FEATURE_BUILD_MIN_CREATED_FILES = 3
EXPLORATION_READ_RATIO = 3
EXPLORATION_MAX_EDITS = 5
REFACTOR_MIN_EDITS = 10
LEARNING_MIN_QUESTIONS = 3
QUICK_TASK_MAX_MESSAGES = 10

EDIT_TOOLS = ("Edit", "Write")
READ_TOOLS = ("Read", "Grep", "Glob")

_SKIP_PATTERNS = (
    re.compile(
        r"^(yes|no|ok|okay|sure|thanks|thank you|continue|go ahead|sounds good|looks good"
        r"|perfect|great|nice|cool|done|got it)\.?$",
        re.IGNORECASE,
    ),
    re.compile(r"^(y|n|k)$", re.IGNORECASE),
    re.compile(r"^```"),
)

_PREFIX_REMOVALS = (
    re.compile(r"^(help me|can you|could you|please|i want to|i need to|i'd like to|let's)\s+", re.IGNORECASE),
    re.compile(r"^(hi|hello|hey),?\s*", re.IGNORECASE),
)

_ACTION_VERBS = re.compile(
    r"^(fix|add|create|build|implement|update|remove|delete|refactor|move|rename|change|modify"
    r"|setup|configure|install|debug|test|write|make|get|set|find|search|check|review|analyze"
    r"|optimize|improve|migrate|convert|integrate)",
    re.IGNORECASE,
)

_ERROR_WORDING = re.compile(r"error|bug|fix|issue|broken|fail", re.IGNORECASE)
_FIXED_WORDING = re.compile(r"fixed|resolved|working now", re.IGNORECASE)
_BUG_DESCRIPTION = re.compile(r"(?:fix|bug|error|issue)[:\s]+([^.!?\n]{5,40})", re.IGNORECASE)
_TOPIC_PATTERNS = (
    re.compile(r"(?:about|for|with|using)\s+([a-z][a-z0-9\s-]{2,20})", re.IGNORECASE),
    re.compile(r"([a-z][a-z0-9\s-]{2,15})\s+(?:feature|component|module|function|api)", re.IGNORECASE),
)

_CHARACTER_TITLES = {
    "deep_focus": "Deep work: {file}",
    "bug_hunt": "Fixed: {bug}",
    "feature_build": "Built: {topic}",
    "exploration": "Explored: {topic}",
    "refactor": "Refactored: {file}",
    "learning": "Learned: {topic}",
    "quick_task": "Updated: {file}",
}


class TitleCandidate(NamedTuple):
    text: str
    score: int


def _word_count(text: str) -> int:
    return len(text.split())


def clean_title(raw: str) -> str:
    title = raw
    for pattern in _PREFIX_REMOVALS:
        title = pattern.sub("", title)

    title = re.sub(r"[*_`#]", "", title)
    title = re.sub(r"\s+", " ", title).strip()

    if len(title) > MAX_TITLE_CHARS:
        title = title[:TRUNCATED_TITLE_CHARS] + "..."

    return title[:1].upper() + title[1:]


def score_user_message(text: str) -> int:
    word_count = _word_count(text)
    if word_count < MIN_TITLE_WORDS or word_count > MAX_TITLE_WORDS:
        return 0

    if _ACTION_VERBS.match(text):
        if 5 <= word_count <= 15:
            return 80
        if 15 < word_count <= 30:
            return 70
        return 60

    if "?" in text:
        if 5 <= word_count <= 20:
            return 70
        return 50

    if 5 <= word_count <= 15:
        return 60
    if 15 < word_count <= 50:
        return 40
    return 20


def extract_user_message_candidate(messages: list[ParsedMessage]) -> TitleCandidate | None:
    user_messages = [m for m in messages if m.type == "user"]

    for message in user_messages[:MAX_USER_MESSAGES_SCORED]:
        content = message.content.strip()
        if any(pattern.search(content) for pattern in _SKIP_PATTERNS):
            continue

        words = content.split()
        if len(words) < MIN_TITLE_WORDS:
            continue

        text = content
        if len(words) > LONG_MESSAGE_WORDS:
            first_sentence = re.split(r"[.!?]", content)[0]
            if len(first_sentence) > MIN_FIRST_SENTENCE_CHARS:
                text = first_sentence
            else:
                text = " ".join(words[:LONG_MESSAGE_FALLBACK_WORDS])

        score = score_user_message(text)
        if score > 0:
            return TitleCandidate(text=text, score=score)

    return None


def _edited_file_paths(session: ParsedSession) -> tuple[list[str], set[str], set[str]]:
    """Return (every edited path in order, modified set, created set)."""
    touched: list[str] = []
    modified: set[str] = set()
    created: set[str] = set()
    for message in session.messages:
        for call in message.toolCalls:
            if call.name not in EDIT_TOOLS:
                continue
            file_path = call.input.get("file_path") if isinstance(call.input, dict) else None
            if not isinstance(file_path, str) or not file_path:
                continue
            touched.append(file_path)
            modified.add(file_path)
            if call.name == "Write":
                created.add(file_path)
    return touched, modified, created


def detect_session_character(session: ParsedSession) -> str | None:
    tool_counts: Counter[str] = Counter(
        call.name for message in session.messages for call in message.toolCalls
    )
    _, files_modified, files_created = _edited_file_paths(session)

    edit_count = sum(tool_counts[name] for name in EDIT_TOOLS)
    read_count = sum(tool_counts[name] for name in READ_TOOLS)
    message_count = session.messageCount

    if message_count >= DEEP_FOCUS_MIN_MESSAGES and 0 < len(files_modified) <= DEEP_FOCUS_MAX_FILES:
        return "deep_focus"

    has_error_wording = any(_ERROR_WORDING.search(m.content) for m in session.messages)
    has_fixed_wording = any(_FIXED_WORDING.search(m.content) for m in session.messages)
    if has_error_wording and has_fixed_wording and edit_count > 0:
        return "bug_hunt"

    if len(files_created) >= FEATURE_BUILD_MIN_CREATED_FILES:
        return "feature_build"

    if read_count > edit_count * EXPLORATION_READ_RATIO and edit_count < EXPLORATION_MAX_EDITS:
        return "exploration"

    if edit_count > REFACTOR_MIN_EDITS and not files_created:
        return "refactor"

    question_count = sum(1 for m in session.messages if m.type == "user" and "?" in m.content)
    if question_count >= LEARNING_MIN_QUESTIONS and session.toolCallCount < message_count:
        return "learning"

    if message_count < QUICK_TASK_MAX_MESSAGES and edit_count > 0:
        return "quick_task"

    return None


def _extract_topic(content: str) -> str | None:
    for pattern in _TOPIC_PATTERNS:
        match = pattern.search(content)
        if match:
            return match.group(1).strip()
    return None


def _extract_bug_description(messages: list[ParsedMessage]) -> str | None:
    for message in messages:
        if message.type != "user":
            continue
        match = _BUG_DESCRIPTION.search(message.content)
        if match:
            return match.group(1).strip()
    return None


def generate_character_title(session: ParsedSession, character: str) -> str:
    touched, _, _ = _edited_file_paths(session)
    file_counts = Counter(path.rsplit("/", 1)[-1] or path for path in touched)
    primary_file = file_counts.most_common(1)[0][0] if file_counts else "files"

    user_content = " ".join(m.content for m in session.messages if m.type == "user").lower()
    topic = _extract_topic(user_content) or session.projectName

    template = _CHARACTER_TITLES.get(character)
    if not template:
        return f"{session.projectName} session"
    bug = _extract_bug_description(session.messages) or primary_file
    return template.format(file=primary_file, topic=topic, bug=bug)


def generate_title(session: ParsedSession) -> GeneratedTitle:
    if session.summary and session.summary.strip():
        return GeneratedTitle(title=clean_title(session.summary), source=TITLE_SOURCE_SUMMARY)

    candidate = extract_user_message_candidate(session.messages)
    if candidate and candidate.score >= TITLE_SCORE_THRESHOLD:
        return GeneratedTitle(title=clean_title(candidate.text), source=TITLE_SOURCE_USER_MESSAGE)

    character = detect_session_character(session)
    if character:
        return GeneratedTitle(
            title=generate_character_title(session, character),
            source=TITLE_SOURCE_CHARACTER,
            character=character,
        )

    if candidate:
        return GeneratedTitle(title=clean_title(candidate.text), source=TITLE_SOURCE_USER_MESSAGE)

    return GeneratedTitle(
        title=f"{session.projectName} session ({session.messageCount} messages)",
        source=TITLE_SOURCE_FALLBACK,
    )


def apply_title(session: ParsedSession) -> ParsedSession:
    """Fill in title, title source and character on a freshly parsed session."""
    result = generate_title(session)
    session.generatedTitle = result.title
    session.titleSource = result.source
    session.sessionCharacter = result.character or detect_session_character(session)
    return session
