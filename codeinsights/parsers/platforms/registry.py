"""Session provider registry for platform-specific implementations."""
from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path

from codeinsights import config
from codeinsights.errors import UnknownProviderError
from codeinsights.models import ParsedSession
from codeinsights.parsers.locators import split_virtual_locator
from codeinsights.parsers.platforms.claude_code import parser as claude_code_parser
from codeinsights.parsers.platforms.codex import parser as codex_parser
from codeinsights.parsers.platforms.cursor import parser as cursor_parser

logger = logging.getLogger("codeinsights.parsers")

# Unexpected shapes that slip past the parsers' own checks still must not abort a sync run.
_PARSE_ERRORS = (OSError, ValueError, TypeError, KeyError, AttributeError, sqlite3.Error)


class SessionProvider(ABC):
    """One source tool: finds its session locators and parses them."""

    uses_virtual_locators = False

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def discover(self, project_filter: str | None = None) -> list[str]:
        """Return locators for every session on this machine."""

    def parse(self, locator: str) -> ParsedSession | None:
        try:
            return self._parse(locator)
        except _PARSE_ERRORS as exc:
            logger.debug(f"Provider {self.name} could not parse {locator}: {exc}")
            return None

    @abstractmethod
    def _parse(self, locator: str) -> ParsedSession | None:
        ...

    @abstractmethod
    def watch_paths(self) -> list[Path]:
        """Directories whose changes should trigger a new sync."""


class ClaudeCodeProvider(SessionProvider):
    def __init__(self, projects_dir: Path | None = None):
        self.projects_dir = projects_dir or config.CLAUDE_PROJECTS_DIR

    @property
    def name(self) -> str:
        return claude_code_parser.SOURCE_TOOL

    def discover(self, project_filter: str | None = None) -> list[str]:
        return [str(path) for path in claude_code_parser.discover_session_files(self.projects_dir, project_filter)]

    def _parse(self, locator: str) -> ParsedSession | None:
        return claude_code_parser.parse_session_file(Path(locator))

    def watch_paths(self) -> list[Path]:
        return [self.projects_dir]


class CursorProvider(SessionProvider):
    uses_virtual_locators = True

    def __init__(self, data_dir: Path | None = None):
        self.data_dir = data_dir or config.CURSOR_DATA_DIR

    @property
    def name(self) -> str:
        return cursor_parser.SOURCE_TOOL

    def discover(self, project_filter: str | None = None) -> list[str]:
        return cursor_parser.discover_sessions(self.data_dir, project_filter)

    def _parse(self, locator: str) -> ParsedSession | None:
        parts = split_virtual_locator(locator)
        if not parts:
            return None
        db_path, composer_id = parts
        return cursor_parser.parse_session(Path(db_path), composer_id)

    def watch_paths(self) -> list[Path]:
        return [self.data_dir / "workspaceStorage", self.data_dir / "globalStorage"]


class CodexProvider(SessionProvider):
    def __init__(self, codex_home: Path | None = None):
        self.codex_home = codex_home or config.CODEX_HOME

    @property
    def name(self) -> str:
        return codex_parser.SOURCE_TOOL

    def discover(self, project_filter: str | None = None) -> list[str]:
        return [str(path) for path in codex_parser.discover_rollout_files(self.codex_home, project_filter)]

    def _parse(self, locator: str) -> ParsedSession | None:
        return codex_parser.parse_rollout_file(Path(locator))

    def watch_paths(self) -> list[Path]:
        return [self.codex_home / subdir for subdir in codex_parser.ROLLOUT_DIRS]


_PROVIDERS: dict[str, SessionProvider] = {}


def register_provider(provider: SessionProvider) -> None:
    _PROVIDERS[provider.name] = provider


for _provider in (ClaudeCodeProvider(), CursorProvider(), CodexProvider()):
    register_provider(_provider)


def get_provider(name: str) -> SessionProvider:
    provider = _PROVIDERS.get(name)
    if provider is None:
        raise UnknownProviderError(name, list(_PROVIDERS))
    return provider


def get_all_providers() -> list[SessionProvider]:
    """Registered providers in registration order."""
    return list(_PROVIDERS.values())


def resolve_providers(source: str | None = None) -> list[SessionProvider]:
    if source:
        return [get_provider(source)]
    return get_all_providers()
