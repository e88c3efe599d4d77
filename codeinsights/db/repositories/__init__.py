"""Repository package for database access."""

from .projects import SqliteProjectRepository
from .sessions import SqliteSessionRepository
from .usage import SqliteUsageRepository

__all__ = [
    "SqliteProjectRepository",
    "SqliteSessionRepository",
    "SqliteUsageRepository",
]
