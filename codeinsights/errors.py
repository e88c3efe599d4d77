"""Exception types raised by the sync pipeline."""
from __future__ import annotations


class CodeInsightsError(Exception):
    """Base class for errors surfaced to the CLI."""


class UnknownProviderError(CodeInsightsError, ValueError):
    """Raised when a provider name is not registered."""

    def __init__(self, name: str, known: list[str] | None = None):
        self.name = name
        self.known = list(known or [])
        message = f"Unknown provider: {name}"
        if self.known:
            message += f" (expected one of: {', '.join(self.known)})"
        super().__init__(message)


class StoreError(CodeInsightsError):
    """Raised when a session store operation fails."""
