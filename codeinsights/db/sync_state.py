"""Local record of which transcripts have already been synced.

The state lives in a single JSON file keyed by physical file path. It is
loaded once per run, mutated in memory, and rewritten atomically after every
synced locator so an interrupted run resumes where it stopped.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from codeinsights import config

logger = logging.getLogger("codeinsights.sync")


class FileSyncState(BaseModel):
    lastModified: str = ""
    lastSyncedLine: int = 0
    sessionId: str = ""
    syncedSessionIds: Optional[list[str]] = None


class SyncState(BaseModel):
    lastSync: str = ""
    files: dict[str, FileSyncState] = Field(default_factory=dict)

    def is_file_pending(self, physical_path: str, modified_iso: str) -> bool:
        """A single-session file is pending when unrecorded or its mtime moved."""
        record = self.files.get(physical_path)
        return record is None or record.lastModified != modified_iso

    def is_sub_session_pending(self, physical_path: str, sub_session_id: str) -> bool:
        record = self.files.get(physical_path)
        if record is None or not record.syncedSessionIds:
            return True
        return sub_session_id not in record.syncedSessionIds

    def mark_file_synced(self, physical_path: str, modified_iso: str, session_id: str) -> None:
        self.files[physical_path] = FileSyncState(
            lastModified=modified_iso,
            lastSyncedLine=0,
            sessionId=session_id,
        )

    def mark_sub_session_synced(
        self,
        physical_path: str,
        modified_iso: str,
        sub_session_id: str,
        session_id: str,
    ) -> None:
        record = self.files.get(physical_path)
        synced = list(record.syncedSessionIds or []) if record else []
        if sub_session_id not in synced:
            synced.append(sub_session_id)
        self.files[physical_path] = FileSyncState(
            lastModified=modified_iso,
            lastSyncedLine=0,
            sessionId=session_id,
            syncedSessionIds=synced,
        )


class SyncStateStore:
    """Reads and atomically writes the sync-state JSON file."""

    def __init__(self, path: Path | None = None):
        self.path = path or config.SYNC_STATE_FILE

    def load(self) -> SyncState:
        if not self.path.exists():
            return SyncState()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return SyncState.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning(f"Ignoring unreadable sync state {self.path}: {exc}")
            return SyncState()

    def save(self, state: SyncState) -> None:
        """Write to a sibling temp file, then rename over the real one."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            dir=self.path.parent,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(state.model_dump_json(indent=2))
            os.replace(temp_path, self.path)
        except OSError:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def reset(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Removed sync state {self.path}")
