"""Watch mode: re-run incremental sync when provider session files change.

Claude Code and Codex append to JSONL transcripts while a session is live,
and Cursor rewrites its ``state.vscdb`` (plus WAL). Each debounced batch of
relevant changes triggers one ``SyncEngine.sync`` pass; the sync state keeps
those passes incremental.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from watchfiles import Change, awatch

from codeinsights import config
from codeinsights.models import SyncOptions, SyncResult
from codeinsights.parsers.platforms.registry import SessionProvider

logger = logging.getLogger("codeinsights.watcher")

WATCHED_SUFFIXES = (".jsonl", ".vscdb", ".vscdb-wal")
_TRIGGERING_CHANGES = (Change.added, Change.modified)


class FileWatcher:
    """Runs one background ``awatch`` loop over every provider root."""

    def __init__(self, debounce_ms: int | None = None):
        self.debounce_ms = debounce_ms if debounce_ms is not None else config.WATCH_DEBOUNCE_MS
        self.last_result: SyncResult | None = None
        self.sync_count = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._active = False

    @property
    def is_running(self) -> bool:
        return self._active

    async def start(
        self,
        sync_engine,
        providers: list[SessionProvider],
        options: SyncOptions | None = None,
    ) -> None:
        if self._active:
            logger.warning("Watch mode is already active")
            return

        self._active = True
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(
            self._run(sync_engine, providers, options or SyncOptions())
        )
        logger.info(f"Watch mode started for {', '.join(p.name for p in providers)}")

    async def stop(self) -> None:
        self._active = False
        if self._stop_event is not None:
            self._stop_event.set()
        task, self._loop_task = self._loop_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info(f"Watch mode stopped after {self.sync_count} syncs")

    async def wait(self) -> None:
        """Block until the watch loop ends (stop, cancellation, or nothing to watch)."""
        if self._loop_task is not None:
            await self._loop_task

    @staticmethod
    def watch_paths(providers: Iterable[SessionProvider]) -> list[Path]:
        """Existing provider roots, deduplicated, in provider order."""
        roots: list[Path] = []
        for provider in providers:
            roots.extend(root for root in provider.watch_paths() if root.exists() and root not in roots)
        return roots

    @staticmethod
    def relevant_changes(changes: Iterable[tuple[Change, str]]) -> list[Path]:
        """Session files that were added or modified; deletions are ignored."""
        return sorted(
            Path(raw_path)
            for change, raw_path in changes
            if change in _TRIGGERING_CHANGES and raw_path.endswith(WATCHED_SUFFIXES)
        )

    async def _run(self, sync_engine, providers: list[SessionProvider], options: SyncOptions) -> None:
        roots = self.watch_paths(providers)
        if not roots:
            logger.warning("None of the provider session directories exist; nothing to watch")
            self._active = False
            return

        logger.info(f"Watching {len(roots)} session directories: {', '.join(str(r) for r in roots)}")
        try:
            async for changes in awatch(*roots, debounce=self.debounce_ms, stop_event=self._stop_event):
                if not self._active:
                    break
                changed = self.relevant_changes(changes)
                if changed:
                    await self._sync_changes(sync_engine, options, changed)
        except asyncio.CancelledError:
            logger.debug("Watch loop cancelled")
        except Exception as exc:
            logger.error(f"Watch loop failed: {exc}")
        finally:
            self._active = False

    async def _sync_changes(self, sync_engine, options: SyncOptions, changed: list[Path]) -> None:
        logger.info(f"{len(changed)} session files changed, running incremental sync")
        try:
            self.last_result = await sync_engine.sync(options)
        except Exception as exc:
            logger.error(f"Incremental sync after file change failed: {exc}")
            return
        self.sync_count += 1
        logger.info(
            f"Watch sync #{self.sync_count}: {self.last_result.synced} synced, "
            f"{self.last_result.errors} errors"
        )
