"""Incremental transcript → store sync engine.

Discovers session locators from every provider, skips the ones the local
sync state says are unchanged, parses the rest and uploads them. State is
persisted after every locator so a crash never loses more than the session
in flight, and a rerun never uploads the same session twice.
"""
from __future__ import annotations

import logging
import time
from pathlib import Path

from codeinsights.date_utils import file_mtime_iso, format_iso, utc_now
from codeinsights.db.store import SessionStore
from codeinsights.db.sync_state import SyncState, SyncStateStore
from codeinsights.errors import UnknownProviderError
from codeinsights.models import ParsedSession, SyncOptions, SyncResult
from codeinsights.observability import (
    record_ingestion,
    record_parser_failure,
    record_token_cost,
    start_span,
)
from codeinsights.parsers.locators import split_virtual_locator
from codeinsights.parsers.platforms.registry import SessionProvider, resolve_providers

logger = logging.getLogger("codeinsights.sync")


class SyncEngine:
    def __init__(
        self,
        store: SessionStore,
        state_store: SyncStateStore,
        providers: list[SessionProvider] | None = None,
    ):
        self.store = store
        self.state_store = state_store
        self.providers = providers

    def _resolve_providers(self, source: str | None) -> list[SessionProvider]:
        if self.providers is None:
            return resolve_providers(source)
        if not source:
            return list(self.providers)
        selected = [p for p in self.providers if p.name == source]
        if not selected:
            raise UnknownProviderError(source, [p.name for p in self.providers])
        return selected

    @staticmethod
    def _locator_parts(provider: SessionProvider, locator: str) -> tuple[str, str | None]:
        """(physical path, sub-session id or None) for a locator."""
        if provider.uses_virtual_locators:
            parts = split_virtual_locator(locator)
            if parts:
                return parts
        return locator, None

    def _is_pending(self, state: SyncState, provider: SessionProvider, locator: str) -> bool:
        physical_path, sub_session_id = self._locator_parts(provider, locator)
        if sub_session_id is not None:
            return state.is_sub_session_pending(physical_path, sub_session_id)
        return state.is_file_pending(physical_path, file_mtime_iso(Path(physical_path)))

    def _mark_synced(
        self,
        state: SyncState,
        provider: SessionProvider,
        locator: str,
        session_id: str,
        modified: str,
    ) -> None:
        physical_path, sub_session_id = self._locator_parts(provider, locator)
        if sub_session_id is not None:
            state.mark_sub_session_synced(physical_path, modified, sub_session_id, session_id)
        else:
            state.mark_file_synced(physical_path, modified, session_id)

    async def sync(self, options: SyncOptions | None = None) -> SyncResult:
        """Run one reconciliation pass. Returns per-run counters."""
        options = options or SyncOptions()
        t0 = time.monotonic()
        providers = self._resolve_providers(options.source)
        result = SyncResult(dryRun=options.dryRun)

        with start_span(
            "codeinsights.sync",
            {"sync.force": options.force, "sync.dry_run": options.dryRun, "sync.source": options.source},
        ):
            state = SyncState() if options.force else self.state_store.load()

            pending: list[tuple[SessionProvider, str]] = []
            for provider in providers:
                try:
                    locators = provider.discover(options.project)
                except Exception as exc:
                    result.errors += 1
                    logger.error(f"Discovery failed for provider {provider.name}: {exc}")
                    continue
                result.discovered += len(locators)
                logger.debug(f"Provider {provider.name} discovered {len(locators)} locators")
                for locator in locators:
                    if options.force or self._is_pending(state, provider, locator):
                        pending.append((provider, locator))

            result.pending = len(pending)
            if options.dryRun:
                result.pendingLocators = [locator for _, locator in pending]
                result.durationMs = int((time.monotonic() - t0) * 1000)
                logger.info(f"Dry run: {result.pending} of {result.discovered} sessions pending")
                return result

            for provider, locator in pending:
                await self._sync_locator(provider, locator, state, options, result)

            if options.force:
                result.usageStats = await self.store.recalculate_usage_stats()

            state.lastSync = format_iso(utc_now())
            self.state_store.save(state)

        result.durationMs = int((time.monotonic() - t0) * 1000)
        logger.info(
            f"Sync complete: {result.synced} synced, {result.alreadySynced} already synced, "
            f"{result.skipped} skipped, {result.messagesUploaded} messages, {result.errors} errors "
            f"({result.durationMs}ms)"
        )
        return result

    async def _sync_locator(
        self,
        provider: SessionProvider,
        locator: str,
        state: SyncState,
        options: SyncOptions,
        result: SyncResult,
    ) -> None:
        t0 = time.monotonic()
        outcome = "error"
        with start_span("codeinsights.sync.session", {"sync.provider": provider.name, "sync.locator": locator}):
            try:
                # The recorded mtime is the one observed before parsing.
                modified = file_mtime_iso(Path(self._locator_parts(provider, locator)[0]))
                session = provider.parse(locator)
                if session is None:
                    outcome = "skipped"
                    result.skipped += 1
                    record_parser_failure(provider.name)
                    logger.warning(f"[{provider.name}] Could not parse {Path(locator).name}, skipping")
                    return

                if not options.force and await self.store.session_exists(session.id):
                    self._mark_synced(state, provider, locator, session.id, modified)
                    self.state_store.save(state)
                    outcome = "already_synced"
                    result.alreadySynced += 1
                    return

                await self.store.upload_session(session, is_force_sync=options.force)
                uploaded = await self.store.upload_messages(session)
                self._mark_synced(state, provider, locator, session.id, modified)
                self.state_store.save(state)

                outcome = "synced"
                result.synced += 1
                result.messagesUploaded += uploaded
                self._record_usage(provider, session)
                if not options.quiet:
                    logger.info(f"[{provider.name}] Synced {session.generatedTitle or session.id} ({uploaded} messages)")
            except Exception as exc:
                result.errors += 1
                logger.error(f"[{provider.name}] Failed to sync {locator}: {exc}")
            finally:
                record_ingestion(provider.name, outcome, (time.monotonic() - t0) * 1000)

    @staticmethod
    def _record_usage(provider: SessionProvider, session: ParsedSession) -> None:
        if session.usage is None:
            return
        record_token_cost(
            provider=provider.name,
            model=session.usage.primaryModel,
            token_input=session.usage.totalInputTokens,
            token_output=session.usage.totalOutputTokens,
            cost_usd=session.usage.estimatedCostUsd,
        )
