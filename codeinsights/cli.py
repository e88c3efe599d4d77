"""Command-line entry point: ``code-insights <command>``."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from codeinsights import config, hooks
from codeinsights.db.connection import close_connection, get_connection
from codeinsights.db.file_watcher import FileWatcher
from codeinsights.db.sqlite_migrations import run_migrations
from codeinsights.db.store import SqliteSessionStore
from codeinsights.db.sync_engine import SyncEngine
from codeinsights.db.sync_state import SyncStateStore
from codeinsights.errors import CodeInsightsError, UnknownProviderError
from codeinsights.models import SyncOptions, SyncResult
from codeinsights import observability
from codeinsights.parsers.platforms.registry import get_all_providers, resolve_providers

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def _configure_logging(quiet: bool = False, verbose: bool = False) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, config.LOG_LEVEL, logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", force=True)


async def _open_store() -> SqliteSessionStore:
    db = await get_connection()
    await run_migrations(db)
    return SqliteSessionStore(db)


def _print_summary(result: SyncResult) -> None:
    if result.dryRun:
        print(f"Dry run: {result.pending} of {result.discovered} sessions would be synced")
        for locator in result.pendingLocators:
            print(f"  would sync: {locator}")
        return

    print("Sync summary")
    print(f"  Sessions synced:   {result.synced}")
    print(f"  Already synced:    {result.alreadySynced}")
    print(f"  Skipped:           {result.skipped}")
    print(f"  Messages uploaded: {result.messagesUploaded}")
    if result.errors:
        print(f"  Errors:            {result.errors}")
    if result.usageStats:
        totals = result.usageStats.totals
        print(
            f"  Usage recalculated over {result.usageStats.sessionsWithUsage} sessions: "
            f"{totals.totalInputTokens} in / {totals.totalOutputTokens} out tokens, "
            f"${totals.estimatedCostUsd:.4f}"
        )


async def _run_sync(options: SyncOptions) -> int:
    # Unknown providers fail here, before the store is touched.
    resolve_providers(options.source)
    store = await _open_store()
    try:
        engine = SyncEngine(store, SyncStateStore())
        result = await engine.sync(options)
    finally:
        await close_connection()

    if not options.quiet:
        _print_summary(result)
    return EXIT_FAILURE if result.errors else EXIT_OK


async def _run_status() -> int:
    state = SyncStateStore().load()
    print("Sync state:")
    if state.lastSync:
        print(f"  Last sync: {state.lastSync}")
        print(f"  {len(state.files)} files tracked")
    else:
        print("  Never synced. Run `code-insights sync`.")

    print("\nProviders:")
    for provider in get_all_providers():
        roots = provider.watch_paths()
        found = [str(p) for p in roots if p.exists()]
        status = f"found at {', '.join(found)}" if found else "not found"
        print(f"  {provider.name}: {status}")

    store = await _open_store()
    try:
        counts = await store.count_sessions_by_source()
        projects = await store.list_projects(limit=5)
        usage = await store.get_usage_stats()
    finally:
        await close_connection()

    print(f"\nStore: {config.DB_PATH}")
    print(f"  {sum(counts.values())} sessions")
    for source_tool, count in counts.items():
        print(f"    {source_tool}: {count}")
    if projects:
        print("  Recent projects:")
        for project in projects:
            print(f"    {project['name']} ({project['session_count']} sessions)")
    if usage:
        print(
            f"  Usage: {usage['total_input_tokens']} in / {usage['total_output_tokens']} out tokens, "
            f"${usage['estimated_cost_usd']:.4f} across {usage['sessions_with_usage']} sessions"
        )

    print(f"\nClaude Code hook: {'installed' if hooks.is_hook_installed() else 'not installed'}")
    return EXIT_OK


async def _run_watch(options: SyncOptions) -> int:
    providers = resolve_providers(options.source)
    store = await _open_store()
    watcher = FileWatcher()
    try:
        engine = SyncEngine(store, SyncStateStore(), providers)
        _print_summary(await engine.sync(options))
        await watcher.start(engine, providers, options)
        await watcher.wait()
    finally:
        await watcher.stop()
        await close_connection()
    return EXIT_OK


async def _run_reset(include_store: bool) -> int:
    SyncStateStore().reset()
    print("Sync state cleared; the next sync re-examines every session.")
    if include_store:
        store = await _open_store()
        try:
            await store.delete_all()
        finally:
            await close_connection()
        print(f"Deleted all sessions from {config.DB_PATH}")
    return EXIT_OK


def _confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="code-insights",
        description="Sync local AI coding-assistant sessions into a session store.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    provider_names = [p.name for p in get_all_providers()]

    sync_parser = subparsers.add_parser("sync", help="Sync new and changed sessions")
    sync_parser.add_argument("-f", "--force", action="store_true", help="Re-sync everything and recalculate usage")
    sync_parser.add_argument("-p", "--project", default=None, help="Only sessions whose project matches this text")
    sync_parser.add_argument("--dry-run", action="store_true", help="List what would be synced without uploading")
    sync_parser.add_argument("-q", "--quiet", action="store_true", help="Only report errors")
    sync_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sync_parser.add_argument("-s", "--source", default=None, help=f"One provider: {', '.join(provider_names)}")

    subparsers.add_parser("status", help="Show sync state, provider roots and store totals")

    watch_parser = subparsers.add_parser("watch", help="Sync continuously as session files change")
    watch_parser.add_argument("-p", "--project", default=None, help="Only sessions whose project matches this text")
    watch_parser.add_argument("-s", "--source", default=None, help=f"One provider: {', '.join(provider_names)}")
    watch_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    reset_parser = subparsers.add_parser("reset", help="Forget sync state so everything is re-examined")
    reset_parser.add_argument("--store", action="store_true", help="Also delete all stored sessions")
    reset_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    subparsers.add_parser("install-hook", help="Sync automatically when a Claude Code session ends")
    subparsers.add_parser("uninstall-hook", help="Remove the Claude Code sync hook")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(quiet=getattr(args, "quiet", False), verbose=getattr(args, "verbose", False))
    observability.initialize()

    try:
        if args.command == "sync":
            options = SyncOptions(
                force=args.force,
                project=args.project,
                dryRun=args.dry_run,
                quiet=args.quiet,
                source=args.source,
            )
            return asyncio.run(_run_sync(options))
        if args.command == "status":
            return asyncio.run(_run_status())
        if args.command == "watch":
            return asyncio.run(_run_watch(SyncOptions(project=args.project, source=args.source)))
        if args.command == "reset":
            if args.store and not args.yes and not _confirm(f"Delete every stored session in {config.DB_PATH}?"):
                print("Aborted.")
                return EXIT_FAILURE
            return asyncio.run(_run_reset(args.store))
        if args.command == "install-hook":
            if hooks.install_hook():
                print(f"Hook installed in {config.CLAUDE_SETTINGS_FILE}: {config.HOOK_COMMAND}")
            else:
                print("Code Insights hook already installed.")
            return EXIT_OK
        if args.command == "uninstall-hook":
            if hooks.uninstall_hook():
                print("Hook uninstalled.")
            else:
                print("No Code Insights hook found.")
            return EXIT_OK
    except UnknownProviderError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except CodeInsightsError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_FAILURE
    finally:
        observability.shutdown()

    parser.error(f"unknown command {args.command}")
    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
