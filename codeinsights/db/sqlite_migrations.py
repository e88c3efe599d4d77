"""Database schema creation and versioning.

Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("codeinsights.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── Projects (one row per stable project id) ───────────────────────
CREATE TABLE IF NOT EXISTS projects (
    id                     TEXT PRIMARY KEY,
    name                   TEXT NOT NULL,
    path                   TEXT NOT NULL,
    git_remote_url         TEXT,
    project_id_source      TEXT NOT NULL DEFAULT 'path-hash',
    session_count          INTEGER NOT NULL DEFAULT 0,
    last_activity          TEXT,
    total_input_tokens     INTEGER NOT NULL DEFAULT 0,
    total_output_tokens    INTEGER NOT NULL DEFAULT 0,
    cache_creation_tokens  INTEGER NOT NULL DEFAULT 0,
    cache_read_tokens      INTEGER NOT NULL DEFAULT 0,
    estimated_cost_usd     REAL NOT NULL DEFAULT 0,
    created_at             TEXT NOT NULL,
    updated_at             TEXT NOT NULL
);

-- ── Sessions ───────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS sessions (
    id                       TEXT PRIMARY KEY,
    project_id               TEXT NOT NULL,
    project_name             TEXT NOT NULL,
    project_path             TEXT NOT NULL,
    git_remote_url           TEXT,
    summary                  TEXT,
    generated_title          TEXT,
    title_source             TEXT,
    session_character        TEXT,
    started_at               TEXT NOT NULL,
    ended_at                 TEXT NOT NULL,
    message_count            INTEGER NOT NULL DEFAULT 0,
    user_message_count       INTEGER NOT NULL DEFAULT 0,
    assistant_message_count  INTEGER NOT NULL DEFAULT 0,
    tool_call_count          INTEGER NOT NULL DEFAULT 0,
    git_branch               TEXT,
    tool_version             TEXT,
    source_tool              TEXT NOT NULL,
    device_id                TEXT NOT NULL,
    device_hostname          TEXT NOT NULL,
    device_platform          TEXT NOT NULL,
    total_input_tokens       INTEGER,
    total_output_tokens      INTEGER,
    cache_creation_tokens    INTEGER,
    cache_read_tokens        INTEGER,
    estimated_cost_usd       REAL,
    models_used_json         TEXT,
    primary_model            TEXT,
    usage_source             TEXT,
    synced_at                TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project_id, started_at DESC);
CREATE INDEX IF NOT EXISTS idx_sessions_usage   ON sessions(usage_source);

-- ── Messages ───────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS messages (
    session_id         TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    id                 TEXT NOT NULL,
    type               TEXT NOT NULL,
    content            TEXT NOT NULL DEFAULT '',
    thinking           TEXT,
    tool_calls_json    TEXT NOT NULL DEFAULT '[]',
    tool_results_json  TEXT NOT NULL DEFAULT '[]',
    usage_json         TEXT,
    timestamp          TEXT NOT NULL,
    parent_id          TEXT,
    PRIMARY KEY (session_id, id)
);

CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id, timestamp);

-- ── Global usage totals (single row) ───────────────────────────────
CREATE TABLE IF NOT EXISTS usage_stats (
    id                     TEXT PRIMARY KEY,
    total_input_tokens     INTEGER NOT NULL DEFAULT 0,
    total_output_tokens    INTEGER NOT NULL DEFAULT 0,
    cache_creation_tokens  INTEGER NOT NULL DEFAULT 0,
    cache_read_tokens      INTEGER NOT NULL DEFAULT 0,
    estimated_cost_usd     REAL NOT NULL DEFAULT 0,
    sessions_with_usage    INTEGER NOT NULL DEFAULT 0,
    last_updated           TEXT NOT NULL
);
"""


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.debug(f"Schema is up to date (version {current_version})")
        return

    logger.info(f"Running migrations: {current_version} → {SCHEMA_VERSION}")
    await db.executescript(_TABLES)
    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info(f"Migrations complete, schema version {SCHEMA_VERSION}")
