"""Database connection, schema management, and lifespan for the local review server."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from pathlib import Path

import aiosqlite
from fastmcp import FastMCP

from local_review.config import ServerConfig, load_config
from local_review.errors import StoreError
from local_review.git_gateway import GatewayRegistry, GitGateway, discover_repo_root

logger = logging.getLogger("local_review")

# ISO 8601 UTC with milliseconds, e.g. 2026-10-19T08:15:02.113Z
NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

SCHEMA_SQL = f"""\
CREATE TABLE IF NOT EXISTS review_sessions (
    id              TEXT PRIMARY KEY,
    repository_path TEXT NOT NULL,
    base_branch     TEXT NOT NULL,
    head_branch     TEXT NOT NULL,
    base_commit     TEXT NOT NULL,
    head_commit     TEXT NOT NULL,
    title           TEXT,
    description     TEXT,
    status          TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('active', 'completed', 'archived')),
    created_at      TEXT NOT NULL DEFAULT ({NOW_SQL}),
    updated_at      TEXT NOT NULL DEFAULT ({NOW_SQL})
);

CREATE TABLE IF NOT EXISTS file_review_status (
    id          TEXT PRIMARY KEY,
    session_id  TEXT NOT NULL REFERENCES review_sessions(id) ON DELETE CASCADE,
    file_path   TEXT NOT NULL,
    status      TEXT NOT NULL DEFAULT 'pending'
                CHECK(status IN ('pending', 'viewed', 'reviewed')),
    reviewed_at TEXT,
    created_at  TEXT NOT NULL DEFAULT ({NOW_SQL}),
    UNIQUE(session_id, file_path)
);
CREATE INDEX IF NOT EXISTS idx_file_review_session
    ON file_review_status(session_id, file_path);

CREATE TABLE IF NOT EXISTS line_comments (
    id              TEXT PRIMARY KEY,
    session_id      TEXT NOT NULL REFERENCES review_sessions(id) ON DELETE CASCADE,
    file_path       TEXT NOT NULL,
    side            TEXT NOT NULL CHECK(side IN ('old', 'new')),
    line_number     INTEGER NOT NULL,
    end_line_number INTEGER,
    content         TEXT NOT NULL,
    resolved        INTEGER NOT NULL DEFAULT 0,
    resolved_at     TEXT,
    parent_id       TEXT REFERENCES line_comments(id) ON DELETE CASCADE,
    created_at      TEXT NOT NULL DEFAULT ({NOW_SQL}),
    updated_at      TEXT NOT NULL DEFAULT ({NOW_SQL}),
    CHECK((resolved = 0 AND resolved_at IS NULL)
          OR (resolved = 1 AND resolved_at IS NOT NULL))
);
CREATE INDEX IF NOT EXISTS idx_line_comments_file ON line_comments(session_id, file_path);
CREATE INDEX IF NOT EXISTS idx_line_comments_parent ON line_comments(parent_id);

CREATE TABLE IF NOT EXISTS activity_logs (
    id          TEXT PRIMARY KEY,
    session_id  TEXT NOT NULL REFERENCES review_sessions(id) ON DELETE CASCADE,
    action      TEXT NOT NULL
                CHECK(action IN ('session_created', 'file_reviewed', 'comment_added',
                                 'comment_resolved', 'status_changed', 'session_completed')),
    target_type TEXT,
    target_id   TEXT,
    metadata    TEXT,
    created_at  TEXT NOT NULL DEFAULT ({NOW_SQL})
);
CREATE INDEX IF NOT EXISTS idx_activity_session ON activity_logs(session_id, created_at);
"""


@dataclass
class AppContext:
    """Application context holding the database connection and git gateways."""

    db: aiosqlite.Connection
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    repo_root: str | None = None
    gateways: GatewayRegistry = field(default_factory=GatewayRegistry)
    config: ServerConfig | None = None

    def gateway_for(self, repo_path: str | None = None) -> GitGateway:
        """Gateway for *repo_path*, or for the configured repository when omitted."""
        path = repo_path or self.repo_root
        if not path:
            path = str(Path.cwd())
        return self.gateways.get(path)


async def ensure_schema(db: aiosqlite.Connection) -> None:
    """Create tables and indexes if they don't exist."""
    await db.executescript(SCHEMA_SQL)


async def open_database(path: str | Path) -> aiosqlite.Connection:
    """Open a connection configured for manual transactions and cascading deletes."""
    db = await aiosqlite.connect(
        str(path),
        isolation_level=None,  # CRITICAL: enables manual BEGIN IMMEDIATE
    )
    db.row_factory = aiosqlite.Row
    if str(path) != ":memory:":
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("PRAGMA busy_timeout=5000")
        await db.execute("PRAGMA synchronous=NORMAL")
    await db.execute("PRAGMA foreign_keys=ON")
    await ensure_schema(db)
    return db


async def _rollback_quietly(db: aiosqlite.Connection) -> None:
    with suppress(Exception):
        await db.execute("ROLLBACK")


@asynccontextmanager
async def transaction(app: AppContext) -> AsyncIterator[aiosqlite.Connection]:
    """Run one logical write as a single BEGIN IMMEDIATE...COMMIT unit.

    Any exception rolls the whole unit back. sqlite failures are re-raised
    as StoreError; other exceptions propagate unchanged.
    """
    async with app.write_lock:
        try:
            await app.db.execute("BEGIN IMMEDIATE")
            yield app.db
            await app.db.execute("COMMIT")
        except sqlite3.Error as exc:
            await _rollback_quietly(app.db)
            logger.exception("database error: %s", exc)
            raise StoreError(f"database error: {exc}") from exc
        except BaseException:
            await _rollback_quietly(app.db)
            raise


@asynccontextmanager
async def review_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Open the review database at server startup, close it on shutdown."""
    del server
    from local_review import routes  # local import avoids cycle

    repo_root = await discover_repo_root()
    config = load_config(repo_root=repo_root)
    db_path = config.resolved_db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await open_database(db_path)

    ctx = AppContext(db=db, repo_root=config.repo_path, config=config)
    routes.set_app_context(ctx)
    logger.info("Review server ready - db=%s, repo=%s", db_path, config.repo_path)
    try:
        yield ctx
    finally:
        routes.set_app_context(None)
        await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        await db.close()
