"""Tests for schema constraints, cascades, transactions, and row-level store queries."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import aiosqlite
import pytest

from local_review import store
from local_review.db import AppContext, open_database, transaction
from local_review.errors import NotFoundError, StoreError
from local_review.models import FileStatus


async def _insert_session(db: aiosqlite.Connection, session_id: str = "s1") -> str:
    await store.insert_session(
        db,
        session_id,
        repository_path="/repo",
        base_branch="main",
        head_branch="feature",
        base_commit="1" * 40,
        head_commit="2" * 40,
        title="Review: main...feature",
        description=None,
        status="active",
    )
    return session_id


async def _insert_comment(
    db: aiosqlite.Connection,
    comment_id: str,
    session_id: str = "s1",
    file_path: str = "src/app.py",
    line_number: int = 1,
    parent_id: str | None = None,
) -> str:
    await store.insert_comment(
        db,
        comment_id,
        session_id,
        file_path=file_path,
        side="new",
        line_number=line_number,
        content=f"comment {comment_id}",
        parent_id=parent_id,
    )
    return comment_id


async def _count(db: aiosqlite.Connection, table: str) -> int:
    cursor = await db.execute(f"SELECT COUNT(*) FROM {table}")
    (count,) = await cursor.fetchone()
    return count


# ---- schema ----


async def test_timestamps_are_iso_utc(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    session = await store.get_session(db, "s1")
    assert session["created_at"].endswith("Z")
    assert "T" in session["created_at"]
    assert session["updated_at"] == session["created_at"]


async def test_session_status_check(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    with pytest.raises(sqlite3.IntegrityError):
        await db.execute("UPDATE review_sessions SET status = 'merged' WHERE id = 's1'")


async def test_file_status_unique_per_session(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    await store.insert_pending_files(db, "s1", ["a.py"])
    with pytest.raises(sqlite3.IntegrityError):
        await store.insert_file_status(db, "s1", "a.py", FileStatus.REVIEWED)


async def test_resolved_requires_resolved_at(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    await _insert_comment(db, "c1")
    with pytest.raises(sqlite3.IntegrityError):
        await db.execute("UPDATE line_comments SET resolved = 1 WHERE id = 'c1'")


async def test_comment_requires_existing_session(db: aiosqlite.Connection) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        await _insert_comment(db, "c1", session_id="missing")


async def test_session_delete_cascades(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    await store.insert_pending_files(db, "s1", ["a.py", "b.py"])
    await _insert_comment(db, "c1")
    await _insert_comment(db, "c2", parent_id="c1")
    await db.execute(
        "INSERT INTO activity_logs (id, session_id, action) VALUES ('a1', 's1', 'session_created')"
    )

    await store.delete_session(db, "s1")

    for table in ("review_sessions", "file_review_status", "line_comments", "activity_logs"):
        assert await _count(db, table) == 0


async def test_root_comment_delete_cascades_to_replies(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    await _insert_comment(db, "root")
    await _insert_comment(db, "reply", parent_id="root")
    await _insert_comment(db, "other", line_number=9)

    await store.delete_comment(db, "root")

    remaining = [c["id"] for c in await store.list_comments(db, "s1")]
    assert remaining == ["other"]


async def test_open_database_on_disk_uses_wal(tmp_path: Path) -> None:
    conn = await open_database(tmp_path / "review.db")
    try:
        cursor = await conn.execute("PRAGMA journal_mode")
        (mode,) = await cursor.fetchone()
        assert mode.lower() == "wal"
        cursor = await conn.execute("PRAGMA foreign_keys")
        (enabled,) = await cursor.fetchone()
        assert enabled == 1
    finally:
        await conn.close()


async def test_schema_is_idempotent(tmp_path: Path) -> None:
    path = tmp_path / "review.db"
    first = await open_database(path)
    await _insert_session(first)
    await first.close()

    second = await open_database(path)
    try:
        assert await store.get_session(second, "s1") is not None
    finally:
        await second.close()


# ---- transactions ----


async def test_transaction_commits(db: aiosqlite.Connection) -> None:
    app = AppContext(db=db)
    async with transaction(app) as conn:
        await _insert_session(conn)
    assert await store.get_session(db, "s1") is not None


async def test_transaction_rolls_back_on_review_error(db: aiosqlite.Connection) -> None:
    app = AppContext(db=db)
    with pytest.raises(NotFoundError):
        async with transaction(app) as conn:
            await _insert_session(conn)
            raise NotFoundError("stop")
    assert await store.get_session(db, "s1") is None


async def test_transaction_wraps_sqlite_errors(db: aiosqlite.Connection) -> None:
    app = AppContext(db=db)
    with pytest.raises(StoreError, match="database error"):
        async with transaction(app) as conn:
            await _insert_session(conn)
            await _insert_comment(conn, "c1", session_id="missing")
    assert await store.get_session(db, "s1") is None
    assert not app.write_lock.locked()


# ---- store queries ----


async def test_update_session_refreshes_updated_at(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    await db.execute(
        "UPDATE review_sessions SET updated_at = '2000-01-01T00:00:00.000Z' WHERE id = 's1'"
    )
    await store.update_session(db, "s1", {"title": "Renamed"})
    session = await store.get_session(db, "s1")
    assert session["title"] == "Renamed"
    assert session["updated_at"] > "2000-01-01T00:00:00.000Z"


async def test_update_session_rejects_frozen_columns(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    with pytest.raises(ValueError, match="Not writable"):
        await store.update_session(db, "s1", {"base_commit": "f" * 40})


async def test_list_sessions_newest_first(db: aiosqlite.Connection) -> None:
    for session_id in ("first", "second", "third"):
        await _insert_session(db, session_id)
    assert [s["id"] for s in await store.list_sessions(db)] == ["third", "second", "first"]


async def test_file_and_comment_stats(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    await store.insert_pending_files(db, "s1", ["a.py", "b.py", "c.py"])
    await store.update_file_status(db, "s1", "b.py", FileStatus.REVIEWED)
    await _insert_comment(db, "c1")
    await _insert_comment(db, "c2")
    await store.update_comment(db, "c2", resolved=True)

    assert await store.file_stats(db, "s1") == (3, 1)
    assert await store.comment_stats(db, "s1") == (2, 1)


async def test_stats_for_empty_session(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    assert await store.file_stats(db, "s1") == (0, 0)
    assert await store.comment_stats(db, "s1") == (0, 0)


async def test_list_comments_ordering(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    await _insert_comment(db, "b-line5", file_path="b.py", line_number=5)
    await _insert_comment(db, "a-line9", file_path="a.py", line_number=9)
    await _insert_comment(db, "a-line2-first", file_path="a.py", line_number=2)
    await _insert_comment(db, "a-line2-second", file_path="a.py", line_number=2)

    ordered = [c["id"] for c in await store.list_comments(db, "s1")]
    assert ordered == ["a-line2-first", "a-line2-second", "a-line9", "b-line5"]

    scoped = [c["id"] for c in await store.list_comments(db, "s1", "a.py")]
    assert scoped == ["a-line2-first", "a-line2-second", "a-line9"]


async def test_update_comment_resolution_fields(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    await _insert_comment(db, "c1")

    await store.update_comment(db, "c1", resolved=True)
    comment = await store.get_comment(db, "c1")
    assert comment["resolved"] is True
    assert comment["resolved_at"] is not None

    await store.update_comment(db, "c1", resolved=False)
    comment = await store.get_comment(db, "c1")
    assert comment["resolved"] is False
    assert comment["resolved_at"] is None


async def test_update_comment_content_only(db: aiosqlite.Connection) -> None:
    await _insert_session(db)
    await _insert_comment(db, "c1")
    await store.update_comment(db, "c1", resolved=True)
    await store.update_comment(db, "c1", content="edited")
    comment = await store.get_comment(db, "c1")
    assert comment["content"] == "edited"
    assert comment["resolved"] is True


def test_short_id() -> None:
    assert store.short_id("0123456789abcdef") == "01234567"
    assert store.short_id(None) == "unknown"
