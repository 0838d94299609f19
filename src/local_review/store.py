"""Row-level persistence for sessions, file review status, and line comments.

No business rules live here. Writes must run inside a transaction opened by
the caller; reads observe those writes immediately (no caching layer).
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Any

import aiosqlite

from local_review.db import NOW_SQL
from local_review.models import FileStatus

SESSION_COLUMNS = (
    "id, repository_path, base_branch, head_branch, base_commit, head_commit, "
    "title, description, status, created_at, updated_at"
)
FILE_STATUS_COLUMNS = "id, session_id, file_path, status, reviewed_at, created_at"
COMMENT_COLUMNS = (
    "id, session_id, file_path, side, line_number, end_line_number, content, "
    "resolved, resolved_at, parent_id, created_at, updated_at"
)


def new_id() -> str:
    return str(uuid.uuid4())


def short_id(value: str | None) -> str:
    """Render compact ids in logs."""
    if not value:
        return "unknown"
    return value[:8]


def _comment_dict(row: aiosqlite.Row) -> dict[str, Any]:
    comment = dict(row)
    comment["resolved"] = bool(comment["resolved"])
    return comment


# ---- review_sessions ----


async def insert_session(
    db: aiosqlite.Connection,
    session_id: str,
    repository_path: str,
    base_branch: str,
    head_branch: str,
    base_commit: str,
    head_commit: str,
    title: str | None,
    description: str | None,
    status: str,
) -> None:
    await db.execute(
        f"""INSERT INTO review_sessions (id, repository_path, base_branch, head_branch,
                                         base_commit, head_commit, title, description,
                                         status, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, {NOW_SQL}, {NOW_SQL})""",
        (
            session_id,
            repository_path,
            base_branch,
            head_branch,
            base_commit,
            head_commit,
            title,
            description,
            status,
        ),
    )


async def get_session(db: aiosqlite.Connection, session_id: str) -> dict[str, Any] | None:
    cursor = await db.execute(
        f"SELECT {SESSION_COLUMNS} FROM review_sessions WHERE id = ?", (session_id,)
    )
    row = await cursor.fetchone()
    return dict(row) if row is not None else None


async def list_sessions(db: aiosqlite.Connection) -> list[dict[str, Any]]:
    cursor = await db.execute(
        f"""SELECT {SESSION_COLUMNS} FROM review_sessions
            ORDER BY created_at DESC, rowid DESC"""
    )
    return [dict(row) for row in await cursor.fetchall()]


async def update_session(
    db: aiosqlite.Connection,
    session_id: str,
    changes: dict[str, Any],
) -> None:
    """Apply a partial update; updated_at is always refreshed.

    Only title, description, and status are writable. Commits and branches
    are frozen at creation.
    """
    writable = {"title", "description", "status"}
    unknown = set(changes) - writable
    if unknown:
        raise ValueError(f"Not writable on review_sessions: {sorted(unknown)}")
    assignments = [f"{column} = ?" for column in changes]
    assignments.append(f"updated_at = {NOW_SQL}")
    await db.execute(
        f"UPDATE review_sessions SET {', '.join(assignments)} WHERE id = ?",
        (*changes.values(), session_id),
    )


async def delete_session(db: aiosqlite.Connection, session_id: str) -> None:
    await db.execute("DELETE FROM review_sessions WHERE id = ?", (session_id,))


async def file_stats(db: aiosqlite.Connection, session_id: str) -> tuple[int, int]:
    """Return (total, reviewed) file-status row counts for a session."""
    cursor = await db.execute(
        """SELECT COUNT(*) AS total,
                  COALESCE(SUM(CASE WHEN status = 'reviewed' THEN 1 ELSE 0 END), 0) AS reviewed
           FROM file_review_status
           WHERE session_id = ?""",
        (session_id,),
    )
    row = await cursor.fetchone()
    return int(row["total"]), int(row["reviewed"])


async def comment_stats(db: aiosqlite.Connection, session_id: str) -> tuple[int, int]:
    """Return (total, unresolved) comment counts for a session."""
    cursor = await db.execute(
        """SELECT COUNT(*) AS total,
                  COALESCE(SUM(CASE WHEN resolved = 0 THEN 1 ELSE 0 END), 0) AS unresolved
           FROM line_comments
           WHERE session_id = ?""",
        (session_id,),
    )
    row = await cursor.fetchone()
    return int(row["total"]), int(row["unresolved"])


# ---- file_review_status ----


async def insert_pending_files(
    db: aiosqlite.Connection,
    session_id: str,
    file_paths: Iterable[str],
) -> None:
    await db.executemany(
        f"""INSERT INTO file_review_status (id, session_id, file_path, status, created_at)
            VALUES (?, ?, ?, 'pending', {NOW_SQL})""",
        [(new_id(), session_id, path) for path in file_paths],
    )


async def get_file_status(
    db: aiosqlite.Connection,
    session_id: str,
    file_path: str,
) -> dict[str, Any] | None:
    cursor = await db.execute(
        f"""SELECT {FILE_STATUS_COLUMNS} FROM file_review_status
            WHERE session_id = ? AND file_path = ?""",
        (session_id, file_path),
    )
    row = await cursor.fetchone()
    return dict(row) if row is not None else None


async def list_file_statuses(db: aiosqlite.Connection, session_id: str) -> list[dict[str, Any]]:
    cursor = await db.execute(
        f"""SELECT {FILE_STATUS_COLUMNS} FROM file_review_status
            WHERE session_id = ?
            ORDER BY file_path ASC""",
        (session_id,),
    )
    return [dict(row) for row in await cursor.fetchall()]


async def insert_file_status(
    db: aiosqlite.Connection,
    session_id: str,
    file_path: str,
    status: FileStatus,
) -> None:
    """Insert a status row; reviewed_at is set iff status is reviewed."""
    reviewed_at_sql = NOW_SQL if status == FileStatus.REVIEWED else "NULL"
    await db.execute(
        f"""INSERT INTO file_review_status
               (id, session_id, file_path, status, reviewed_at, created_at)
            VALUES (?, ?, ?, ?, {reviewed_at_sql}, {NOW_SQL})""",
        (new_id(), session_id, file_path, str(status)),
    )


async def update_file_status(
    db: aiosqlite.Connection,
    session_id: str,
    file_path: str,
    status: FileStatus,
) -> None:
    """Update a status row.

    reviewed_at is stamped when status becomes reviewed and otherwise left
    at its previous value.
    """
    if status == FileStatus.REVIEWED:
        sql = f"UPDATE file_review_status SET status = ?, reviewed_at = {NOW_SQL}"
    else:
        sql = "UPDATE file_review_status SET status = ?"
    await db.execute(
        f"{sql} WHERE session_id = ? AND file_path = ?",
        (str(status), session_id, file_path),
    )


# ---- line_comments ----


async def insert_comment(
    db: aiosqlite.Connection,
    comment_id: str,
    session_id: str,
    file_path: str,
    side: str,
    line_number: int,
    content: str,
    end_line_number: int | None = None,
    parent_id: str | None = None,
) -> None:
    await db.execute(
        f"""INSERT INTO line_comments (id, session_id, file_path, side, line_number,
                                       end_line_number, content, resolved, resolved_at,
                                       parent_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, 0, NULL, ?, {NOW_SQL}, {NOW_SQL})""",
        (
            comment_id,
            session_id,
            file_path,
            side,
            line_number,
            end_line_number,
            content,
            parent_id,
        ),
    )


async def get_comment(db: aiosqlite.Connection, comment_id: str) -> dict[str, Any] | None:
    cursor = await db.execute(
        f"SELECT {COMMENT_COLUMNS} FROM line_comments WHERE id = ?", (comment_id,)
    )
    row = await cursor.fetchone()
    return _comment_dict(row) if row is not None else None


async def list_comments(
    db: aiosqlite.Connection,
    session_id: str,
    file_path: str | None = None,
) -> list[dict[str, Any]]:
    """Comments ordered by (file_path, line_number, created_at), or by
    (line_number, created_at) when scoped to one file."""
    if file_path is not None:
        cursor = await db.execute(
            f"""SELECT {COMMENT_COLUMNS} FROM line_comments
                WHERE session_id = ? AND file_path = ?
                ORDER BY line_number ASC, created_at ASC, rowid ASC""",
            (session_id, file_path),
        )
    else:
        cursor = await db.execute(
            f"""SELECT {COMMENT_COLUMNS} FROM line_comments
                WHERE session_id = ?
                ORDER BY file_path ASC, line_number ASC, created_at ASC, rowid ASC""",
            (session_id,),
        )
    return [_comment_dict(row) for row in await cursor.fetchall()]


async def update_comment(
    db: aiosqlite.Connection,
    comment_id: str,
    content: str | None = None,
    resolved: bool | None = None,
) -> None:
    """Partial update; resolved_at is set iff resolved. updated_at always refreshes."""
    assignments: list[str] = []
    params: list[Any] = []
    if content is not None:
        assignments.append("content = ?")
        params.append(content)
    if resolved is not None:
        assignments.append("resolved = ?")
        params.append(1 if resolved else 0)
        assignments.append(f"resolved_at = {NOW_SQL}" if resolved else "resolved_at = NULL")
    assignments.append(f"updated_at = {NOW_SQL}")
    await db.execute(
        f"UPDATE line_comments SET {', '.join(assignments)} WHERE id = ?",
        (*params, comment_id),
    )


async def delete_comment(db: aiosqlite.Connection, comment_id: str) -> None:
    await db.execute("DELETE FROM line_comments WHERE id = ?", (comment_id,))
