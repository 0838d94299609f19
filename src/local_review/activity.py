"""Activity log recording and retrieval for review sessions."""

from __future__ import annotations

import json
import uuid
from typing import Any

import aiosqlite

from local_review.db import NOW_SQL
from local_review.models import ActivityAction


async def record_activity(
    db: aiosqlite.Connection,
    session_id: str,
    action: ActivityAction | str,
    target_type: str | None = None,
    target_id: str | None = None,
    metadata: dict | None = None,
) -> str:
    """Record an activity entry within the current transaction.

    Must be called INSIDE an existing BEGIN IMMEDIATE...COMMIT block.
    The caller is responsible for transaction management.
    """
    activity_id = str(uuid.uuid4())
    metadata_json = json.dumps(metadata) if metadata is not None else None
    await db.execute(
        f"""INSERT INTO activity_logs
           (id, session_id, action, target_type, target_id, metadata, created_at)
           VALUES (?, ?, ?, ?, ?, ?, {NOW_SQL})""",
        (activity_id, session_id, str(ActivityAction(action)), target_type, target_id, metadata_json),
    )
    return activity_id


def _activity_dict(row: aiosqlite.Row) -> dict[str, Any]:
    parsed_metadata = None
    if row["metadata"] is not None:
        try:
            parsed_metadata = json.loads(row["metadata"])
        except (json.JSONDecodeError, TypeError):
            parsed_metadata = row["metadata"]
    return {
        "id": row["id"],
        "session_id": row["session_id"],
        "action": row["action"],
        "target_type": row["target_type"],
        "target_id": row["target_id"],
        "metadata": parsed_metadata,
        "created_at": row["created_at"],
    }


async def list_activities(
    db: aiosqlite.Connection,
    session_id: str,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Newest-first activity entries for a session, capped at *limit*."""
    cursor = await db.execute(
        """SELECT id, session_id, action, target_type, target_id, metadata, created_at
           FROM activity_logs
           WHERE session_id = ?
           ORDER BY created_at DESC, rowid DESC
           LIMIT ?""",
        (session_id, limit),
    )
    return [_activity_dict(row) for row in await cursor.fetchall()]
