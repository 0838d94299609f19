"""Per-file review status tracking and session activity listing."""

from __future__ import annotations

import logging
from typing import Any

from local_review import store
from local_review.activity import list_activities as _list_activities
from local_review.activity import record_activity
from local_review.db import AppContext, transaction
from local_review.errors import NotFoundError, ValidationError
from local_review.models import UpdateFileStatusRequest
from local_review.state_machine import file_status_action

logger = logging.getLogger("local_review")

DEFAULT_ACTIVITY_LIMIT = 50


async def list_files(app: AppContext, session_id: str) -> list[dict[str, Any]]:
    files = await store.list_file_statuses(app.db, session_id)
    logger.info("list_files -> %s files=%s", store.short_id(session_id), len(files))
    return files


async def update_file_status(
    app: AppContext,
    session_id: str,
    file_path: str,
    request: UpdateFileStatusRequest,
) -> dict[str, Any]:
    """Set a file's review status, creating its row on first use.

    reviewed_at is stamped whenever the status becomes "reviewed". Moving
    away from "reviewed" keeps the previous reviewed_at.
    """
    if not file_path:
        raise ValidationError("file_path is required")
    status = request.status
    async with transaction(app) as db:
        if await store.get_session(db, session_id) is None:
            raise NotFoundError(f"Session not found: {session_id}")
        existing = await store.get_file_status(db, session_id, file_path)
        if existing is None:
            await store.insert_file_status(db, session_id, file_path, status)
        else:
            await store.update_file_status(db, session_id, file_path, status)
        action = file_status_action(status)
        if action is not None:
            await record_activity(
                db,
                session_id,
                action,
                target_type="file",
                target_id=file_path,
                metadata={"status": str(status)},
            )

    row = await store.get_file_status(app.db, session_id, file_path)
    logger.info(
        "update_file_status -> %s %s=%s (created=%s)",
        store.short_id(session_id),
        file_path,
        status,
        existing is None,
    )
    return row


async def list_activities(
    app: AppContext,
    session_id: str,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Newest-first activity for a session, capped at *limit*."""
    if limit is None:
        limit = app.config.activity_limit if app.config is not None else DEFAULT_ACTIVITY_LIMIT
    if limit < 1:
        raise ValidationError(f"limit must be a positive integer, got {limit}")
    activities = await _list_activities(app.db, session_id, limit)
    logger.info(
        "list_activities -> %s count=%s (limit=%s)",
        store.short_id(session_id),
        len(activities),
        limit,
    )
    return activities
