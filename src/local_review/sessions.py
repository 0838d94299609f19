"""Review session lifecycle: creation, merged views, status updates, and deletion."""

from __future__ import annotations

import logging
from typing import Any

from local_review import store
from local_review.activity import record_activity
from local_review.db import AppContext, transaction
from local_review.errors import NotFoundError
from local_review.models import (
    ActivityAction,
    CreateSessionRequest,
    FileStatus,
    SessionStatus,
    UpdateSessionRequest,
)
from local_review.state_machine import can_complete, session_status_action

logger = logging.getLogger("local_review")


def default_title(base_branch: str, head_branch: str) -> str:
    return f"Review: {base_branch}...{head_branch}"


def _with_stats(
    session: dict[str, Any],
    files_total: int,
    files_reviewed: int,
    comments_count: int,
    unresolved_comments_count: int,
) -> dict[str, Any]:
    return {
        **session,
        "files_total": files_total,
        "files_reviewed": files_reviewed,
        "comments_count": comments_count,
        "unresolved_comments_count": unresolved_comments_count,
        "can_complete": can_complete(files_total, files_reviewed),
    }


async def _require_session(app: AppContext, session_id: str) -> dict[str, Any]:
    session = await store.get_session(app.db, session_id)
    if session is None:
        raise NotFoundError(f"Session not found: {session_id}")
    return session


async def create_session(app: AppContext, request: CreateSessionRequest) -> dict[str, Any]:
    """Create a session comparing ``base_branch`` to the repository's current branch.

    Both commits are resolved here, once; the session keeps diffing against
    them even after the branches move. The diff file list is snapshotted into
    one pending status row per file. Git is queried before the transaction
    opens, so an invalid base branch leaves nothing behind.
    """
    gateway = app.gateway_for(request.repository_path)
    head_branch = await gateway.current_branch()
    base_commit = await gateway.resolve_ref(request.base_branch)
    head_commit = await gateway.resolve_ref(head_branch)
    files = await gateway.diff_summary(base_commit, head_commit)

    session_id = store.new_id()
    title = request.title or default_title(request.base_branch, head_branch)
    async with transaction(app) as db:
        await store.insert_session(
            db,
            session_id,
            repository_path=gateway.repo_path,
            base_branch=request.base_branch,
            head_branch=head_branch,
            base_commit=base_commit,
            head_commit=head_commit,
            title=title,
            description=request.description,
            status=SessionStatus.ACTIVE,
        )
        await store.insert_pending_files(db, session_id, (f.path for f in files))
        await record_activity(
            db,
            session_id,
            ActivityAction.SESSION_CREATED,
            target_type="session",
            target_id=session_id,
            metadata={"files_count": len(files)},
        )

    session = await _require_session(app, session_id)
    logger.info(
        "create_session -> %s files=%s (%s...%s)",
        store.short_id(session_id),
        len(files),
        request.base_branch,
        head_branch,
    )
    return _with_stats(session, len(files), 0, 0, 0)


async def get_session(app: AppContext, session_id: str) -> dict[str, Any]:
    """Session merged with a fresh diff of its frozen commits.

    The diff is the source of truth for the file list: files without a
    status row report "pending", and status rows for files no longer in the
    diff are ignored.
    """
    session = await _require_session(app, session_id)
    statuses = {
        row["file_path"]: row for row in await store.list_file_statuses(app.db, session_id)
    }
    gateway = app.gateway_for(session["repository_path"])
    diff_files = await gateway.diff_summary(session["base_commit"], session["head_commit"])

    files: list[dict[str, Any]] = []
    for diff_file in diff_files:
        status_row = statuses.get(diff_file.path)
        files.append({
            **diff_file.model_dump(),
            "review_status": status_row["status"] if status_row else str(FileStatus.PENDING),
            "reviewed_at": status_row["reviewed_at"] if status_row else None,
        })
    files_reviewed = sum(1 for f in files if f["review_status"] == FileStatus.REVIEWED)
    comments_count, unresolved = await store.comment_stats(app.db, session_id)

    logger.info(
        "get_session -> %s files=%s reviewed=%s",
        store.short_id(session_id),
        len(files),
        files_reviewed,
    )
    result = _with_stats(session, len(files), files_reviewed, comments_count, unresolved)
    result["files"] = files
    return result


async def list_sessions(app: AppContext) -> list[dict[str, Any]]:
    """All sessions, newest first, each with stored file and comment counts."""
    sessions = await store.list_sessions(app.db)
    results: list[dict[str, Any]] = []
    for session in sessions:
        files_total, files_reviewed = await store.file_stats(app.db, session["id"])
        comments_count, unresolved = await store.comment_stats(app.db, session["id"])
        results.append(
            _with_stats(session, files_total, files_reviewed, comments_count, unresolved)
        )
    logger.info("list_sessions -> %s sessions", len(results))
    return results


async def update_session(
    app: AppContext,
    session_id: str,
    request: UpdateSessionRequest,
) -> dict[str, Any]:
    """Partially update title, description, and status.

    Setting a status logs ``session_completed`` for "completed" and
    ``status_changed`` otherwise, even when the status is unchanged.
    """
    changes = request.model_dump(exclude_unset=True)
    new_status = changes.pop("status", None)
    if new_status is not None:
        changes["status"] = str(new_status)

    async with transaction(app) as db:
        if await store.get_session(db, session_id) is None:
            raise NotFoundError(f"Session not found: {session_id}")
        await store.update_session(db, session_id, changes)
        if new_status is not None:
            await record_activity(
                db,
                session_id,
                session_status_action(SessionStatus(new_status)),
                target_type="session",
                target_id=session_id,
                metadata={"new_status": str(new_status)},
            )

    session = await _require_session(app, session_id)
    logger.info(
        "update_session -> %s fields=%s",
        store.short_id(session_id),
        sorted(changes) or "none",
    )
    return session


async def delete_session(app: AppContext, session_id: str) -> None:
    """Delete a session and, by cascade, its files, comments, and activity."""
    async with transaction(app) as db:
        await store.delete_session(db, session_id)
    logger.info("delete_session -> %s", store.short_id(session_id))
