"""Line comments: creation, single-level reply threads, edits, and resolution."""

from __future__ import annotations

import logging
from typing import Any

from local_review import store
from local_review.activity import record_activity
from local_review.db import AppContext, transaction
from local_review.errors import NotFoundError, ValidationError
from local_review.models import ActivityAction, CreateCommentRequest, UpdateCommentRequest

logger = logging.getLogger("local_review")


async def list_comments(
    app: AppContext,
    session_id: str,
    file_path: str | None = None,
) -> list[dict[str, Any]]:
    comments = await store.list_comments(app.db, session_id, file_path)
    logger.info(
        "list_comments -> %s comments=%s (file=%s)",
        store.short_id(session_id),
        len(comments),
        file_path or "all",
    )
    return comments


def group_threads(comments: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Group a flat comment list into roots, each carrying its replies.

    Roots keep their input order; replies are sorted by created_at. Replies
    whose parent is absent from the list are dropped.
    """
    roots: list[dict[str, Any]] = []
    replies: dict[str, list[dict[str, Any]]] = {}
    for comment in comments:
        parent_id = comment.get("parent_id")
        if parent_id is None:
            roots.append(comment)
        else:
            replies.setdefault(parent_id, []).append(comment)
    return [
        {**root, "replies": sorted(replies.get(root["id"], []), key=lambda c: c["created_at"])}
        for root in roots
    ]


async def list_threads(
    app: AppContext,
    session_id: str,
    file_path: str | None = None,
) -> list[dict[str, Any]]:
    return group_threads(await store.list_comments(app.db, session_id, file_path))


async def create_comment(
    app: AppContext,
    session_id: str,
    request: CreateCommentRequest,
) -> dict[str, Any]:
    """Create a comment (or a reply) and log ``comment_added`` in one transaction.

    Replies must point at a root comment of the same session, on the same
    file and side; replying to a reply is rejected so threads stay one level
    deep.
    """
    comment_id = store.new_id()
    async with transaction(app) as db:
        if await store.get_session(db, session_id) is None:
            raise NotFoundError(f"Session not found: {session_id}")
        if request.parent_id is not None:
            parent = await store.get_comment(db, request.parent_id)
            if parent is None or parent["session_id"] != session_id:
                raise NotFoundError(f"Parent comment not found: {request.parent_id}")
            if parent["parent_id"] is not None:
                raise ValidationError(
                    f"Cannot reply to a reply: {request.parent_id} already has a parent"
                )
            if parent["file_path"] != request.file_path or parent["side"] != request.side:
                raise ValidationError(
                    f"Reply must be on the same file and side as its parent "
                    f"({parent['file_path']}, {parent['side']})"
                )
        await store.insert_comment(
            db,
            comment_id,
            session_id,
            file_path=request.file_path,
            side=str(request.side),
            line_number=request.line_number,
            content=request.content,
            end_line_number=request.end_line_number,
            parent_id=request.parent_id,
        )
        await record_activity(
            db,
            session_id,
            ActivityAction.COMMENT_ADDED,
            target_type="comment",
            target_id=comment_id,
            metadata={"file_path": request.file_path, "line_number": request.line_number},
        )

    comment = await store.get_comment(app.db, comment_id)
    logger.info(
        "create_comment -> %s on %s:%s (reply=%s)",
        store.short_id(comment_id),
        request.file_path,
        request.line_number,
        request.parent_id is not None,
    )
    return comment


async def update_comment(
    app: AppContext,
    comment_id: str,
    request: UpdateCommentRequest,
) -> dict[str, Any]:
    """Edit content and/or set resolved; a resolved change logs ``comment_resolved``."""
    async with transaction(app) as db:
        existing = await store.get_comment(db, comment_id)
        if existing is None:
            raise NotFoundError(f"Comment not found: {comment_id}")
        await store.update_comment(
            db, comment_id, content=request.content, resolved=request.resolved
        )
        if request.resolved is not None:
            await record_activity(
                db,
                existing["session_id"],
                ActivityAction.COMMENT_RESOLVED,
                target_type="comment",
                target_id=comment_id,
                metadata={"resolved": request.resolved},
            )

    comment = await store.get_comment(app.db, comment_id)
    logger.info(
        "update_comment -> %s (content=%s, resolved=%s)",
        store.short_id(comment_id),
        request.content is not None,
        request.resolved,
    )
    return comment


async def delete_comment(app: AppContext, comment_id: str) -> None:
    """Delete a comment and its replies. Deleting a missing id is not an error."""
    async with transaction(app) as db:
        await store.delete_comment(db, comment_id)
    logger.info("delete_comment -> %s", store.short_id(comment_id))


async def toggle_resolve(app: AppContext, comment_id: str) -> dict[str, Any]:
    """Flip a comment's resolved flag (read-modify-write inside one transaction)."""
    async with transaction(app) as db:
        existing = await store.get_comment(db, comment_id)
        if existing is None:
            raise NotFoundError(f"Comment not found: {comment_id}")
        resolved = not existing["resolved"]
        await store.update_comment(db, comment_id, resolved=resolved)
        await record_activity(
            db,
            existing["session_id"],
            ActivityAction.COMMENT_RESOLVED,
            target_type="comment",
            target_id=comment_id,
            metadata={"resolved": resolved},
        )

    comment = await store.get_comment(app.db, comment_id)
    logger.info("toggle_resolve -> %s resolved=%s", store.short_id(comment_id), resolved)
    return comment
