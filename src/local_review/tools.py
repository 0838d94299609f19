"""MCP tool definitions for the local review server.

Tools never raise for expected failures: ReviewError subclasses come back
as ``{"error": message, "kind": kind}``.
"""

from __future__ import annotations

import logging

from fastmcp import Context

from local_review import comments, files, sessions
from local_review.db import AppContext
from local_review.errors import ReviewError
from local_review.models import (
    CreateCommentRequest,
    CreateSessionRequest,
    UpdateCommentRequest,
    UpdateFileStatusRequest,
    UpdateSessionRequest,
    parse_request,
)
from local_review.server import caller_tag, mcp

logger = logging.getLogger("local_review")


def mcp_tool(*args, **kwargs):
    """FastMCP tool decorator with legacy `.fn` compatibility for tests/internal calls."""
    raw_tool = mcp.tool

    # Bare decorator usage: @mcp_tool
    if args and callable(args[0]) and len(args) == 1 and not kwargs:
        fn = args[0]
        registered = raw_tool(fn)
        if not hasattr(registered, "fn"):
            registered.fn = registered
        return registered

    decorator = raw_tool(*args, **kwargs)

    def _decorate(fn):
        registered = decorator(fn)
        if not hasattr(registered, "fn"):
            registered.fn = registered
        return registered

    return _decorate


def _app_ctx(ctx: Context) -> AppContext:
    """Resolve the AppContext from a FastMCP Context, across versions."""
    if ctx is None:
        raise RuntimeError("Missing MCP context")
    if hasattr(ctx, "lifespan_context"):
        return ctx.lifespan_context
    rc = getattr(ctx, "request_context", None)
    if rc is not None and hasattr(rc, "lifespan_context"):
        return rc.lifespan_context
    fm = getattr(ctx, "fastmcp", None)
    if fm is not None and hasattr(fm, "_lifespan_result"):
        return fm._lifespan_result
    raise RuntimeError("Unable to resolve review server lifespan context")


def _error(tool_name: str, exc: ReviewError) -> dict:
    logger.info("%s -> %s: %s", tool_name, exc.kind, exc.message)
    return {"error": exc.message, "kind": exc.kind}


def _provided(**fields: object) -> dict:
    """Drop parameters the caller left unset (None)."""
    return {key: value for key, value in fields.items() if value is not None}


# ---- sessions ----


@mcp_tool
async def list_sessions(ctx: Context = None) -> dict:
    """List all review sessions, newest first, with file and comment counts."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        result = await sessions.list_sessions(app)
    except ReviewError as exc:
        return _error("list_sessions", exc)
    return {"sessions": result, "count": len(result)}


@mcp_tool
async def create_session(
    base_branch: str,
    repository_path: str | None = None,
    title: str | None = None,
    description: str | None = None,
    ctx: Context = None,
) -> dict:
    """Create a review session comparing base_branch to the current branch.

    Both commits are resolved now and frozen for the life of the session.
    Every changed file starts as "pending". repository_path defaults to the
    repository the server was started in. title defaults to
    "Review: {base}...{head}".
    """
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        request = parse_request(
            CreateSessionRequest,
            _provided(
                base_branch=base_branch,
                repository_path=repository_path,
                title=title,
                description=description,
            ),
        )
        return await sessions.create_session(app, request)
    except ReviewError as exc:
        return _error("create_session", exc)


@mcp_tool
async def get_session(session_id: str, ctx: Context = None) -> dict:
    """Get a session with its changed files (diffed at the frozen commits) and stats."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        return await sessions.get_session(app, session_id)
    except ReviewError as exc:
        return _error("get_session", exc)


@mcp_tool
async def update_session(
    session_id: str,
    title: str | None = None,
    description: str | None = None,
    status: str | None = None,
    ctx: Context = None,
) -> dict:
    """Update a session's title, description, and/or status.

    status is one of 'active', 'completed', 'archived'. Setting it records
    a session_completed or status_changed activity entry.
    """
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        request = parse_request(
            UpdateSessionRequest,
            _provided(title=title, description=description, status=status),
        )
        return await sessions.update_session(app, session_id, request)
    except ReviewError as exc:
        return _error("update_session", exc)


@mcp_tool
async def delete_session(session_id: str, ctx: Context = None) -> dict:
    """Delete a session with all of its file statuses, comments, and activity."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        await sessions.delete_session(app, session_id)
    except ReviewError as exc:
        return _error("delete_session", exc)
    return {"deleted": True, "session_id": session_id}


# ---- comments ----


@mcp_tool
async def list_comments(
    session_id: str,
    file_path: str | None = None,
    ctx: Context = None,
) -> dict:
    """List a session's comments, optionally for one file.

    Ordered by file path, line number, then creation time.
    """
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        result = await comments.list_comments(app, session_id, file_path)
    except ReviewError as exc:
        return _error("list_comments", exc)
    return {"comments": result, "count": len(result)}


@mcp_tool
async def list_threads(
    session_id: str,
    file_path: str | None = None,
    ctx: Context = None,
) -> dict:
    """List a session's comments grouped into threads (root comment plus replies)."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        result = await comments.list_threads(app, session_id, file_path)
    except ReviewError as exc:
        return _error("list_threads", exc)
    return {"threads": result, "count": len(result)}


@mcp_tool
async def create_comment(
    session_id: str,
    file_path: str,
    side: str,
    line_number: int,
    content: str,
    end_line_number: int | None = None,
    parent_id: str | None = None,
    ctx: Context = None,
) -> dict:
    """Comment on one line of a file's diff, or reply to an existing comment.

    side is 'old' (before the change) or 'new' (after it). end_line_number
    makes a range comment. parent_id must name a top-level comment.
    """
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        request = parse_request(
            CreateCommentRequest,
            _provided(
                file_path=file_path,
                side=side,
                line_number=line_number,
                content=content,
                end_line_number=end_line_number,
                parent_id=parent_id,
            ),
        )
        return await comments.create_comment(app, session_id, request)
    except ReviewError as exc:
        return _error("create_comment", exc)


@mcp_tool
async def update_comment(
    comment_id: str,
    content: str | None = None,
    resolved: bool | None = None,
    ctx: Context = None,
) -> dict:
    """Edit a comment's content and/or set its resolved flag."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        request = parse_request(
            UpdateCommentRequest, _provided(content=content, resolved=resolved)
        )
        return await comments.update_comment(app, comment_id, request)
    except ReviewError as exc:
        return _error("update_comment", exc)


@mcp_tool
async def delete_comment(comment_id: str, ctx: Context = None) -> dict:
    """Delete a comment and its replies. Deleting an unknown id succeeds."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        await comments.delete_comment(app, comment_id)
    except ReviewError as exc:
        return _error("delete_comment", exc)
    return {"deleted": True, "comment_id": comment_id}


@mcp_tool
async def toggle_resolve(comment_id: str, ctx: Context = None) -> dict:
    """Flip a comment between resolved and unresolved."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        return await comments.toggle_resolve(app, comment_id)
    except ReviewError as exc:
        return _error("toggle_resolve", exc)


# ---- files and activity ----


@mcp_tool
async def list_files(session_id: str, ctx: Context = None) -> dict:
    """List stored per-file review status rows for a session, ordered by path."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        result = await files.list_files(app, session_id)
    except ReviewError as exc:
        return _error("list_files", exc)
    return {"files": result, "count": len(result)}


@mcp_tool
async def update_file_status(
    session_id: str,
    file_path: str,
    status: str,
    ctx: Context = None,
) -> dict:
    """Set a file's review status: 'pending', 'viewed', or 'reviewed'."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        request = parse_request(UpdateFileStatusRequest, _provided(status=status))
        return await files.update_file_status(app, session_id, file_path, request)
    except ReviewError as exc:
        return _error("update_file_status", exc)


@mcp_tool
async def list_activities(
    session_id: str,
    limit: int | None = None,
    ctx: Context = None,
) -> dict:
    """List a session's activity log, newest first (default limit 50)."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        result = await files.list_activities(app, session_id, limit)
    except ReviewError as exc:
        return _error("list_activities", exc)
    return {"activities": result, "count": len(result)}


# ---- git ----


@mcp_tool
async def git_list_branches(repo_path: str | None = None, ctx: Context = None) -> dict:
    """List local branches and the current branch."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        branches = await app.gateway_for(repo_path).list_branches()
    except ReviewError as exc:
        return _error("git_list_branches", exc)
    return branches.model_dump()


@mcp_tool
async def git_diff_files(
    base: str,
    head: str,
    repo_path: str | None = None,
    ctx: Context = None,
) -> dict:
    """List changed files between two refs with addition/deletion counts."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        diff_files = await app.gateway_for(repo_path).diff_summary(base, head)
    except ReviewError as exc:
        return _error("git_diff_files", exc)
    logger.info("git_diff_files -> %s..%s files=%s", base, head, len(diff_files))
    return {"files": [f.model_dump() for f in diff_files]}


@mcp_tool
async def git_file_content_diff(
    base: str,
    head: str,
    path: str,
    repo_path: str | None = None,
    ctx: Context = None,
) -> dict:
    """Get a file's content at both refs plus its detected language."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        content = await app.gateway_for(repo_path).file_content_diff(base, head, path)
    except ReviewError as exc:
        return _error("git_file_content_diff", exc)
    return content.model_dump()


@mcp_tool
async def git_diff_hunks(
    base: str,
    head: str,
    path: str,
    repo_path: str | None = None,
    ctx: Context = None,
) -> dict:
    """Get one file's diff between two refs as hunks of line changes."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        hunks = await app.gateway_for(repo_path).diff_hunks(base, head, path)
    except ReviewError as exc:
        return _error("git_diff_hunks", exc)
    return {"path": path, "hunks": [h.model_dump() for h in hunks]}


@mcp_tool
async def git_commits(
    base: str,
    head: str,
    repo_path: str | None = None,
    ctx: Context = None,
) -> dict:
    """List commits in head that are not in base, newest first."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        commits = await app.gateway_for(repo_path).commits_between(base, head)
    except ReviewError as exc:
        return _error("git_commits", exc)
    return {"commits": [c.model_dump() for c in commits]}


@mcp_tool
async def git_file_content(
    ref: str,
    path: str,
    repo_path: str | None = None,
    ctx: Context = None,
) -> dict:
    """Get a file's content at a ref (empty when the file does not exist there)."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        content = await app.gateway_for(repo_path).file_content_at(ref, path)
    except ReviewError as exc:
        return _error("git_file_content", exc)
    return {"content": content}


@mcp_tool
async def git_raw_diff(
    base: str,
    head: str,
    path: str | None = None,
    repo_path: str | None = None,
    ctx: Context = None,
) -> dict:
    """Get unified diff text between two refs, optionally for one file."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        diff = await app.gateway_for(repo_path).raw_diff(base, head, path)
    except ReviewError as exc:
        return _error("git_raw_diff", exc)
    return {"diff": diff}


@mcp_tool
async def git_working_changes(repo_path: str | None = None, ctx: Context = None) -> dict:
    """List staged and unstaged changes in the working tree."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        changes = await app.gateway_for(repo_path).working_changes()
    except ReviewError as exc:
        return _error("git_working_changes", exc)
    return {kind: [f.model_dump() for f in entries] for kind, entries in changes.items()}


@mcp_tool
async def git_working_diff(
    kind: str,
    path: str | None = None,
    repo_path: str | None = None,
    ctx: Context = None,
) -> dict:
    """Get unified diff text for 'staged' or 'unstaged' working-tree changes."""
    caller_tag.set("mcp")
    app = _app_ctx(ctx)
    try:
        diff = await app.gateway_for(repo_path).working_diff(kind, path)
    except ReviewError as exc:
        return _error("git_working_diff", exc)
    logger.info("git_working_diff -> %s (path=%s)", kind, path or "all")
    return {"diff": diff}
