"""JSON HTTP routes served next to the MCP endpoint."""

from __future__ import annotations

import functools
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from local_review import __version__, comments, files, sessions
from local_review.db import AppContext
from local_review.errors import (
    NotFoundError,
    RefResolutionError,
    ReviewError,
    ValidationError,
)
from local_review.models import (
    CreateCommentRequest,
    CreateSessionRequest,
    UpdateCommentRequest,
    UpdateFileStatusRequest,
    UpdateSessionRequest,
    parse_request,
)

logger = logging.getLogger("local_review")

# Module-level AppContext, set by review_lifespan via set_app_context().
_app_ctx: AppContext | None = None

Handler = Callable[[Request, AppContext], Awaitable[Response]]


def set_app_context(ctx: AppContext | None) -> None:
    """Store the AppContext for route handlers to access."""
    global _app_ctx
    _app_ctx = ctx


def _status_for(exc: ReviewError) -> int:
    if isinstance(exc, (ValidationError, RefResolutionError)):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    return 500


def _api(handler: Handler) -> Callable[[Request], Awaitable[Response]]:
    """Wrap a handler with context lookup, caller tagging, and error mapping."""

    @functools.wraps(handler)
    async def endpoint(request: Request) -> Response:
        # Imported here: server imports this module while it is still loading.
        from local_review.server import caller_tag

        caller_tag.set("http")
        app = _app_ctx
        if app is None:
            return JSONResponse({"error": "Server is starting"}, status_code=503)
        try:
            return await handler(request, app)
        except ReviewError as exc:
            status = _status_for(exc)
            if status == 500:
                logger.error("%s %s -> %s", request.method, request.url.path, exc.message)
            else:
                logger.info(
                    "%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message
                )
            return JSONResponse({"error": exc.message}, status_code=status)

    return endpoint


async def _json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Request body is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _query(request: Request, name: str) -> str:
    value = request.query_params.get(name)
    if not value:
        raise ValidationError(f"Missing required query parameter: {name}")
    return value


def _query_int(request: Request, name: str) -> int | None:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from exc


def register_routes(mcp: object) -> None:
    """Register the JSON API on the FastMCP server.

    Routes are added via ``mcp.custom_route`` so they share the process (and
    the database) with the MCP endpoint. Bodies mirror the MCP tool results.
    """

    @mcp.custom_route("/api/health", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def health(request: Request, app: AppContext) -> Response:
        return JSONResponse({"status": "ok", "repo_path": app.repo_root, "version": __version__})

    # ---- git ----

    @mcp.custom_route("/api/git/branches", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def git_branches(request: Request, app: AppContext) -> Response:
        branches = await app.gateway_for().list_branches()
        return JSONResponse(branches.model_dump())

    @mcp.custom_route("/api/git/diff", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def git_diff(request: Request, app: AppContext) -> Response:
        diff_files = await app.gateway_for().diff_summary(
            _query(request, "base"), _query(request, "head")
        )
        return JSONResponse({"files": [f.model_dump() for f in diff_files]})

    @mcp.custom_route("/api/git/diff/file", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def git_diff_file(request: Request, app: AppContext) -> Response:
        content = await app.gateway_for().file_content_diff(
            _query(request, "base"), _query(request, "head"), _query(request, "path")
        )
        return JSONResponse(content.model_dump())

    @mcp.custom_route("/api/git/diff/hunks", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def git_diff_hunks(request: Request, app: AppContext) -> Response:
        path = _query(request, "path")
        hunks = await app.gateway_for().diff_hunks(
            _query(request, "base"), _query(request, "head"), path
        )
        return JSONResponse({"path": path, "hunks": [h.model_dump() for h in hunks]})

    @mcp.custom_route("/api/git/diff/raw", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def git_diff_raw(request: Request, app: AppContext) -> Response:
        diff = await app.gateway_for().raw_diff(
            _query(request, "base"),
            _query(request, "head"),
            request.query_params.get("path") or None,
        )
        return JSONResponse({"diff": diff})

    @mcp.custom_route("/api/git/commits", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def git_commits(request: Request, app: AppContext) -> Response:
        commits = await app.gateway_for().commits_between(
            _query(request, "base"), _query(request, "head")
        )
        return JSONResponse({"commits": [c.model_dump() for c in commits]})

    @mcp.custom_route("/api/git/file", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def git_file(request: Request, app: AppContext) -> Response:
        content = await app.gateway_for().file_content_at(
            _query(request, "ref"), _query(request, "path")
        )
        return JSONResponse({"content": content})

    @mcp.custom_route("/api/git/working-changes", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def git_working_changes(request: Request, app: AppContext) -> Response:
        changes = await app.gateway_for().working_changes()
        return JSONResponse(
            {kind: [f.model_dump() for f in entries] for kind, entries in changes.items()}
        )

    @mcp.custom_route("/api/git/working-diff", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def git_working_diff(request: Request, app: AppContext) -> Response:
        diff = await app.gateway_for().working_diff(
            _query(request, "type"), request.query_params.get("path") or None
        )
        return JSONResponse({"diff": diff})

    # ---- sessions ----

    @mcp.custom_route("/api/sessions", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def list_sessions(request: Request, app: AppContext) -> Response:
        result = await sessions.list_sessions(app)
        return JSONResponse({"sessions": result, "count": len(result)})

    @mcp.custom_route("/api/sessions", methods=["POST"])  # type: ignore[union-attr]
    @_api
    async def create_session(request: Request, app: AppContext) -> Response:
        payload = await _json_body(request)
        # The HTTP API always reviews the repository the server was started in.
        payload.pop("repository_path", None)
        session = await sessions.create_session(
            app, parse_request(CreateSessionRequest, payload)
        )
        return JSONResponse(session, status_code=201)

    @mcp.custom_route("/api/sessions/{session_id}", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def get_session(request: Request, app: AppContext) -> Response:
        session = await sessions.get_session(app, request.path_params["session_id"])
        return JSONResponse(session)

    @mcp.custom_route("/api/sessions/{session_id}", methods=["PATCH"])  # type: ignore[union-attr]
    @_api
    async def update_session(request: Request, app: AppContext) -> Response:
        update = parse_request(UpdateSessionRequest, await _json_body(request))
        session = await sessions.update_session(app, request.path_params["session_id"], update)
        return JSONResponse(session)

    @mcp.custom_route("/api/sessions/{session_id}", methods=["DELETE"])  # type: ignore[union-attr]
    @_api
    async def delete_session(request: Request, app: AppContext) -> Response:
        await sessions.delete_session(app, request.path_params["session_id"])
        return Response(status_code=204)

    # ---- comments ----

    @mcp.custom_route("/api/sessions/{session_id}/comments", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def list_comments(request: Request, app: AppContext) -> Response:
        result = await comments.list_comments(
            app,
            request.path_params["session_id"],
            request.query_params.get("file_path") or None,
        )
        return JSONResponse({"comments": result, "count": len(result)})

    @mcp.custom_route("/api/sessions/{session_id}/comments", methods=["POST"])  # type: ignore[union-attr]
    @_api
    async def create_comment(request: Request, app: AppContext) -> Response:
        create = parse_request(CreateCommentRequest, await _json_body(request))
        comment = await comments.create_comment(app, request.path_params["session_id"], create)
        return JSONResponse(comment, status_code=201)

    @mcp.custom_route("/api/sessions/{session_id}/threads", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def list_threads(request: Request, app: AppContext) -> Response:
        result = await comments.list_threads(
            app,
            request.path_params["session_id"],
            request.query_params.get("file_path") or None,
        )
        return JSONResponse({"threads": result, "count": len(result)})

    @mcp.custom_route("/api/comments/{comment_id}", methods=["PATCH"])  # type: ignore[union-attr]
    @_api
    async def update_comment(request: Request, app: AppContext) -> Response:
        update = parse_request(UpdateCommentRequest, await _json_body(request))
        comment = await comments.update_comment(app, request.path_params["comment_id"], update)
        return JSONResponse(comment)

    @mcp.custom_route("/api/comments/{comment_id}", methods=["DELETE"])  # type: ignore[union-attr]
    @_api
    async def delete_comment(request: Request, app: AppContext) -> Response:
        await comments.delete_comment(app, request.path_params["comment_id"])
        return Response(status_code=204)

    @mcp.custom_route("/api/comments/{comment_id}/resolve", methods=["POST"])  # type: ignore[union-attr]
    @_api
    async def toggle_resolve(request: Request, app: AppContext) -> Response:
        comment = await comments.toggle_resolve(app, request.path_params["comment_id"])
        return JSONResponse(comment)

    # ---- files and activity ----

    @mcp.custom_route("/api/sessions/{session_id}/files", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def list_files(request: Request, app: AppContext) -> Response:
        result = await files.list_files(app, request.path_params["session_id"])
        return JSONResponse({"files": result, "count": len(result)})

    @mcp.custom_route(  # type: ignore[union-attr]
        "/api/sessions/{session_id}/files/{file_path:path}/status", methods=["PATCH"]
    )
    @_api
    async def update_file_status(request: Request, app: AppContext) -> Response:
        update = parse_request(UpdateFileStatusRequest, await _json_body(request))
        row = await files.update_file_status(
            app,
            request.path_params["session_id"],
            request.path_params["file_path"],
            update,
        )
        return JSONResponse(row)

    @mcp.custom_route("/api/sessions/{session_id}/activities", methods=["GET"])  # type: ignore[union-attr]
    @_api
    async def list_activities(request: Request, app: AppContext) -> Response:
        result = await files.list_activities(
            app, request.path_params["session_id"], _query_int(request, "limit")
        )
        return JSONResponse({"activities": result, "count": len(result)})
