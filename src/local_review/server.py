"""FastMCP server entry point for the local review server."""

from __future__ import annotations

import asyncio
import contextvars
import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastmcp import FastMCP

from local_review.config import load_config
from local_review.db import review_lifespan
from local_review.git_gateway import discover_repo_root

USER_CONFIG_DIRNAME = "local-review"
REVIEW_LOG_DIR_ENV_VAR = "REVIEW_LOG_DIR"
REVIEW_LOG_MAX_BYTES_ENV_VAR = "REVIEW_LOG_MAX_BYTES"
REVIEW_LOG_BACKUPS_ENV_VAR = "REVIEW_LOG_BACKUPS"
DEFAULT_REVIEW_LOG_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_REVIEW_LOG_BACKUPS = 5

mcp = FastMCP(
    "local-review",
    instructions=(
        "Local code review over git diffs. "
        "Create review sessions between two refs, track per-file review status, "
        "and leave threaded line comments that can be resolved."
    ),
    lifespan=review_lifespan,
)

# ContextVar holding the transport tag for log lines.
# Default "server" is used for startup and internal actions.
caller_tag: contextvars.ContextVar[str] = contextvars.ContextVar("caller_tag", default="server")

# Import tools and routes to register them on the server.
# This import MUST come AFTER mcp is created to avoid circular imports.
from local_review import routes, tools  # noqa: F401, E402

routes.register_routes(mcp)


class _CallerFormatter(logging.Formatter):
    """Log formatter that injects the caller_tag ContextVar into each record."""

    def format(self, record: logging.LogRecord) -> str:
        record.caller_tag = caller_tag.get("server")  # type: ignore[attr-defined]
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """Structured JSON formatter for logfile events."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "caller_tag": getattr(record, "caller_tag", caller_tag.get("server")),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


def _default_user_config_dir() -> Path:
    """Resolve a cross-platform user config directory for server state."""
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home).expanduser() / USER_CONFIG_DIRNAME

    if os.name == "nt":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata).expanduser() / USER_CONFIG_DIRNAME
        return Path.home() / "AppData" / "Roaming" / USER_CONFIG_DIRNAME

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / USER_CONFIG_DIRNAME

    return Path.home() / ".config" / USER_CONFIG_DIRNAME


def _resolve_log_dir() -> Path:
    override = os.environ.get(REVIEW_LOG_DIR_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return _default_user_config_dir() / "logs"


def _read_positive_int_env(name: str, default: int, minimum: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value < minimum:
        return default
    return value


def _configure_logging() -> None:
    """Configure concise stream logs plus a structured rotating logfile."""
    logger = logging.getLogger("local_review")
    logger.setLevel(logging.INFO)
    logger.propagate = False

    has_stream_handler = any(
        getattr(handler, "_local_review_stream_handler", False)
        for handler in logger.handlers
    )
    if not has_stream_handler:
        # stderr keeps stdout clean for the stdio transport.
        handler = logging.StreamHandler(sys.stderr)
        handler._local_review_stream_handler = True  # type: ignore[attr-defined]
        handler.setLevel(logging.INFO)
        handler.setFormatter(
            _CallerFormatter(
                "%(asctime)s [%(caller_tag)s] %(message)s",
                "%H:%M:%S",
            )
        )
        logger.addHandler(handler)

    if not any(getattr(handler, "_local_review_file_handler", False) for handler in logger.handlers):
        log_dir = _resolve_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        log_max_bytes = _read_positive_int_env(
            REVIEW_LOG_MAX_BYTES_ENV_VAR,
            DEFAULT_REVIEW_LOG_MAX_BYTES,
            1024,
        )
        log_backups = _read_positive_int_env(
            REVIEW_LOG_BACKUPS_ENV_VAR,
            DEFAULT_REVIEW_LOG_BACKUPS,
            1,
        )
        file_handler = RotatingFileHandler(
            log_dir / "server.jsonl",
            maxBytes=log_max_bytes,
            backupCount=log_backups,
            encoding="utf-8",
        )
        file_handler._local_review_file_handler = True  # type: ignore[attr-defined]
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(_JsonFormatter())
        logger.addHandler(file_handler)


# Ensure the package logger is configured even when launched without calling main().
_configure_logging()


def main() -> None:
    """Run the review server.

    Transport, host, and port come from ``REVIEW_TRANSPORT``, ``REVIEW_HOST``
    and ``REVIEW_PORT`` (or ``.local-review.json``). The default is
    streamable HTTP on 127.0.0.1:3001, serving MCP at /mcp and the JSON API
    under /api. ``REVIEW_TRANSPORT=stdio`` runs the MCP tools over stdio.

    Storage defaults to ``<repo>/.local-review.db``; set REVIEW_DB_PATH to
    override.
    """
    _configure_logging()
    # Same repository root the lifespan resolves, so both read one config file.
    config = load_config(repo_root=asyncio.run(discover_repo_root()))
    if config.transport == "stdio":
        mcp.run(transport="stdio")
        return
    uvicorn_log_level = os.environ.get("REVIEW_UVICORN_LOG_LEVEL", "warning")
    mcp.run(
        transport="streamable-http",
        host=config.host,
        port=config.port,
        log_level=uvicorn_log_level,
        stateless_http=True,
    )


if __name__ == "__main__":
    main()
