"""Server configuration schema and loader."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

CONFIG_FILENAME = ".local-review.json"
DB_FILENAME = ".local-review.db"

CONFIG_PATH_ENV_VAR = "REVIEW_CONFIG_PATH"
ENV_VARS: dict[str, str] = {
    "repo_path": "REVIEW_REPO_PATH",
    "db_path": "REVIEW_DB_PATH",
    "host": "REVIEW_HOST",
    "port": "REVIEW_PORT",
    "transport": "REVIEW_TRANSPORT",
    "activity_limit": "REVIEW_ACTIVITY_LIMIT",
}


class ServerConfig(BaseModel):
    """Validated runtime configuration for the review server."""

    repo_path: str
    db_path: str | None = None
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3001, ge=1, le=65535)
    transport: str = Field(default="http")
    activity_limit: int = Field(default=50, ge=1, le=1000)

    @field_validator("transport")
    @classmethod
    def _validate_transport(cls, value: str) -> str:
        allowed = {"http", "stdio"}
        if value not in allowed:
            raise ValueError(f"transport must be one of {sorted(allowed)}")
        return value

    @property
    def resolved_db_path(self) -> Path:
        if self.db_path:
            return Path(self.db_path).expanduser()
        return Path(self.repo_path) / DB_FILENAME


def _config_file_path(repo_path: str, environ: Mapping[str, str]) -> Path:
    configured = environ.get(CONFIG_PATH_ENV_VAR)
    if configured:
        return Path(configured).expanduser()
    return Path(repo_path) / CONFIG_FILENAME


def load_config(
    repo_root: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServerConfig:
    """Build the server config from env vars, an optional JSON file, and defaults.

    Priority, highest first:
    1) ``REVIEW_*`` environment variables
    2) JSON file at ``REVIEW_CONFIG_PATH`` or ``<repo>/.local-review.json``
    3) field defaults; ``repo_path`` defaults to *repo_root*, else the cwd

    Raises:
    - pydantic ValidationError on invalid values.
    - json.JSONDecodeError for a malformed config file.
    """
    env = os.environ if environ is None else environ

    repo_path = env.get(ENV_VARS["repo_path"]) or repo_root or str(Path.cwd())
    repo_path = str(Path(repo_path).expanduser())

    payload: dict[str, object] = {}
    config_path = _config_file_path(repo_path, env)
    if config_path.is_file():
        loaded = json.loads(config_path.read_text(encoding="utf-8"))
        if not isinstance(loaded, dict):
            raise ValueError(f"{config_path} must contain a JSON object")
        payload.update(loaded)

    for field_name, env_var in ENV_VARS.items():
        value = env.get(env_var)
        if value:
            payload[field_name] = value
    payload["repo_path"] = repo_path

    return ServerConfig.model_validate(payload)
