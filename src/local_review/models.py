"""Pydantic models and enums for the local review server."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from local_review.errors import ValidationError


class SessionStatus(StrEnum):
    """Review session lifecycle states. Any state may follow any other."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class FileStatus(StrEnum):
    """Per-file review progress within a session."""

    PENDING = "pending"
    VIEWED = "viewed"
    REVIEWED = "reviewed"


class CommentSide(StrEnum):
    """Which diff column a commented line belongs to."""

    OLD = "old"
    NEW = "new"


class DiffFileStatus(StrEnum):
    ADDED = "added"
    DELETED = "deleted"
    MODIFIED = "modified"
    RENAMED = "renamed"


class WorkingDiffKind(StrEnum):
    STAGED = "staged"
    UNSTAGED = "unstaged"


class ActivityAction(StrEnum):
    """Action types for the append-only activity_logs table."""

    SESSION_CREATED = "session_created"
    FILE_REVIEWED = "file_reviewed"
    COMMENT_ADDED = "comment_added"
    COMMENT_RESOLVED = "comment_resolved"
    STATUS_CHANGED = "status_changed"
    SESSION_COMPLETED = "session_completed"


# ---- git data ----


class DiffFile(BaseModel):
    """One changed file in a diff summary."""

    path: str
    old_path: str | None = None
    status: DiffFileStatus
    additions: int = 0
    deletions: int = 0
    binary: bool = False


class CommitInfo(BaseModel):
    hash: str
    message: str
    author: str
    date: str


class BranchInfo(BaseModel):
    current: str
    all: list[str] = Field(default_factory=list)


class FileContent(BaseModel):
    """Both sides of one file for side-by-side rendering."""

    path: str
    old_content: str
    new_content: str
    language: str


class DiffChange(BaseModel):
    type: str = Field(description="'add', 'del' or 'normal'")
    old_line: int | None = None
    new_line: int | None = None
    content: str


class DiffHunk(BaseModel):
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    changes: list[DiffChange] = Field(default_factory=list)


# ---- request commands ----


class _Request(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CreateSessionRequest(_Request):
    repository_path: str | None = None
    base_branch: str = Field(min_length=1)
    title: str | None = None
    description: str | None = None


class UpdateSessionRequest(_Request):
    title: str | None = None
    description: str | None = None
    status: SessionStatus | None = None


class CreateCommentRequest(_Request):
    file_path: str = Field(min_length=1)
    side: CommentSide
    line_number: int = Field(ge=0)
    content: str = Field(min_length=1)
    end_line_number: int | None = Field(default=None, ge=0)
    parent_id: str | None = None

    @model_validator(mode="after")
    def _check_range(self) -> CreateCommentRequest:
        if self.end_line_number is not None and self.end_line_number < self.line_number:
            raise ValueError("end_line_number must not be before line_number")
        return self


class UpdateCommentRequest(_Request):
    content: str | None = Field(default=None, min_length=1)
    resolved: bool | None = None


class UpdateFileStatusRequest(_Request):
    status: FileStatus


RequestT = TypeVar("RequestT", bound=BaseModel)


def parse_request(model: type[RequestT], payload: dict[str, Any]) -> RequestT:
    """Validate a raw request payload, raising ValidationError on bad input.

    Error messages name the offending fields, e.g.
    ``"file_path: Field required; side: Input should be 'old' or 'new'"``.
    """
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'request'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(details) from exc
