"""Tests for boundary request validation."""

from __future__ import annotations

import pytest

from local_review.errors import ValidationError
from local_review.models import (
    CommentSide,
    CreateCommentRequest,
    UpdateCommentRequest,
    UpdateSessionRequest,
    parse_request,
)


def test_parse_valid_comment() -> None:
    request = parse_request(
        CreateCommentRequest,
        {"file_path": "a.ts", "side": "old", "line_number": 0, "content": "x", "extra": 1},
    )
    assert request.side == CommentSide.OLD
    assert request.line_number == 0
    assert request.parent_id is None


def test_errors_name_each_field() -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_request(CreateCommentRequest, {"side": "up", "line_number": 1, "content": "x"})
    message = excinfo.value.message
    assert "file_path: Field required" in message
    assert "side:" in message
    assert excinfo.value.kind == "validation"


def test_empty_content_rejected() -> None:
    with pytest.raises(ValidationError, match="content"):
        parse_request(
            CreateCommentRequest,
            {"file_path": "a.ts", "side": "new", "line_number": 1, "content": ""},
        )


def test_update_session_tracks_unset_fields() -> None:
    request = parse_request(UpdateSessionRequest, {"title": "t"})
    assert request.model_dump(exclude_unset=True) == {"title": "t"}


def test_range_must_not_end_before_start() -> None:
    with pytest.raises(ValidationError, match="end_line_number must not be before line_number"):
        parse_request(
            CreateCommentRequest,
            {
                "file_path": "a.ts",
                "side": "new",
                "line_number": 10,
                "end_line_number": 3,
                "content": "x",
            },
        )


def test_single_line_range_allowed() -> None:
    request = parse_request(
        CreateCommentRequest,
        {"file_path": "a.ts", "side": "new", "line_number": 4, "end_line_number": 4, "content": "x"},
    )
    assert request.end_line_number == 4


def test_edit_cannot_blank_content() -> None:
    with pytest.raises(ValidationError, match="content"):
        parse_request(UpdateCommentRequest, {"content": ""})
    assert parse_request(UpdateCommentRequest, {"resolved": True}).content is None
