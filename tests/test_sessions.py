"""Tests for the session lifecycle against an in-memory db and a fake gateway."""

from __future__ import annotations

import pytest
from conftest import BASE_COMMIT, HEAD_COMMIT, FakeGateway, diff_file, install_gateway

from local_review import comments, files, sessions
from local_review.activity import list_activities
from local_review.db import AppContext
from local_review.errors import NotFoundError, RefResolutionError
from local_review.models import (
    CreateCommentRequest,
    CreateSessionRequest,
    FileStatus,
    SessionStatus,
    UpdateFileStatusRequest,
    UpdateSessionRequest,
)


async def _create(app: AppContext, **overrides) -> dict:
    fields = {"base_branch": "main"}
    fields.update(overrides)
    return await sessions.create_session(app, CreateSessionRequest(**fields))


async def _review(app: AppContext, session_id: str, file_path: str) -> None:
    await files.update_file_status(
        app, session_id, file_path, UpdateFileStatusRequest(status=FileStatus.REVIEWED)
    )


class TestCreateSession:
    async def test_two_file_diff(self, app: AppContext, gateway: FakeGateway) -> None:
        gateway.refs = {"main": "aaa111", "feature": "bbb222"}
        gateway.diffs = {
            ("aaa111", "bbb222"): [diff_file("new.ts", 12, 0), diff_file("old.ts", 3, 4)]
        }

        session = await _create(app)

        assert session["base_commit"] == "aaa111"
        assert session["head_commit"] == "bbb222"
        assert session["base_branch"] == "main"
        assert session["head_branch"] == "feature"
        assert session["status"] == "active"
        assert session["files_total"] == 2
        assert session["files_reviewed"] == 0
        rows = await files.list_files(app, session["id"])
        assert [(r["file_path"], r["status"]) for r in rows] == [
            ("new.ts", "pending"),
            ("old.ts", "pending"),
        ]
        assert all(r["reviewed_at"] is None for r in rows)

    async def test_default_title(self, app: AppContext) -> None:
        session = await _create(app)
        assert session["title"] == "Review: main...feature"

    async def test_explicit_title_and_description(self, app: AppContext) -> None:
        session = await _create(app, title="Auth rework", description="Second pass")
        assert session["title"] == "Auth rework"
        assert session["description"] == "Second pass"

    async def test_repository_path_is_recorded(self, app: AppContext) -> None:
        session = await _create(app)
        assert session["repository_path"] == "/repo"

    async def test_explicit_repository_path(self, app: AppContext) -> None:
        other = FakeGateway("/elsewhere")
        other.branch = "main"
        other.refs = {"main": HEAD_COMMIT, "release": BASE_COMMIT}
        install_gateway(app, other)

        session = await _create(app, repository_path="/elsewhere", base_branch="release")

        assert session["repository_path"] == "/elsewhere"
        assert session["head_branch"] == "main"

    async def test_logs_session_created(self, app: AppContext) -> None:
        session = await _create(app)
        (entry,) = await list_activities(app.db, session["id"])
        assert entry["action"] == "session_created"
        assert entry["target_type"] == "session"
        assert entry["target_id"] == session["id"]
        assert entry["metadata"] == {"files_count": 3}

    async def test_unknown_base_branch_writes_nothing(self, app: AppContext) -> None:
        with pytest.raises(RefResolutionError):
            await _create(app, base_branch="does-not-exist")
        assert await sessions.list_sessions(app) == []

    async def test_empty_diff(self, app: AppContext, gateway: FakeGateway) -> None:
        gateway.diffs = {}
        session = await _create(app)
        assert session["files_total"] == 0
        assert session["can_complete"] is False


class TestGetSession:
    async def test_merges_diff_with_status(self, app: AppContext) -> None:
        session = await _create(app)
        await _review(app, session["id"], "src/app.py")

        view = await sessions.get_session(app, session["id"])

        by_path = {f["path"]: f for f in view["files"]}
        assert set(by_path) == {"docs/old.md", "src/app.py", "src/new.py"}
        assert by_path["src/app.py"]["review_status"] == "reviewed"
        assert by_path["src/app.py"]["reviewed_at"] is not None
        assert by_path["src/new.py"]["review_status"] == "pending"
        assert by_path["docs/old.md"]["status"] == "deleted"
        assert view["files_total"] == 3
        assert view["files_reviewed"] == 1
        assert view["can_complete"] is False

    async def test_uses_frozen_commits_after_branches_move(
        self, app: AppContext, gateway: FakeGateway
    ) -> None:
        session = await _create(app)
        moved_head = "3" * 40
        gateway.refs["feature"] = moved_head
        gateway.diffs[(BASE_COMMIT, moved_head)] = [diff_file("src/later.py", 1, 0)]

        view = await sessions.get_session(app, session["id"])

        assert view["head_commit"] == HEAD_COMMIT
        assert [f["path"] for f in view["files"]] == ["docs/old.md", "src/app.py", "src/new.py"]

    async def test_status_rows_outside_diff_are_ignored(self, app: AppContext) -> None:
        session = await _create(app)
        await _review(app, session["id"], "not/in/diff.py")
        view = await sessions.get_session(app, session["id"])
        assert view["files_reviewed"] == 0
        assert "not/in/diff.py" not in {f["path"] for f in view["files"]}

    async def test_comment_counts(self, app: AppContext) -> None:
        session = await _create(app)
        first = await comments.create_comment(
            app,
            session["id"],
            CreateCommentRequest(file_path="src/app.py", side="new", line_number=3, content="a"),
        )
        await comments.create_comment(
            app,
            session["id"],
            CreateCommentRequest(file_path="src/app.py", side="old", line_number=1, content="b"),
        )
        await comments.toggle_resolve(app, first["id"])

        view = await sessions.get_session(app, session["id"])
        assert view["comments_count"] == 2
        assert view["unresolved_comments_count"] == 1

    async def test_can_complete_once_everything_reviewed(self, app: AppContext) -> None:
        session = await _create(app)
        for path in ("docs/old.md", "src/app.py", "src/new.py"):
            await _review(app, session["id"], path)
        view = await sessions.get_session(app, session["id"])
        assert view["files_reviewed"] == 3
        assert view["can_complete"] is True

    async def test_missing_session(self, app: AppContext) -> None:
        with pytest.raises(NotFoundError):
            await sessions.get_session(app, "nope")


class TestListSessions:
    async def test_newest_first_with_stats(self, app: AppContext) -> None:
        older = await _create(app, title="older")
        newer = await _create(app, title="newer")
        await _review(app, older["id"], "src/app.py")

        listed = await sessions.list_sessions(app)

        assert [s["id"] for s in listed] == [newer["id"], older["id"]]
        assert listed[1]["files_total"] == 3
        assert listed[1]["files_reviewed"] == 1
        assert listed[0]["files_reviewed"] == 0
        assert "files" not in listed[0]


class TestUpdateSession:
    async def test_complete_logs_session_completed(self, app: AppContext) -> None:
        session = await _create(app)
        updated = await sessions.update_session(
            app, session["id"], UpdateSessionRequest(status=SessionStatus.COMPLETED)
        )
        assert updated["status"] == "completed"
        latest = (await list_activities(app.db, session["id"]))[0]
        assert latest["action"] == "session_completed"
        assert latest["metadata"] == {"new_status": "completed"}

    async def test_archive_logs_status_changed(self, app: AppContext) -> None:
        session = await _create(app)
        await sessions.update_session(
            app, session["id"], UpdateSessionRequest(status=SessionStatus.ARCHIVED)
        )
        latest = (await list_activities(app.db, session["id"]))[0]
        assert latest["action"] == "status_changed"

    async def test_any_transition_is_allowed(self, app: AppContext) -> None:
        session = await _create(app)
        for status in (SessionStatus.ARCHIVED, SessionStatus.ACTIVE, SessionStatus.COMPLETED):
            updated = await sessions.update_session(
                app, session["id"], UpdateSessionRequest(status=status)
            )
            assert updated["status"] == status

    async def test_title_only_logs_nothing(self, app: AppContext) -> None:
        session = await _create(app)
        updated = await sessions.update_session(
            app, session["id"], UpdateSessionRequest(title="New title")
        )
        assert updated["title"] == "New title"
        assert updated["status"] == "active"
        assert len(await list_activities(app.db, session["id"])) == 1

    async def test_commits_are_unchanged(self, app: AppContext) -> None:
        session = await _create(app)
        updated = await sessions.update_session(
            app, session["id"], UpdateSessionRequest(description="more context")
        )
        assert updated["base_commit"] == session["base_commit"]
        assert updated["head_commit"] == session["head_commit"]

    async def test_missing_session(self, app: AppContext) -> None:
        with pytest.raises(NotFoundError):
            await sessions.update_session(app, "nope", UpdateSessionRequest(title="x"))


class TestDeleteSession:
    async def test_delete_removes_everything(self, app: AppContext) -> None:
        session = await _create(app)
        await comments.create_comment(
            app,
            session["id"],
            CreateCommentRequest(file_path="src/app.py", side="new", line_number=1, content="x"),
        )

        await sessions.delete_session(app, session["id"])

        with pytest.raises(NotFoundError):
            await sessions.get_session(app, session["id"])
        assert await files.list_files(app, session["id"]) == []
        assert await comments.list_comments(app, session["id"]) == []
        assert await list_activities(app.db, session["id"]) == []

    async def test_delete_missing_is_not_an_error(self, app: AppContext) -> None:
        await sessions.delete_session(app, "nope")
