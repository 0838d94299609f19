"""Shared test fixtures for the local review server."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

import aiosqlite
import pytest

from local_review.db import AppContext, open_database
from local_review.errors import RefResolutionError
from local_review.git_gateway import GitGateway, classify_diff_status
from local_review.models import BranchInfo, CommitInfo, DiffFile

REPO = "/repo"
BASE_COMMIT = "1" * 40
HEAD_COMMIT = "2" * 40


def diff_file(path: str, additions: int, deletions: int, **extra) -> DiffFile:
    return DiffFile(
        path=path,
        status=classify_diff_status(additions, deletions, extra.get("binary", False)),
        additions=additions,
        deletions=deletions,
        **extra,
    )


DEFAULT_DIFF = [
    diff_file("docs/old.md", 0, 7),
    diff_file("src/app.py", 10, 2),
    diff_file("src/new.py", 5, 0),
]


class FakeGateway(GitGateway):
    """In-memory git stand-in: named refs map to commits, diffs keyed by commit pair."""

    def __init__(self, repo_path: str = REPO) -> None:
        super().__init__(repo_path)
        self.branch = "feature"
        self.refs: dict[str, str] = {"main": BASE_COMMIT, "feature": HEAD_COMMIT}
        self.diffs: dict[tuple[str, str], list[DiffFile]] = {
            (BASE_COMMIT, HEAD_COMMIT): list(DEFAULT_DIFF),
        }
        self.contents: dict[tuple[str, str], str] = {}
        self.raw_diffs: dict[tuple[str, str], str] = {}
        self.commits: list[CommitInfo] = []
        self.run_calls: list[tuple[str, ...]] = []

    async def _run(self, *args: str) -> str:
        self.run_calls.append(args)
        return ""

    async def current_branch(self) -> str:
        return self.branch

    async def list_branches(self) -> BranchInfo:
        return BranchInfo(current=self.branch, all=sorted(self.refs))

    async def resolve_ref(self, ref: str) -> str:
        self._check_ref(ref)
        if ref in self.refs:
            return self.refs[ref]
        known_commits = set(self.refs.values()) | {c for pair in self.diffs for c in pair}
        if ref in known_commits:
            return ref
        raise RefResolutionError(f"fatal: Needed a single revision: {ref}")

    async def commits_between(self, base: str, head: str) -> list[CommitInfo]:
        await self.resolve_ref(base)
        await self.resolve_ref(head)
        return list(self.commits)

    async def diff_summary(self, base: str, head: str) -> list[DiffFile]:
        key = (await self.resolve_ref(base), await self.resolve_ref(head))
        return list(self.diffs.get(key, []))

    async def file_content_at(self, ref: str, path: str) -> str:
        return self.contents.get((ref, path), "")

    async def raw_diff(self, base: str, head: str, path: str | None = None) -> str:
        return self.raw_diffs.get((base, head), "")

    async def working_changes(self) -> dict[str, list[DiffFile]]:
        return {"staged": [diff_file("src/app.py", 1, 0)], "unstaged": []}


def install_gateway(app: AppContext, gateway: GitGateway) -> None:
    """Register *gateway* so app.gateway_for(gateway.repo_path) returns it."""
    key = str(Path(gateway.repo_path).expanduser().resolve())
    app.gateways._gateways[key] = gateway


@dataclass
class _MockFastMCP:
    """Stands in for the FastMCP instance so ctx.fastmcp._lifespan_result works."""

    _lifespan_result: AppContext


@dataclass
class MockContext:
    """Minimal mock for fastmcp.Context that provides fastmcp._lifespan_result."""

    fastmcp: _MockFastMCP

    @property
    def lifespan_context(self) -> AppContext:
        return self.fastmcp._lifespan_result


@pytest.fixture
async def db() -> AsyncIterator[aiosqlite.Connection]:
    """In-memory SQLite database for tests."""
    conn = await open_database(":memory:")
    yield conn
    await conn.close()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def app(db: aiosqlite.Connection, gateway: FakeGateway) -> AppContext:
    """AppContext over the in-memory db, with the fake gateway as the default repo."""
    app_ctx = AppContext(db=db, repo_root=REPO)
    install_gateway(app_ctx, gateway)
    return app_ctx


@pytest.fixture
def ctx(app: AppContext) -> MockContext:
    """Create a MockContext wrapping the app fixture."""
    return MockContext(fastmcp=_MockFastMCP(_lifespan_result=app))
