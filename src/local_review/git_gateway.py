"""Git inspection gateway: branches, refs, diff summaries, and file contents.

Every call shells out to ``git`` with ``asyncio.create_subprocess_exec``.
A non-zero exit status is raised as RefResolutionError carrying git's stderr.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from local_review.errors import RefResolutionError, ValidationError
from local_review.models import (
    BranchInfo,
    CommitInfo,
    DiffChange,
    DiffFile,
    DiffFileStatus,
    DiffHunk,
    FileContent,
    WorkingDiffKind,
)

logger = logging.getLogger("local_review")

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    "ts": "typescript",
    "tsx": "tsx",
    "js": "javascript",
    "jsx": "jsx",
    "py": "python",
    "rb": "ruby",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "kt": "kotlin",
    "swift": "swift",
    "css": "css",
    "scss": "scss",
    "less": "less",
    "html": "html",
    "vue": "vue",
    "svelte": "svelte",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "toml": "toml",
    "md": "markdown",
    "mdx": "mdx",
    "sql": "sql",
    "sh": "bash",
    "bash": "bash",
    "zsh": "bash",
    "fish": "fish",
    "ps1": "powershell",
    "c": "c",
    "cpp": "cpp",
    "h": "c",
    "hpp": "cpp",
    "cs": "csharp",
    "php": "php",
    "r": "r",
    "scala": "scala",
    "lua": "lua",
    "perl": "perl",
    "ex": "elixir",
    "exs": "elixir",
    "erl": "erlang",
    "hs": "haskell",
    "clj": "clojure",
    "ml": "ocaml",
    "fs": "fsharp",
    "nim": "nim",
    "zig": "zig",
    "v": "v",
    "dart": "dart",
    "graphql": "graphql",
    "gql": "graphql",
    "proto": "protobuf",
    "dockerfile": "dockerfile",
    "makefile": "makefile",
    "cmake": "cmake",
    "nginx": "nginx",
    "xml": "xml",
    "svg": "xml",
    "ini": "ini",
    "env": "dotenv",
}


def detect_language(file_path: str) -> str:
    """Map a file path to a syntax-highlighting language name."""
    name = PurePosixPath(file_path).name
    ext = name.rsplit(".", 1)[-1].lower()
    return LANGUAGE_BY_EXTENSION.get(ext, "plaintext")


def classify_diff_status(additions: int, deletions: int, binary: bool = False) -> DiffFileStatus:
    """Infer a file's change status from its line counts.

    Binary files are always "modified". Renames are not distinguished.
    """
    if binary:
        return DiffFileStatus.MODIFIED
    if additions > 0 and deletions == 0:
        return DiffFileStatus.ADDED
    if deletions > 0 and additions == 0:
        return DiffFileStatus.DELETED
    return DiffFileStatus.MODIFIED


def parse_numstat(output: str) -> list[DiffFile]:
    """Parse ``git diff --numstat -z`` output into DiffFile entries.

    Plain entries are ``added<TAB>deleted<TAB>path<NUL>``. Renames leave the
    path empty and follow it with ``old<NUL>new<NUL>``. Binary files report
    ``-`` for both counts.
    """
    tokens = output.split("\0")
    files: list[DiffFile] = []
    i = 0
    while i < len(tokens):
        token = tokens[i]
        i += 1
        if not token.strip():
            continue
        parts = token.split("\t", 2)
        if len(parts) != 3:
            continue
        added_raw, deleted_raw, path = parts
        old_path: str | None = None
        if path == "":
            if i + 1 >= len(tokens):
                break
            old_path, path = tokens[i], tokens[i + 1]
            i += 2
        binary = added_raw == "-" and deleted_raw == "-"
        additions = 0 if binary else int(added_raw)
        deletions = 0 if binary else int(deleted_raw)
        files.append(
            DiffFile(
                path=path,
                old_path=old_path,
                status=classify_diff_status(additions, deletions, binary),
                additions=additions,
                deletions=deletions,
                binary=binary,
            )
        )
    return files


def parse_hunks(diff_text: str) -> list[DiffHunk]:
    """Parse a single-file unified diff into hunks with per-line changes.

    Returns [] for empty or unparseable input.
    """
    if not diff_text.strip():
        return []
    try:
        patch = PatchSet(diff_text)
    except UnidiffParseError:
        return []

    hunks: list[DiffHunk] = []
    for patched_file in patch:
        for hunk in patched_file:
            changes: list[DiffChange] = []
            for line in hunk:
                if line.is_added:
                    change_type = "add"
                elif line.is_removed:
                    change_type = "del"
                elif line.is_context:
                    change_type = "normal"
                else:
                    # "\ No newline at end of file" markers
                    continue
                changes.append(
                    DiffChange(
                        type=change_type,
                        old_line=line.source_line_no,
                        new_line=line.target_line_no,
                        content=line.value.rstrip("\n"),
                    )
                )
            hunks.append(
                DiffHunk(
                    old_start=hunk.source_start,
                    old_lines=hunk.source_length,
                    new_start=hunk.target_start,
                    new_lines=hunk.target_length,
                    changes=changes,
                )
            )
    return hunks


async def discover_repo_root(cwd: str | None = None) -> str | None:
    """Discover the git repository root directory."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git", "rev-parse", "--show-toplevel",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
        stdout, _ = await proc.communicate()
    except OSError:
        return None
    if proc.returncode == 0:
        return stdout.decode("utf-8", errors="replace").strip()
    return None


class GitGateway:
    """Read-only view of one repository through the git CLI."""

    def __init__(self, repo_path: str) -> None:
        self.repo_path = repo_path

    async def _run(self, *args: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                "git", *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.repo_path,
            )
            stdout, stderr = await proc.communicate()
        except OSError as exc:
            raise RefResolutionError(
                f"git {args[0]} failed in {self.repo_path}: {exc}"
            ) from exc
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise RefResolutionError(detail or f"git {args[0]} exited with {proc.returncode}")
        return stdout.decode("utf-8", errors="replace")

    @staticmethod
    def _check_ref(ref: str) -> str:
        if not ref or ref.startswith("-"):
            raise RefResolutionError(f"Invalid ref: {ref!r}")
        return ref

    async def current_branch(self) -> str:
        output = await self._run("rev-parse", "--abbrev-ref", "HEAD")
        return output.strip()

    async def list_branches(self) -> BranchInfo:
        output = await self._run("branch", "--list", "--format=%(refname:short)")
        branches = [line.strip() for line in output.splitlines() if line.strip()]
        return BranchInfo(current=await self.current_branch(), all=branches)

    async def resolve_ref(self, ref: str) -> str:
        """Resolve a branch, tag, or commit-ish to a full commit hash."""
        self._check_ref(ref)
        output = await self._run("rev-parse", "--verify", f"{ref}^{{commit}}")
        return output.strip()

    async def is_valid_ref(self, ref: str) -> bool:
        try:
            await self.resolve_ref(ref)
        except RefResolutionError:
            return False
        return True

    async def merge_base(self, base: str, head: str) -> str:
        """Return the merge base of two refs, or ``base`` itself when there is none."""
        try:
            output = await self._run(
                "merge-base", self._check_ref(base), self._check_ref(head)
            )
            return output.strip()
        except RefResolutionError as exc:
            logger.info("merge_base -> %s..%s fallback to base (%s)", base, head, exc)
            return await self.resolve_ref(base)

    async def commits_between(self, base: str, head: str) -> list[CommitInfo]:
        """Commits reachable from head but not base, newest first."""
        output = await self._run(
            "log",
            f"--format=%H{_FIELD_SEP}%s{_FIELD_SEP}%an{_FIELD_SEP}%aI{_RECORD_SEP}",
            f"{self._check_ref(base)}..{self._check_ref(head)}",
        )
        commits: list[CommitInfo] = []
        for record in output.split(_RECORD_SEP):
            record = record.strip()
            if not record:
                continue
            commit_hash, message, author, date = record.split(_FIELD_SEP, 3)
            commits.append(CommitInfo(hash=commit_hash, message=message, author=author, date=date))
        return commits

    async def diff_summary(self, base: str, head: str) -> list[DiffFile]:
        output = await self._run(
            "diff", "--numstat", "-z", self._check_ref(base), self._check_ref(head)
        )
        return parse_numstat(output)

    async def file_content_at(self, ref: str, path: str) -> str:
        """Return file text at ref, or "" when the file does not exist there."""
        try:
            return await self._run("show", f"{self._check_ref(ref)}:{path}")
        except RefResolutionError:
            return ""

    async def file_content_diff(self, base: str, head: str, path: str) -> FileContent:
        old_content, new_content = await asyncio.gather(
            self.file_content_at(base, path),
            self.file_content_at(head, path),
        )
        return FileContent(
            path=path,
            old_content=old_content,
            new_content=new_content,
            language=detect_language(path),
        )

    async def raw_diff(self, base: str, head: str, path: str | None = None) -> str:
        args = ["diff", self._check_ref(base), self._check_ref(head)]
        if path:
            args += ["--", path]
        return await self._run(*args)

    async def diff_hunks(self, base: str, head: str, path: str) -> list[DiffHunk]:
        return parse_hunks(await self.raw_diff(base, head, path))

    async def working_changes(self) -> dict[str, list[DiffFile]]:
        staged_out, unstaged_out = await asyncio.gather(
            self._run("diff", "--cached", "--numstat", "-z"),
            self._run("diff", "--numstat", "-z"),
        )
        return {"staged": parse_numstat(staged_out), "unstaged": parse_numstat(unstaged_out)}

    async def working_diff(self, kind: WorkingDiffKind | str, path: str | None = None) -> str:
        try:
            kind = WorkingDiffKind(kind)
        except ValueError as exc:
            raise ValidationError("type must be 'staged' or 'unstaged'") from exc
        args = ["diff"]
        if kind == WorkingDiffKind.STAGED:
            args.append("--cached")
        if path:
            args += ["--", path]
        return await self._run(*args)


class GatewayRegistry:
    """One GitGateway per repository path, created on first use and never evicted."""

    def __init__(self) -> None:
        self._gateways: dict[str, GitGateway] = {}

    def get(self, repo_path: str) -> GitGateway:
        key = str(Path(repo_path).expanduser().resolve())
        gateway = self._gateways.get(key)
        if gateway is None:
            gateway = GitGateway(key)
            self._gateways[key] = gateway
        return gateway

    def __len__(self) -> int:
        return len(self._gateways)
