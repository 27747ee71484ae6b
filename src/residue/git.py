"""Git plumbing used to resolve repositories and describe commits."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .agents.utils import sanitize_environment
from .result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)

_REMOTE_PATTERN = re.compile(r"[:/]([^/:]+)/([^/]+?)(?:\.git)?/?$")


@dataclass(slots=True, frozen=True)
class RepoIdentity:
    org: str
    repo: str

    def __str__(self) -> str:
        return f"{self.org}/{self.repo}"


@dataclass(slots=True)
class CommitMeta:
    message: str
    author: str
    committed_at: int


@dataclass(slots=True)
class FileChange:
    path: str
    change_type: str
    lines_added: int
    lines_deleted: int


def parse_remote(remote_url: str) -> Result[RepoIdentity]:
    """Extract ``org/repo`` from an ssh or https remote URL."""

    match = _REMOTE_PATTERN.search(remote_url.strip())
    if not match:
        return Err(ErrorKind.GIT_ERROR, f"Cannot parse git remote URL: {remote_url}")
    return Ok(RepoIdentity(org=match.group(1), repo=match.group(2)))


class GitRepository:
    """Runs git commands against the working tree at ``cwd``."""

    def __init__(self, cwd: Path | None = None, *, executable: str = "git") -> None:
        self._cwd = Path(cwd) if cwd is not None else None
        self._executable = executable

    def _run(self, *args: str, error_message: str) -> Result[str]:
        try:
            process = subprocess.run(
                [self._executable, *args],
                cwd=str(self._cwd) if self._cwd else None,
                capture_output=True,
                text=True,
                env=sanitize_environment(drop_git_context=self._cwd is not None),
            )
        except OSError as exc:
            return Err(ErrorKind.GIT_ERROR, f"{error_message}: {exc}")
        if process.returncode != 0:
            reason = process.stderr.strip() or f"exit code {process.returncode}"
            return Err(ErrorKind.GIT_ERROR, f"{error_message}: {reason}")
        return Ok(process.stdout.strip())

    def project_root(self) -> Result[Path]:
        result = self._run("rev-parse", "--show-toplevel", error_message="Not a git repository")
        if not result.ok:
            return result
        return Ok(Path(result.value))

    def git_dir(self) -> Result[Path]:
        result = self._run(
            "rev-parse", "--absolute-git-dir", error_message="Failed to get git directory"
        )
        if not result.ok:
            return result
        return Ok(Path(result.value))

    def remote_url(self, name: str = "origin") -> Result[str]:
        return self._run("remote", "get-url", name, error_message="Failed to get git remote URL")

    def current_sha(self) -> Result[str]:
        return self._run("rev-parse", "HEAD", error_message="Failed to get current commit SHA")

    def current_branch(self) -> Result[str]:
        return self._run(
            "rev-parse", "--abbrev-ref", "HEAD", error_message="Failed to get current branch"
        )

    def commit_meta(self, sha: str) -> Result[CommitMeta]:
        result = self._run(
            "log",
            "-1",
            "--format=%s%n%an%n%ct",
            sha,
            error_message=f"Failed to get commit metadata for {sha}",
        )
        if not result.ok:
            return result
        lines = result.value.split("\n")
        try:
            committed_at = int(lines[2]) if len(lines) > 2 and lines[2] else 0
        except ValueError:
            committed_at = 0
        return Ok(
            CommitMeta(
                message=lines[0] if lines else "",
                author=lines[1] if len(lines) > 1 else "",
                committed_at=committed_at,
            )
        )

    def commit_files(self, sha: str) -> Result[list[FileChange]]:
        """List files touched by ``sha`` with change type and line counts."""

        statuses = self._run(
            "diff-tree",
            "--no-commit-id",
            "--root",
            "-r",
            "--no-renames",
            "--name-status",
            sha,
            error_message=f"Failed to get changed files for {sha}",
        )
        if not statuses.ok:
            return statuses
        numstat = self._run(
            "diff-tree",
            "--no-commit-id",
            "--root",
            "-r",
            "--no-renames",
            "--numstat",
            sha,
            error_message=f"Failed to get line counts for {sha}",
        )
        if not numstat.ok:
            return numstat

        counts: dict[str, tuple[int, int]] = {}
        for line in numstat.value.splitlines():
            parts = line.split("\t", 2)
            if len(parts) != 3:
                continue
            added, deleted, path = parts
            # Binary files report "-" for both counts.
            counts[path] = (
                int(added) if added.isdigit() else 0,
                int(deleted) if deleted.isdigit() else 0,
            )

        files: list[FileChange] = []
        for line in statuses.value.splitlines():
            parts = line.split("\t", 1)
            if len(parts) != 2:
                continue
            change_type, path = parts
            added, deleted = counts.get(path, (0, 0))
            files.append(
                FileChange(
                    path=path,
                    change_type=change_type[:1],
                    lines_added=added,
                    lines_deleted=deleted,
                )
            )
        return Ok(files)

    def resolve_identity(self, override: str | None = None) -> Result[RepoIdentity]:
        """Resolve ``org/repo`` from ``override`` or the ``origin`` remote."""

        if override:
            parsed = parse_remote(override)
            if parsed.ok:
                return parsed
            logger.debug("Ignoring unparsable remote override %s", override)

        remote = self.remote_url()
        if not remote.ok:
            return remote
        return parse_remote(remote.value)


__all__ = [
    "CommitMeta",
    "FileChange",
    "GitRepository",
    "RepoIdentity",
    "parse_remote",
]
