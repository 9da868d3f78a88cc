"""Commit history queries backed by the git CLI."""

from __future__ import annotations

import subprocess
from datetime import datetime
from pathlib import Path

from .errors import GitError
from .models import CommitHistory, CommitRecord
from .shell import git

# Unit separator between fields, record separator between commits
_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
LOG_FORMAT = f"--format=%H{_FIELD_SEP}%s{_FIELD_SEP}%b{_FIELD_SEP}%cI{_RECORD_SEP}"


def parse_log(output: str) -> list[CommitRecord]:
    """Parse ``git log`` output produced with LOG_FORMAT."""
    commits: list[CommitRecord] = []
    for record in output.split(_RECORD_SEP):
        record = record.strip()
        if not record:
            continue
        sha, subject, body, timestamp = record.split(_FIELD_SEP)
        commits.append(
            CommitRecord(
                hash=sha,
                subject=subject,
                body=body.strip(),
                timestamp=datetime.fromisoformat(timestamp.strip()),
            )
        )
    return commits


class GitLog:
    """Reads commit history of the repository containing a directory."""

    def _log(self, cwd: Path, *args: str) -> list[CommitRecord]:
        try:
            output = git("log", LOG_FORMAT, *args, cwd=cwd)
        except subprocess.CalledProcessError as exc:
            raise GitError(
                f"git log {' '.join(args)} failed in {cwd}: {exc.stderr.strip()}"
            ) from exc
        return parse_log(output)

    def latest(self, cwd: Path) -> CommitRecord:
        """Return the HEAD commit.

        Raises:
            GitError: If the repository has no commits.
        """
        commits = self._log(cwd, "--max-count=1")
        if not commits:
            raise GitError(f"No commits found in {cwd}")
        return commits[0]

    def history(self, cwd: Path, since: str) -> CommitHistory:
        """Return commits reachable from HEAD but not from ``since``."""
        commits = self._log(cwd, f"{since}..HEAD")
        return CommitHistory(commits=tuple(commits), total=len(commits))

    def recent(self, cwd: Path, count: int) -> CommitHistory:
        commits = self._log(cwd, f"--max-count={count}")
        return CommitHistory(commits=tuple(commits), total=len(commits))
