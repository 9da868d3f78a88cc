"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import tomlkit

from release_train.errors import GitError
from release_train.models import CommitHistory, CommitRecord

HEAD = "h" * 40


def make_commit(sha: str, subject: str, body: str = "") -> CommitRecord:
    return CommitRecord(
        hash=sha,
        subject=subject,
        body=body,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def make_history(*commits: CommitRecord) -> CommitHistory:
    return CommitHistory(commits=commits, total=len(commits))


def write_package(
    directory: Path,
    name: str,
    version: str = "1.0.0",
    deps: list[str] | None = None,
    *,
    reference_commit: str | None = None,
    assets: list[str] | None = None,
    sources: dict[str, dict] | None = None,
    extension: bool = True,
) -> Path:
    """Write a pyproject.toml for a test package and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    doc = tomlkit.document()
    project = tomlkit.table()
    if name:
        project["name"] = name
    if version:
        project["version"] = version
    project["dependencies"] = deps or []
    doc["project"] = project

    tool = tomlkit.table(is_super_table=True)
    if extension:
        ext = tomlkit.table()
        ext["schema"] = 1
        if reference_commit:
            ext["reference-commit"] = reference_commit
        ext["assets"] = assets or []
        tool["release-train"] = ext
    if sources is not None:
        uv = tomlkit.table(is_super_table=True)
        uv["sources"] = sources
        tool["uv"] = uv
    if extension or sources is not None:
        doc["tool"] = tool

    path = directory / "pyproject.toml"
    path.write_text(tomlkit.dumps(doc))
    return path


class FakeCommits:
    """In-memory CommitSource.

    ``histories`` maps a reference commit to the commits after it.
    """

    def __init__(
        self,
        head: CommitRecord | None = None,
        histories: dict[str, list[CommitRecord]] | None = None,
    ) -> None:
        self.head = head or make_commit(HEAD, "chore: head")
        self.histories = histories or {}
        self.history_calls: list[tuple[Path, str]] = []

    def latest(self, cwd: Path) -> CommitRecord:
        if self.head is None:
            raise GitError(f"No commits found in {cwd}")
        return self.head

    def history(self, cwd: Path, since: str) -> CommitHistory:
        self.history_calls.append((cwd, since))
        return make_history(*self.histories.get(since, []))

    def recent(self, cwd: Path, count: int) -> CommitHistory:
        return make_history(self.head)


@pytest.fixture
def logger() -> MagicMock:
    mock = MagicMock()
    mock.for_package.return_value = mock
    return mock


@pytest.fixture
def builder() -> MagicMock:
    mock = MagicMock()
    mock.build.return_value = 0
    return mock


@pytest.fixture
def publisher() -> MagicMock:
    mock = MagicMock()
    mock.publish.return_value = 0
    return mock


@pytest.fixture
def sample_toml_doc() -> tomlkit.TOMLDocument:
    """Create a sample TOML document."""
    content = """\
[project]
name = "My_Package"
version = "2.0.0"
dependencies = ["click>=8.0", "pydantic>=2.0"]

[project.optional-dependencies]
dev = ["pytest>=8.0"]
docs = ["sphinx>=7.0"]

[dependency-groups]
test = ["hypothesis>=6.0", {include-group = "dev"}]

[tool.uv.workspace]
members = ["packages/*", "libs/*"]

[tool.release-train]
schema = 1
reference-commit = "abc123"
assets = ["README.md", "data"]
out-dir = "build/out"
"""
    return tomlkit.parse(content)
