"""Capabilities the release engine consumes.

The pipeline and the reconciler only talk to version control, manifests,
build/publish tooling, the terminal and the operator through these
protocols, so tests can hand them in-memory fakes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from .models import CommitHistory, CommitRecord, PackageDescriptor


class Logger(Protocol):
    def step(self, msg: str) -> None: ...

    def info(self, msg: str) -> None: ...

    def debug(self, msg: str) -> None: ...

    def warn(self, msg: str) -> None: ...

    def error(self, msg: str) -> None: ...

    def for_package(self, name: str) -> Logger: ...


class CommitSource(Protocol):
    def latest(self, cwd: Path) -> CommitRecord:
        """Return the HEAD commit, raising GitError if there is none."""
        ...

    def history(self, cwd: Path, since: str) -> CommitHistory:
        """Return commits after ``since`` up to and including HEAD."""
        ...

    def recent(self, cwd: Path, count: int) -> CommitHistory:
        """Return the ``count`` most recent commits."""
        ...


class ManifestStore(Protocol):
    def load(self, path: Path) -> PackageDescriptor: ...

    def save_release(self, path: Path, version: str, reference_commit: str) -> None:
        """Write the new version and reference commit, preserving everything else."""
        ...

    def save_dependencies(self, path: Path, requirements: list[str]) -> None:
        """Replace the runtime dependency list, preserving everything else."""
        ...

    def local_sources(self, path: Path) -> dict[str, Path] | None:
        """Map locally path-mapped dependency names to their package directories.

        Returns None when the manifest declares no source mapping at all.
        """
        ...


class Builder(Protocol):
    def build(self, package_dir: Path, out_dir: Path) -> int: ...


class Publisher(Protocol):
    def publish(self, out_dir: Path, tag: str) -> int: ...


class Confirm(Protocol):
    def __call__(self, question: str) -> bool: ...
