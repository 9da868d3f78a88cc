"""Data models for release-train.

These Pydantic models represent the core data structures passed between the
commit analyzer, the reconciler and the publish pipeline. Anything shared
between sibling pipelines running on different threads is frozen.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

METADATA_SCHEMA_VERSION = 1
DEFAULT_OUT_DIR = "dist"


class BumpDecision(str, Enum):
    """Which version component a set of commits asks to increment."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    NONE = "none"


class ReleaseMetadata(BaseModel):
    """The reserved [tool.release-train] table of a package manifest.

    Attributes:
        schema_version: Layout version of this table (TOML key ``schema``).
        reference_commit: Hash of the commit the package was last published
                          from (TOML key ``reference-commit``).
        assets: Paths, relative to the package directory, copied into the
                build output directory before publishing.
        out_dir: Build output directory relative to the package directory
                 (TOML key ``out-dir``).
    """

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(default=METADATA_SCHEMA_VERSION, alias="schema")
    reference_commit: str | None = Field(default=None, alias="reference-commit")
    assets: list[str] = Field(default_factory=list)
    out_dir: str | None = Field(default=None, alias="out-dir")


class PackageDescriptor(BaseModel):
    """A package as described by its pyproject.toml.

    Attributes:
        name: Canonical (PEP 503) project name; empty when missing.
        version: Version string from [project].version; empty when missing.
        dependencies: Canonical dependency name → version specifier, collected
                      from runtime deps, optional deps and dependency groups.
        metadata: The release-train extension table (defaults when absent).
        metadata_present: Whether the manifest actually carries the table.
    """

    name: str = ""
    version: str = ""
    dependencies: dict[str, str] = Field(default_factory=dict)
    metadata: ReleaseMetadata = Field(default_factory=ReleaseMetadata)
    metadata_present: bool = False


class Sibling(BaseModel):
    """A package found in a monorepo folder.

    Attributes:
        path: Package directory.
        package: Descriptor loaded from its pyproject.toml.
    """

    path: Path
    package: PackageDescriptor

    @property
    def label(self) -> str:
        return self.package.name or self.path.name


class CommitRecord(BaseModel):
    """A single commit read from version control."""

    model_config = ConfigDict(frozen=True)

    hash: str
    subject: str
    body: str = ""
    timestamp: datetime


class CommitHistory(BaseModel):
    """Commits between a reference commit (exclusive) and HEAD (inclusive).

    Commits are ordered newest first, the way ``git log`` prints them.
    """

    model_config = ConfigDict(frozen=True)

    commits: tuple[CommitRecord, ...] = ()
    total: int = 0

    @property
    def latest(self) -> CommitRecord | None:
        return self.commits[0] if self.commits else None


class ReferenceCommit(BaseModel):
    """The commit a batch release counts changes from, with its history length."""

    model_config = ConfigDict(frozen=True)

    hash: str
    total: int


class GreatestRelease(BaseModel):
    """Baseline version and reference commit shared by every sibling in a batch."""

    model_config = ConfigDict(frozen=True)

    greatest_version: str
    reference_commit: ReferenceCommit


class PublishResult(BaseModel):
    """Outcome of one publish pipeline run.

    Attributes:
        name: Package name (directory name when the manifest had none).
        old_version: Version stored before the run.
        new_version: Version written by the run.
        reference_commit: HEAD hash recorded in the manifest.
        out_dir: Output directory the assets were staged into.
        published: Whether the publish command ran successfully.
        skipped: True when a soft precondition failure abandoned the package.
    """

    name: str
    old_version: str = ""
    new_version: str = ""
    reference_commit: str | None = None
    out_dir: str | None = None
    published: bool = False
    skipped: bool = False
