"""Exception hierarchy for release-train.

Every failure the release engine can report derives from ReleaseTrainError,
so the CLI can turn any of them into a clean non-zero exit with a
human-readable message.
"""

from __future__ import annotations


class ReleaseTrainError(Exception):
    """Base class for all release-train errors."""


class PreconditionError(ReleaseTrainError):
    """The manifest is missing a name or a version."""


class PublishCancelled(ReleaseTrainError):
    """No commits since the reference commit and the operator declined to continue."""


class CircularDependencyError(ReleaseTrainError):
    """A package depends on itself, directly or through one local sibling."""


class BuildFailure(ReleaseTrainError):
    """The external build exited with a non-zero status."""


class PublishFailure(ReleaseTrainError):
    """The external publish exited with a non-zero status."""


class InvalidVersionError(ReleaseTrainError, ValueError):
    """A version string is not a valid semantic version."""


class GitError(ReleaseTrainError):
    """A git query failed or returned nothing usable."""


class ManifestError(ReleaseTrainError):
    """A pyproject.toml could not be read or lacks a [project] table."""


class BatchFailure(ReleaseTrainError):
    """One or more sibling pipelines failed during a monorepo run.

    Attributes:
        failures: Map of package name (or directory name, when the manifest
                  could not be read) to the error that stopped it.
    """

    def __init__(self, failures: dict[str, ReleaseTrainError]) -> None:
        self.failures = failures
        lines = "\n".join(f"  - {name}: {err}" for name, err in failures.items())
        super().__init__(f"{len(failures)} package(s) failed to release:\n{lines}")
