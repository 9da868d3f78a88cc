"""Run configuration.

A ReleaseConfig is built once from the command line and passed, unchanged,
to the orchestrator and every pipeline it creates. Per-pipeline differences
in monorepo mode travel separately as PipelineOverrides.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

from .models import CommitHistory, CommitRecord, GreatestRelease
from .shell import DEFAULT_BUILD_COMMAND, DEFAULT_PUBLISH_COMMAND


class ReleaseConfig(BaseModel):
    """Options for a release run.

    Attributes:
        target: Path to the pyproject.toml of the package (isolated mode).
        folder: Directory whose subdirectories are sibling packages
                (monorepo mode).
        tag: Distribution tag handed to the publish command.
        build: Run the build command before staging assets.
        publish: Run the publish command. When off, versions are not bumped.
        version_bump: Bump the version from commit messages.
        force_continue: Carry on without asking when there are no new commits.
        stage_assets: Copy assets and the manifest into the output directory.
                      Turn off when the build tool already stages them.
        out_dir: Output directory overriding each manifest's ``out-dir``.
        build_command: Build command template (``{out_dir}`` placeholder).
        publish_command: Publish command template (``{out_dir}``, ``{tag}``).
        debug: Print debug messages.
    """

    model_config = ConfigDict(frozen=True)

    target: Path | None = None
    folder: Path | None = None
    tag: str = "latest"
    build: bool = True
    publish: bool = True
    version_bump: bool = True
    force_continue: bool = False
    stage_assets: bool = True
    out_dir: Path | None = None
    build_command: str = DEFAULT_BUILD_COMMAND
    publish_command: str = DEFAULT_PUBLISH_COMMAND
    debug: bool = False


class PipelineOverrides(BaseModel):
    """Values the monorepo orchestrator injects into a sibling's pipeline.

    Attributes:
        target: The sibling's pyproject.toml, replacing ReleaseConfig.target.
        soft_error: Demote precondition failures to a warning and skip.
        build: Replaces ReleaseConfig.build when set.
        latest_commit: HEAD commit, already resolved by the batch.
        greatest_release: Shared baseline version and reference commit.
        commit_history: History since the shared reference commit.
        omit_continue_question: The batch already passed the commit gate.
    """

    model_config = ConfigDict(frozen=True)

    target: Path | None = None
    soft_error: bool = False
    build: bool | None = None
    latest_commit: CommitRecord | None = None
    greatest_release: GreatestRelease | None = None
    commit_history: CommitHistory | None = None
    omit_continue_question: bool = False
