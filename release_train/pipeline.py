"""Publish pipeline: verify → history → gate → bump → build → persist → stage → publish.

One PublishPipeline releases one package:
1. Verify the manifest has a name and a version
2. Resolve the reference commit (batch override, stored value, or HEAD)
3. Fetch the commits since the reference commit
4. Stop and ask when there are none, unless told to carry on
5. Bump the version from conventional commit markers
6. Build (optional) while checking for circular dependencies
7. Write the new version and reference commit back to pyproject.toml
8. Copy the declared assets and the manifest into the output directory
9. Publish the output directory

History is fetched and the version computed before the build starts, so
the recorded change window reflects the tree the build was started from.
Nothing is written to the manifest until the dependency check has passed.
"""

from __future__ import annotations

import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .commits import analyze_commits
from .config import PipelineOverrides, ReleaseConfig
from .errors import (
    BuildFailure,
    ManifestError,
    PreconditionError,
    PublishCancelled,
    PublishFailure,
)
from .git import GitLog
from .graph import validate_dependencies
from .interfaces import Builder, CommitSource, Confirm, Logger, ManifestStore, Publisher
from .models import (
    DEFAULT_OUT_DIR,
    BumpDecision,
    CommitHistory,
    CommitRecord,
    PackageDescriptor,
    PublishResult,
)
from .shell import ConsoleLogger, ShellBuilder, ShellPublisher, click_confirm
from .toml import EXTENSION_KEY, MANIFEST_NAME, PyprojectStore
from .versions import parse_version, resolve_version

CONTINUE_QUESTION = "No commits found since reference commit, continue publishing?"


def ensure_commits_or_continue(
    total: int, *, skip_question: bool, confirm: Confirm, logger: Logger
) -> None:
    """Gate a release on there being new commits.

    With zero commits the operator is asked whether to publish anyway,
    unless ``skip_question`` is set (force-continue, or the batch already
    asked).

    Raises:
        PublishCancelled: If the operator declines.
    """
    if total > 0 or skip_question:
        return
    if not confirm(CONTINUE_QUESTION):
        logger.warn("Publishing cancelled")
        raise PublishCancelled("Publishing cancelled: no commits since reference commit")


class PublishPipeline:
    """Releases a single package.

    Collaborators default to the real implementations (git, tomlkit, uv,
    click prompts, console output) and can be replaced for testing.
    """

    def __init__(
        self,
        config: ReleaseConfig,
        overrides: PipelineOverrides | None = None,
        *,
        commits: CommitSource | None = None,
        store: ManifestStore | None = None,
        builder: Builder | None = None,
        publisher: Publisher | None = None,
        confirm: Confirm | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config
        self.overrides = overrides or PipelineOverrides()
        target = self.overrides.target or config.target
        if target is None:
            raise ManifestError("No target pyproject.toml given")
        self.target = Path(target)
        self.origin = self.target.parent
        self.commits = commits or GitLog()
        self.store = store or PyprojectStore()
        self.builder = builder or ShellBuilder(config.build_command)
        self.publisher = publisher or ShellPublisher(config.publish_command)
        self.confirm = confirm or click_confirm
        self.logger = logger or ConsoleLogger(verbose=config.debug)

    @property
    def should_build(self) -> bool:
        if self.overrides.build is not None:
            return self.overrides.build
        return self.config.build

    def run(self) -> PublishResult:
        """Run every stage in order and report what happened.

        Raises:
            PreconditionError: Missing name/version (unless soft_error).
            PublishCancelled: No commits and the operator declined.
            CircularDependencyError: Self or mutual dependency cycle.
            BuildFailure: The build command failed.
            PublishFailure: The publish command failed.
            InvalidVersionError: The stored version is not semantic.
        """
        package = self.store.load(self.target)
        try:
            self.verify_preconditions(package)
        except PreconditionError as exc:
            if not self.overrides.soft_error:
                raise
            self.logger.warn(f"{exc}, skipping {self.origin}")
            return PublishResult(name=package.name or self.origin.name, skipped=True)

        out_dir = self.resolve_out_dir(package)
        latest = self.overrides.latest_commit or self.commits.latest(self.origin)
        reference = self.resolve_reference(package, latest)
        history = self.fetch_history(reference)

        skip_question = (
            self.config.force_continue or self.overrides.omit_continue_question
        )
        ensure_commits_or_continue(
            history.total,
            skip_question=skip_question,
            confirm=self.confirm,
            logger=self.logger,
        )
        new_version = self.bump_version(package, history)

        with ThreadPoolExecutor(max_workers=1) as pool:
            build = pool.submit(self.build, out_dir) if self.should_build else None
            # A cycle raises here; leaving the block still waits for the build
            validate_dependencies(package, self.target, self.store, self.logger)
            if build is not None:
                build.result()

        self.persist(new_version, latest)
        self.stage_assets(package, out_dir)
        published = self.publish(package.name, new_version, out_dir)

        return PublishResult(
            name=package.name,
            old_version=package.version,
            new_version=new_version,
            reference_commit=latest.hash,
            out_dir=str(out_dir),
            published=published,
        )

    def verify_preconditions(self, package: PackageDescriptor) -> None:
        if not package.name:
            raise PreconditionError(f"No name specified in {self.target}")
        if not package.version:
            raise PreconditionError(f"No version specified in {self.target}")
        parse_version(package.version)
        if not package.metadata_present:
            self.logger.warn(
                f"No [tool.{EXTENSION_KEY}] table found in {self.target}, "
                "using default configuration"
            )

    def resolve_out_dir(self, package: PackageDescriptor) -> Path:
        """Output directory: --out-dir, else the manifest's out-dir, else dist/."""
        base = self.config.out_dir or package.metadata.out_dir or DEFAULT_OUT_DIR
        out_dir = (self.origin / base).resolve()
        self.logger.debug(f"Output directory is {out_dir}")
        return out_dir

    def resolve_reference(self, package: PackageDescriptor, latest: CommitRecord) -> str:
        greatest = self.overrides.greatest_release
        if greatest is not None:
            reference = greatest.reference_commit.hash
        elif package.metadata.reference_commit:
            reference = package.metadata.reference_commit
        else:
            self.logger.warn(
                f"No reference commit found in [tool.{EXTENSION_KEY}], "
                "using latest commit"
            )
            reference = latest.hash
        self.logger.info(f"Found reference commit {reference}")
        return reference

    def fetch_history(self, reference: str) -> CommitHistory:
        history = self.overrides.commit_history
        if history is None:
            history = self.commits.history(self.origin, reference)
        self.logger.info(f"Found {history.total} commits since reference commit")
        return history

    def bump_version(self, package: PackageDescriptor, history: CommitHistory) -> str:
        """Compute the next version in memory; nothing is written yet."""
        if not self.config.version_bump:
            self.logger.warn(f"No version bump, current version is v{package.version}")
            return package.version
        if not self.config.publish:
            self.logger.warn("Skipping version bump")
            return package.version

        decision = analyze_commits(history)
        greatest = self.overrides.greatest_release
        baseline = greatest.greatest_version if greatest is not None else None
        new_version = resolve_version(package.version, decision, baseline)

        if decision is BumpDecision.NONE:
            self.logger.info(f"No changes found, version is {new_version}")
        else:
            self.logger.info(
                f"Bumping {decision.value} version: {package.version} → {new_version}"
            )
        return new_version

    def build(self, out_dir: Path) -> None:
        self.logger.info(f"Building {self.origin} ...")
        try:
            code = self.builder.build(self.origin, out_dir)
        except OSError as exc:
            raise BuildFailure(f"Build of {self.origin} could not start: {exc}") from exc
        if code != 0:
            raise BuildFailure(f"Build of {self.origin} failed with code {code}")
        self.logger.info("Build successful")

    def persist(self, new_version: str, latest: CommitRecord) -> None:
        # Moving the reference commit without publishing would drop pending changes
        if not self.config.publish:
            self.logger.info(f"Publishing disabled, {self.target} left unchanged")
            return
        self.logger.info(
            f"Writing version {new_version} and reference commit {latest.hash} "
            f"to {self.target}"
        )
        self.store.save_release(self.target, new_version, latest.hash)

    def stage_assets(self, package: PackageDescriptor, out_dir: Path) -> None:
        """Copy the declared assets, and always the manifest, into ``out_dir``.

        Assets must live inside the package directory. An asset that already
        is its own destination (``out-dir = "."``) is left in place.
        """
        if not self.config.stage_assets:
            self.logger.info("Skipping asset staging")
            return

        self.logger.info("Copying assets to output directory ...")
        package_dir = self.origin.resolve()
        out_dir.mkdir(parents=True, exist_ok=True)
        for asset in [*package.metadata.assets, MANIFEST_NAME]:
            origin = (package_dir / asset).resolve()
            if not origin.is_relative_to(package_dir) or origin == package_dir:
                raise ManifestError(f"Asset {asset!r} is outside {self.origin}")
            destination = out_dir / origin.relative_to(package_dir)
            if destination.resolve() == origin:
                self.logger.debug(f"Asset '{origin}' is already in the output directory")
                continue
            self.logger.debug(f"Copying asset '{origin}' to '{destination}' ...")
            if origin.is_dir():
                shutil.copytree(origin, destination, dirs_exist_ok=True)
            elif origin.is_file():
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(origin, destination)
            else:
                raise ManifestError(f"Asset {asset!r} not found in {self.origin}")
        self.logger.info("Assets copied successfully")

    def publish(self, name: str, version: str, out_dir: Path) -> bool:
        if not self.config.publish:
            self.logger.warn("Skipping publishing")
            return False

        tag = self.config.tag
        self.logger.info(f"Publishing {name}@{version} and {name}@{tag} ...")
        try:
            code = self.publisher.publish(out_dir, tag)
        except OSError as exc:
            raise PublishFailure(
                f"Publishing {name}@{version} could not start: {exc}"
            ) from exc
        if code != 0:
            raise PublishFailure(f"Publishing {name}@{version} failed with code {code}")
        self.logger.info("Package published successfully")
        return True
