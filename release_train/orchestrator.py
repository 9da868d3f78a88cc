"""Isolated and monorepo release runs.

Isolated mode releases the single package named by ``--target``. Monorepo
mode releases every package directory directly under ``--folder``:

1. Discover the sibling packages
2. Reconcile them into one greatest release (shared baseline and window)
3. Ask once whether to continue when there are no new commits
4. Build every sibling in parallel (optional)
5. Release every sibling in parallel with the greatest release injected

One broken sibling does not stop the others; failures are collected and
reported together once every sibling has finished. Siblings that were
already published are not rolled back.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .config import PipelineOverrides, ReleaseConfig
from .errors import BatchFailure, ManifestError, ReleaseTrainError
from .git import GitLog
from .interfaces import Builder, CommitSource, Confirm, Logger, ManifestStore, Publisher
from .models import PublishResult, Sibling
from .pipeline import PublishPipeline, ensure_commits_or_continue
from .reconcile import Reconciliation, reconcile_release
from .shell import ConsoleLogger, ShellBuilder, ShellPublisher, click_confirm
from .toml import MANIFEST_NAME, PyprojectStore


def discover_siblings(
    folder: Path, store: ManifestStore, logger: Logger
) -> tuple[list[Sibling], dict[str, ReleaseTrainError]]:
    """Load every package directory directly under ``folder``.

    Directories are visited in sorted order, which is also the order ties
    are broken in during reconciliation.

    Returns:
        The loaded siblings, and the directories whose manifest could not be
        read keyed by directory name.
    """
    logger.step(f"Discovering packages in {folder}")

    if not folder.is_dir():
        raise ManifestError(f"{folder} is not a directory")
    dirs = sorted(
        p for p in folder.iterdir() if p.is_dir() and (p / MANIFEST_NAME).exists()
    )
    if not dirs:
        raise ManifestError(f"No packages found in {folder}")

    siblings: list[Sibling] = []
    unreadable: dict[str, ReleaseTrainError] = {}
    for d in dirs:
        try:
            package = store.load(d / MANIFEST_NAME)
        except ManifestError as exc:
            logger.warn(str(exc))
            unreadable[d.name] = exc
            continue
        siblings.append(Sibling(path=d, package=package))
        logger.info(f"{package.name or '<unnamed>'} {package.version or '<none>'} ({d})")

    return siblings, unreadable


class Orchestrator:
    """Chooses between isolated and monorepo mode and wires the pipelines."""

    def __init__(
        self,
        config: ReleaseConfig,
        *,
        commits: CommitSource | None = None,
        store: ManifestStore | None = None,
        builder: Builder | None = None,
        publisher: Publisher | None = None,
        confirm: Confirm | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config
        self.commits = commits or GitLog()
        self.store = store or PyprojectStore()
        self.builder = builder or ShellBuilder(config.build_command)
        self.publisher = publisher or ShellPublisher(config.publish_command)
        self.confirm = confirm or click_confirm
        self.logger = logger or ConsoleLogger(verbose=config.debug)

    def pipeline(
        self, overrides: PipelineOverrides | None = None, logger: Logger | None = None
    ) -> PublishPipeline:
        return PublishPipeline(
            self.config,
            overrides,
            commits=self.commits,
            store=self.store,
            builder=self.builder,
            publisher=self.publisher,
            confirm=self.confirm,
            logger=logger or self.logger,
        )

    def run(self) -> list[PublishResult]:
        if self.config.folder is not None:
            return self.run_monorepo(self.config.folder)
        if self.config.target is not None:
            return [self.run_isolated()]
        raise ManifestError("Either a target pyproject.toml or a folder is required")

    def run_isolated(self) -> PublishResult:
        """Release the single package named by the configuration's target."""
        self.logger.step(f"Publishing {self.config.target}")
        return self.pipeline().run()

    def run_monorepo(self, folder: Path) -> list[PublishResult]:
        """Release every package under ``folder`` against one greatest release.

        Raises:
            PublishCancelled: No commits anywhere and the operator declined.
            BatchFailure: At least one sibling failed; the others still ran.
        """
        siblings, failures = discover_siblings(folder, self.store, self.logger)
        reconciliation = reconcile_release(siblings, self.commits, self.logger)

        ensure_commits_or_continue(
            reconciliation.greatest_release.reference_commit.total,
            skip_question=self.config.force_continue,
            confirm=self.confirm,
            logger=self.logger,
        )

        if self.config.build:
            siblings = self.build_all(siblings, failures)

        results = self.release_all(siblings, reconciliation, failures)

        self.logger.step("Summary")
        for result in results:
            if result.skipped:
                self.logger.info(f"{result.name}: skipped")
            else:
                state = "published" if result.published else "not published"
                self.logger.info(
                    f"{result.name}: {result.old_version} → {result.new_version} ({state})"
                )
        if failures:
            raise BatchFailure(failures)
        return results

    def build_all(
        self, siblings: list[Sibling], failures: dict[str, ReleaseTrainError]
    ) -> list[Sibling]:
        """Build every releasable sibling in parallel, once, before fan-out.

        A sibling whose build fails is recorded in ``failures`` and left out
        of the release. Siblings lacking a name or version are not built;
        their pipeline skips them.
        """
        self.logger.step(f"Building {len(siblings)} packages")

        def build(sibling: Sibling) -> None:
            if not (sibling.package.name and sibling.package.version):
                return
            pipeline = self.pipeline(
                PipelineOverrides(target=sibling.path / MANIFEST_NAME),
                self.logger.for_package(sibling.label),
            )
            pipeline.build(pipeline.resolve_out_dir(sibling.package))

        built: list[Sibling] = []
        with ThreadPoolExecutor(max_workers=len(siblings) or 1) as pool:
            futures = [(s, pool.submit(build, s)) for s in siblings]
            for sibling, future in futures:
                try:
                    future.result()
                except ReleaseTrainError as exc:
                    self.logger.error(f"{sibling.label}: {exc}")
                    failures[sibling.label] = exc
                else:
                    built.append(sibling)
        return built

    def release_all(
        self,
        siblings: list[Sibling],
        reconciliation: Reconciliation,
        failures: dict[str, ReleaseTrainError],
    ) -> list[PublishResult]:
        """Run one pipeline per sibling, all at once, sharing the greatest release."""
        shared = PipelineOverrides(
            soft_error=True,
            build=False,
            omit_continue_question=True,
            latest_commit=reconciliation.latest_commit,
            greatest_release=reconciliation.greatest_release,
            commit_history=reconciliation.commit_history,
        )

        def release(sibling: Sibling) -> PublishResult:
            overrides = shared.model_copy(update={"target": sibling.path / MANIFEST_NAME})
            return self.pipeline(overrides, self.logger.for_package(sibling.label)).run()

        results: list[PublishResult] = []
        with ThreadPoolExecutor(max_workers=len(siblings) or 1) as pool:
            futures = [(s, pool.submit(release, s)) for s in siblings]
            for sibling, future in futures:
                try:
                    results.append(future.result())
                except ReleaseTrainError as exc:
                    self.logger.error(f"{sibling.label}: {exc}")
                    failures[sibling.label] = exc
        return results
