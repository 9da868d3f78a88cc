"""Greatest-release reconciliation for monorepo batches.

Sibling packages released together must agree on two things: the commit
their change window starts from, and the version they bump from. The
reconciler picks the sibling with the longest unpublished history as the
reference (so no sibling's pending changes are cut off) and the highest
stored version as the shared baseline.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from pydantic import BaseModel, ConfigDict

from .errors import PreconditionError
from .interfaces import CommitSource, Logger
from .models import (
    CommitHistory,
    CommitRecord,
    GreatestRelease,
    ReferenceCommit,
    Sibling,
)
from .versions import max_version


class Reconciliation(BaseModel):
    """Everything a batch computes once and hands to every sibling pipeline.

    Attributes:
        greatest_release: Shared baseline version and reference commit.
        commit_history: History from the shared reference commit to HEAD.
        latest_commit: The HEAD commit the batch was reconciled against.
    """

    model_config = ConfigDict(frozen=True)

    greatest_release: GreatestRelease
    commit_history: CommitHistory
    latest_commit: CommitRecord


def reconcile_release(
    siblings: list[Sibling],
    commits: CommitSource,
    logger: Logger,
    *,
    latest_commit: CommitRecord | None = None,
) -> Reconciliation:
    """Compute the greatest release of a set of sibling packages.

    Each sibling's history is counted from its stored reference commit, or
    from HEAD when it has none. The queries run in parallel. The sibling
    with the strictly greatest count wins; on a tie the first one in
    ``siblings`` order is kept. The baseline version is the semver maximum
    of the stored versions, again keeping the first on equality.

    Siblings without a name or version are left out with a warning; their
    own pipeline reports the problem.

    Args:
        siblings: Packages of the batch, in iteration order.
        commits: Commit history source.
        logger: Where progress is reported.
        latest_commit: HEAD, when the caller already resolved it.

    Raises:
        PreconditionError: If no sibling has both a name and a version.
        InvalidVersionError: If a stored version is not semantic.
    """
    logger.step("Reconciling greatest release")

    eligible: list[Sibling] = []
    for sibling in siblings:
        if sibling.package.name and sibling.package.version:
            eligible.append(sibling)
        else:
            logger.warn(f"{sibling.label}: missing name or version, not reconciled")
    if not eligible:
        raise PreconditionError("No package with a name and a version to reconcile")

    head = latest_commit or commits.latest(eligible[0].path)
    references = [s.package.metadata.reference_commit or head.hash for s in eligible]

    with ThreadPoolExecutor(max_workers=len(eligible)) as pool:
        histories = list(
            pool.map(
                lambda s, ref: commits.history(s.path, ref), eligible, references
            )
        )

    best = 0
    for i, history in enumerate(histories):
        logger.info(
            f"{eligible[i].label} {eligible[i].package.version}: "
            f"{history.total} commits since {references[i]}"
        )
        if history.total > histories[best].total:
            best = i

    greatest_version = eligible[0].package.version
    for sibling in eligible[1:]:
        greatest_version = max_version(greatest_version, sibling.package.version)

    release = GreatestRelease(
        greatest_version=greatest_version,
        reference_commit=ReferenceCommit(
            hash=references[best], total=histories[best].total
        ),
    )
    logger.info(
        f"Greatest release: {release.greatest_version} from {eligible[best].label}'s "
        f"reference commit {release.reference_commit.hash} "
        f"({release.reference_commit.total} commits)"
    )
    return Reconciliation(
        greatest_release=release,
        commit_history=histories[best],
        latest_commit=head,
    )
