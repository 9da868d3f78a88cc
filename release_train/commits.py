"""Conventional-commit analysis.

Decides how far a package's version should move based on markers found in
the commits since its last release.
"""

from __future__ import annotations

from collections.abc import Iterable

from .models import BumpDecision, CommitHistory, CommitRecord

BREAKING_MARKER = "BREAKING CHANGE:"
FEATURE_MARKER = "feat:"
FIX_MARKER = "fix:"


def _mentions(commit: CommitRecord, marker: str) -> bool:
    # Subject and body are checked independently
    return marker in commit.subject or marker in commit.body


def _any_mentions(commits: Iterable[CommitRecord], marker: str) -> bool:
    return any(_mentions(c, marker) for c in commits)


def analyze_commits(history: CommitHistory) -> BumpDecision:
    """Classify a commit range into a bump decision.

    Precedence is global across the whole range: a single breaking change
    anywhere means MAJOR, regardless of what the other commits say; then
    any ``feat:`` means MINOR; then any ``fix:`` means PATCH.

    Args:
        history: Commits since the package's reference commit.

    Returns:
        The strongest bump requested by any commit, or NONE.
    """
    commits = history.commits
    if _any_mentions(commits, BREAKING_MARKER):
        return BumpDecision.MAJOR
    if _any_mentions(commits, FEATURE_MARKER):
        return BumpDecision.MINOR
    if _any_mentions(commits, FIX_MARKER):
        return BumpDecision.PATCH
    return BumpDecision.NONE
