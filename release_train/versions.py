"""Version parsing and bumping utilities.

Versions are strict MAJOR.MINOR.PATCH semantic versions (optionally with
prerelease/build metadata). Anything semver rejects raises
InvalidVersionError.
"""

from __future__ import annotations

import semver

from .errors import InvalidVersionError
from .models import BumpDecision


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Raises:
        InvalidVersionError: If the string is not a valid semantic version.
    """
    try:
        return semver.Version.parse(version_str.strip())
    except (TypeError, ValueError) as exc:
        raise InvalidVersionError(
            f"Invalid semantic version: {version_str!r}"
        ) from exc


def bump_version(version_str: str, decision: BumpDecision) -> str:
    """Apply a bump decision to a version string.

    Examples:
        ("1.2.3", MAJOR) → "2.0.0"
        ("1.2.3", MINOR) → "1.3.0"
        ("1.2.3", PATCH) → "1.2.4"
        ("1.2.3", NONE) → "1.2.3"
    """
    version = parse_version(version_str)
    if decision is BumpDecision.MAJOR:
        return str(version.bump_major())
    if decision is BumpDecision.MINOR:
        return str(version.bump_minor())
    if decision is BumpDecision.PATCH:
        return str(version.bump_patch())
    return str(version)


def resolve_version(
    current: str, decision: BumpDecision, baseline: str | None = None
) -> str:
    """Compute the next version of a package.

    When a baseline is given (the batch's greatest version), it replaces
    the current version before bumping, so every sibling in a batch lands on
    the same version even if their stored versions had drifted apart.

    Examples:
        resolve_version("1.0.0", PATCH, baseline="2.0.0") → "2.0.1"
    """
    parse_version(current)
    return bump_version(baseline if baseline is not None else current, decision)


def max_version(a: str, b: str) -> str:
    """Return the greater of two versions, keeping ``a`` when they compare equal."""
    return b if parse_version(b) > parse_version(a) else a


def compatible_range(version_str: str) -> str:
    """Specifier accepting ``version_str`` and later versions with the same API.

    The upper bound is the next bump of the leftmost non-zero component.

    Examples:
        "1.2.3" → ">=1.2.3,<2.0.0"
        "0.4.1" → ">=0.4.1,<0.5.0"
        "0.0.7" → ">=0.0.7,<0.0.8"
    """
    version = parse_version(version_str)
    if version.major:
        upper = version.bump_major()
    elif version.minor:
        upper = version.bump_minor()
    else:
        upper = version.bump_patch()
    return f">={version},<{upper}"
