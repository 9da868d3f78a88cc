"""Dependency cycle checks.

Before a manifest is rewritten, the package is checked for the two cycles
that can be seen from its own manifest and its direct local dependencies:
a package depending on itself, and two local packages depending on each
other. Longer cycles (a → b → c → a) are not detected.
"""

from __future__ import annotations

from pathlib import Path

from .errors import CircularDependencyError
from .interfaces import Logger, ManifestStore
from .models import PackageDescriptor
from .toml import MANIFEST_NAME


def check_self_cycle(package: PackageDescriptor) -> None:
    """Raise if a package lists itself among its dependencies."""
    if package.name in package.dependencies:
        raise CircularDependencyError(f"{package.name} depends on itself")


def build_local_graph(
    sources: dict[str, Path], store: ManifestStore, logger: Logger
) -> dict[str, PackageDescriptor]:
    """Load the manifest of every locally path-mapped dependency.

    Args:
        sources: Dependency name → package directory.

    Returns:
        Map of dependency name → its descriptor. Directories without a
        pyproject.toml are skipped.
    """
    graph: dict[str, PackageDescriptor] = {}
    for name, directory in sources.items():
        manifest = directory / MANIFEST_NAME
        if not manifest.exists():
            logger.debug(f"No {MANIFEST_NAME} for local dependency {name} at {directory}")
            continue
        graph[name] = store.load(manifest)
    return graph


def check_mutual_cycles(
    package: PackageDescriptor, graph: dict[str, PackageDescriptor]
) -> None:
    """Raise if a local dependency of ``package`` depends back on it."""
    for dep_name in package.dependencies:
        dep = graph.get(dep_name)
        if dep is not None and package.name in dep.dependencies:
            raise CircularDependencyError(
                f"{package.name} depends on {dep_name} which depends on {package.name}"
            )


def validate_dependencies(
    package: PackageDescriptor,
    manifest_path: Path,
    store: ManifestStore,
    logger: Logger,
) -> None:
    """Check a package for self and mutual dependency cycles.

    The mutual check needs [tool.uv.sources] to know which dependencies are
    local; without it only the self check runs.

    Raises:
        CircularDependencyError: If either kind of cycle is found.
    """
    check_self_cycle(package)

    sources = store.local_sources(manifest_path)
    if sources is None:
        logger.warn(
            "No [tool.uv.sources] table found, local dependencies will not be "
            "checked for circular references"
        )
        return

    local = {name: path for name, path in sources.items() if name in package.dependencies}
    check_mutual_cycles(package, build_local_graph(local, store, logger))
    logger.debug(f"No circular dependencies among {len(local)} local dependencies")
