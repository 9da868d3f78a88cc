"""Dependency mapping: derive [project].dependencies from a package's imports.

Every absolute import in the package's source files (tests excluded) names
a dependency, unless it is part of the standard library or of the package
itself. Each one is then pinned:

1. From the base manifest (typically the workspace root), reusing its
   requirement string as-is
2. From [tool.uv.sources], as a compatible range on the local package's
   current version
3. Otherwise a warning is logged and any existing entry is kept

The result is checked for dependency cycles before it is written back.
"""

from __future__ import annotations

import ast
import sys
from pathlib import Path

from packaging.utils import canonicalize_name

from .errors import ManifestError
from .graph import validate_dependencies
from .interfaces import Logger, ManifestStore
from .toml import (
    MANIFEST_NAME,
    get_all_dependency_strings,
    get_project_version,
    get_runtime_requirements,
    load_pyproject,
    parse_requirements,
)
from .versions import compatible_range

IGNORED_DIRS = {"tests", "test", "__pycache__", "build", "dist"}


def is_test_file(path: Path) -> bool:
    name = path.name
    return name.startswith("test_") or name.endswith("_test.py") or name == "conftest.py"


def iter_source_files(package_dir: Path) -> list[Path]:
    """Python files of a package, skipping tests, build output and hidden dirs."""
    files: list[Path] = []
    for path in sorted(package_dir.rglob("*.py")):
        parents = path.relative_to(package_dir).parts[:-1]
        if any(part.startswith(".") or part in IGNORED_DIRS for part in parents):
            continue
        if is_test_file(path):
            continue
        files.append(path)
    return files


def parse_imports(path: Path) -> set[str]:
    """Top-level module names of the absolute imports in a Python file.

    Raises:
        ManifestError: If the file cannot be read or parsed.
    """
    try:
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    except (OSError, UnicodeDecodeError, SyntaxError) as exc:
        raise ManifestError(f"Cannot parse {path}: {exc}") from exc

    names: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.update(alias.name.partition(".")[0] for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and not node.level and node.module:
            names.add(node.module.partition(".")[0])
    return names


def local_modules(package_dir: Path, files: list[Path]) -> set[str]:
    """Top-level modules the package provides itself (flat or src/ layout)."""
    modules: set[str] = set()
    for path in files:
        parts = path.relative_to(package_dir).parts
        if parts[0] == "src" and len(parts) > 1:
            parts = parts[1:]
        modules.add(parts[0].removesuffix(".py"))
    return modules


def collect_imports(package_dir: Path, logger: Logger) -> set[str]:
    """Canonical names of the third-party and sibling modules a package imports.

    Files that fail to parse are reported and skipped.
    """
    files = iter_source_files(package_dir)
    logger.info(f"Checking {len(files)} files for dependencies")

    found: set[str] = set()
    for path in files:
        try:
            imports = parse_imports(path)
        except ManifestError as exc:
            logger.warn(str(exc))
            continue
        logger.debug(f"{path.relative_to(package_dir)}: {', '.join(sorted(imports))}")
        found |= imports

    own = local_modules(package_dir, files)
    external = found - own - set(sys.stdlib_module_names)
    return {canonicalize_name(name) for name in external}


def local_requirement(name: str, package_dir: Path) -> str:
    """Requirement on a local package at its current version, or unpinned."""
    manifest = package_dir / MANIFEST_NAME
    if not manifest.exists():
        return name
    version = get_project_version(load_pyproject(manifest))
    return f"{name}{compatible_range(version)}" if version else name


def map_dependencies(
    target: Path, base: Path, store: ManifestStore, logger: Logger
) -> list[str]:
    """Rewrite a package's [project].dependencies from its imports.

    Args:
        target: The package's pyproject.toml.
        base: A pyproject.toml whose requirement strings are reused for
              third-party dependencies (runtime, extras and groups).

    Returns:
        The requirement strings written, sorted by name.

    Raises:
        ManifestError: If either manifest cannot be read.
        CircularDependencyError: If the mapped dependencies form a cycle.
    """
    logger.step(f"Mapping dependencies of {target}")

    logger.info(f"Loading dependencies from {target}")
    existing = get_runtime_requirements(load_pyproject(target), target)
    logger.info(f"Loading dependencies from {base}")
    base_reqs = parse_requirements(get_all_dependency_strings(load_pyproject(base)), base)

    logger.info("Loading local dependencies")
    sources = store.local_sources(target)
    if sources is None:
        logger.warn(
            "No [tool.uv.sources] table found, local dependencies will not be resolved"
        )
    else:
        logger.info(f"Found {len(sources)} local dependencies, resolving versions")

    imports = collect_imports(target.parent, logger)

    resolved: dict[str, str] = {}
    for name in sorted(set(existing) | imports):
        if name in base_reqs:
            resolved[name] = str(base_reqs[name])
        elif sources is not None and name in sources:
            resolved[name] = local_requirement(name, sources[name])
        else:
            if sources is None:
                logger.error(
                    f'Cannot resolve local dependency "{name}" without a '
                    "[tool.uv.sources] table"
                )
            else:
                logger.warn(
                    f'Could not find dependency "{name}" in {base} or the local sources'
                )
            if name in existing:
                resolved[name] = str(existing[name])

    requirements = list(resolved.values())

    package = store.load(target)
    mapped = {
        name: str(req.specifier)
        for name, req in parse_requirements(requirements, target).items()
    }
    candidate = package.model_copy(
        update={"dependencies": {**package.dependencies, **mapped}}
    )
    validate_dependencies(candidate, target, store, logger)

    logger.info(f"Writing {len(requirements)} dependencies to {target}")
    store.save_dependencies(target, requirements)
    return requirements
