"""TOML reading and writing utilities.

Uses tomlkit to preserve formatting and comments when modifying pyproject.toml
files. This is important for maintaining readable, diff-friendly files.

A package manifest is its pyproject.toml; release state lives in the
reserved [tool.release-train] table.
"""

from __future__ import annotations

import glob
from pathlib import Path
from typing import Any, cast

import tomlkit
from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name
from pydantic import ValidationError
from tomlkit.exceptions import TOMLKitError

from .errors import ManifestError
from .models import METADATA_SCHEMA_VERSION, PackageDescriptor, ReleaseMetadata

MANIFEST_NAME = "pyproject.toml"
EXTENSION_KEY = "release-train"


def load_pyproject(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse a pyproject.toml file.

    Returns a TOMLDocument that preserves formatting when modified and saved.

    Raises:
        ManifestError: If the file is missing or is not valid TOML.
    """
    try:
        return tomlkit.parse(path.read_text())
    except OSError as exc:
        raise ManifestError(f"Cannot read {path}: {exc}") from exc
    except TOMLKitError as exc:
        raise ManifestError(f"Invalid TOML in {path}: {exc}") from exc


def save_pyproject(path: Path, doc: tomlkit.TOMLDocument) -> None:
    """Save a TOMLDocument back to disk, preserving original formatting."""
    path.write_text(tomlkit.dumps(doc))


def get_project_name(doc: tomlkit.TOMLDocument) -> str:
    """Extract the canonical package name from [project].name.

    Names are normalized per PEP 503 (lowercase, hyphens instead of
    underscores) for consistent comparison. Returns "" when unset.
    """
    name = doc.get("project", {}).get("name")
    return canonicalize_name(str(name)) if name else ""


def get_project_version(doc: tomlkit.TOMLDocument) -> str:
    """Extract version from [project].version, or "" when unset."""
    version = doc.get("project", {}).get("version")
    return str(version) if version else ""


def get_all_dependency_strings(doc: tomlkit.TOMLDocument) -> list[str]:
    """Collect all dependency strings from a pyproject.toml.

    Gathers dependencies from three locations:
    - [project].dependencies (main runtime deps)
    - [project].optional-dependencies.* (extras like [dev], [test])
    - [dependency-groups].* (PEP 735 dependency groups)

    Returns raw PEP 508 strings like "requests>=2.0" or "pkg[extra]~=1.0".
    Include-group tables inside dependency groups are ignored.
    """
    project = doc.get("project", {})
    deps: list[str] = [str(d) for d in project.get("dependencies", [])]
    for group_deps in project.get("optional-dependencies", {}).values():
        deps.extend(str(d) for d in group_deps)
    for group_deps in doc.get("dependency-groups", {}).values():
        deps.extend(str(d) for d in group_deps if isinstance(d, str))
    return deps


def parse_requirements(dep_strings: list[str], path: Path) -> dict[str, Requirement]:
    """Parse PEP 508 strings into requirements keyed by canonical name.

    The first occurrence of a name wins.

    Raises:
        ManifestError: If a dependency string is not valid PEP 508.
    """
    result: dict[str, Requirement] = {}
    for dep_str in dep_strings:
        try:
            req = Requirement(dep_str)
        except InvalidRequirement as exc:
            raise ManifestError(
                f"Invalid dependency {dep_str!r} in {path}: {exc}"
            ) from exc
        result.setdefault(canonicalize_name(req.name), req)
    return result


def get_runtime_requirements(
    doc: tomlkit.TOMLDocument, path: Path
) -> dict[str, Requirement]:
    """Requirements listed in [project].dependencies, keyed by canonical name."""
    deps = doc.get("project", {}).get("dependencies", [])
    return parse_requirements([str(d) for d in deps], path)


def get_dependency_map(doc: tomlkit.TOMLDocument, path: Path) -> dict[str, str]:
    """Map each dependency's canonical name to its version specifier.

    Runtime deps take priority over extras and groups. Unconstrained deps
    map to "".

    Raises:
        ManifestError: If a dependency string is not valid PEP 508.
    """
    reqs = parse_requirements(get_all_dependency_strings(doc), path)
    return {name: str(req.specifier) for name, req in reqs.items()}


def get_release_metadata(
    doc: tomlkit.TOMLDocument, path: Path
) -> tuple[ReleaseMetadata, bool]:
    """Read the [tool.release-train] table.

    Returns:
        The parsed metadata (defaults when the table is absent) and whether
        the table was present.
    """
    table = doc.get("tool", {}).get(EXTENSION_KEY)
    if table is None:
        return ReleaseMetadata(), False
    try:
        return ReleaseMetadata.model_validate(table.unwrap()), True
    except ValidationError as exc:
        raise ManifestError(
            f"Invalid [tool.{EXTENSION_KEY}] table in {path}: {exc}"
        ) from exc


def get_workspace_member_globs(doc: tomlkit.TOMLDocument) -> list[str]:
    """Extract workspace member glob patterns from [tool.uv.workspace].

    These patterns (e.g., "packages/*", "libs/*") define which directories
    contain workspace packages. Returns [] when no workspace is declared.
    """
    members = doc.get("tool", {}).get("uv", {}).get("workspace", {}).get("members")
    return [str(m) for m in members] if members else []


def find_workspace_root(start: Path) -> Path | None:
    """Walk up from ``start`` to the nearest directory declaring a uv workspace."""
    for candidate in [start, *start.parents]:
        pyproject = candidate / MANIFEST_NAME
        if pyproject.exists() and get_workspace_member_globs(
            load_pyproject(pyproject)
        ):
            return candidate
    return None


def workspace_members(root: Path) -> dict[str, Path]:
    """Map workspace member names to their directories.

    Expands the [tool.uv.workspace].members globs of ``root`` and reads the
    project name of every match that has a pyproject.toml.
    """
    members: dict[str, Path] = {}
    for pattern in get_workspace_member_globs(load_pyproject(root / MANIFEST_NAME)):
        for match in sorted(glob.glob(str(root / pattern))):
            p = Path(match)
            if (p / MANIFEST_NAME).exists():
                name = get_project_name(load_pyproject(p / MANIFEST_NAME))
                if name:
                    members[name] = p.resolve()
    return members


class PyprojectStore:
    """Reads and writes package manifests (pyproject.toml) with tomlkit."""

    def load(self, path: Path) -> PackageDescriptor:
        doc = load_pyproject(path)
        metadata, present = get_release_metadata(doc, path)
        return PackageDescriptor(
            name=get_project_name(doc),
            version=get_project_version(doc),
            dependencies=get_dependency_map(doc, path),
            metadata=metadata,
            metadata_present=present,
        )

    def save_release(self, path: Path, version: str, reference_commit: str) -> None:
        """Update [project].version and the stored reference commit.

        Every other key, including the rest of [tool.release-train], is left
        as it was.
        """
        doc = load_pyproject(path)
        # Cast needed because tomlkit types are complex unions
        project = cast(dict[str, Any], doc["project"])
        project["version"] = version

        ext = doc.get("tool", {}).get(EXTENSION_KEY)
        if ext is not None:
            ext["reference-commit"] = reference_commit
        else:
            ext = tomlkit.table()
            ext["schema"] = METADATA_SCHEMA_VERSION
            ext["reference-commit"] = reference_commit
            if "tool" in doc:
                doc["tool"][EXTENSION_KEY] = ext
            else:
                tool = tomlkit.table(is_super_table=True)
                tool[EXTENSION_KEY] = ext
                doc["tool"] = tool

        save_pyproject(path, doc)

    def save_dependencies(self, path: Path, requirements: list[str]) -> None:
        """Replace [project].dependencies, one requirement per line."""
        doc = load_pyproject(path)
        if "project" not in doc:
            raise ManifestError(f"No [project] table in {path}")
        project = cast(dict[str, Any], doc["project"])

        deps = tomlkit.array()
        deps.extend(requirements)
        if requirements:
            deps.multiline(True)
        project["dependencies"] = deps
        save_pyproject(path, doc)

    def local_sources(self, path: Path) -> dict[str, Path] | None:
        """Resolve [tool.uv.sources] entries that point at local packages.

        ``path = "..."`` sources resolve relative to the package directory,
        ``workspace = true`` sources through the enclosing uv workspace.
        Git, URL and index sources are not local and are left out.
        """
        doc = load_pyproject(path)
        sources = doc.get("tool", {}).get("uv", {}).get("sources")
        if sources is None:
            return None

        package_dir = path.parent.resolve()
        members: dict[str, Path] | None = None
        resolved: dict[str, Path] = {}
        for name, source in sources.items():
            if not isinstance(source, dict):
                continue
            key = canonicalize_name(name)
            if "path" in source:
                resolved[key] = (package_dir / str(source["path"])).resolve()
            elif source.get("workspace"):
                if members is None:
                    root = find_workspace_root(package_dir)
                    members = workspace_members(root) if root else {}
                if key in members:
                    resolved[key] = members[key]
        return resolved
