"""CLI entry point for release-train."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from release_train.config import ReleaseConfig
from release_train.deps import map_dependencies
from release_train.errors import ReleaseTrainError
from release_train.orchestrator import Orchestrator
from release_train.shell import (
    DEFAULT_BUILD_COMMAND,
    DEFAULT_PUBLISH_COMMAND,
    ConsoleLogger,
)
from release_train.toml import PyprojectStore


def release_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by the publish and batch commands."""
    options = [
        click.option(
            "--build/--no-build",
            default=True,
            show_default=True,
            help="Build the package before publishing.",
        ),
        click.option(
            "-T",
            "--tag",
            default="latest",
            show_default=True,
            help="Distribution tag to publish under.",
        ),
        click.option(
            "-c",
            "--continue",
            "force_continue",
            is_flag=True,
            help="Publish even if there are no commits since the last publish.",
        ),
        click.option(
            "--publish/--no-publish",
            default=True,
            show_default=True,
            help="Publish the package after building.",
        ),
        click.option(
            "--version-bump/--no-version-bump",
            default=True,
            show_default=True,
            help="Bump the version from commit messages before publishing.",
        ),
        click.option(
            "--stage-assets/--no-stage-assets",
            default=True,
            show_default=True,
            help="Copy assets and pyproject.toml into the output directory.",
        ),
        click.option(
            "--out-dir",
            type=click.Path(path_type=Path),
            default=None,
            help="Output directory, relative to each package (default: the "
            "package's out-dir, or dist).",
        ),
        click.option(
            "--build-command",
            default=DEFAULT_BUILD_COMMAND,
            show_default=True,
            help="Build command; {out_dir} is replaced.",
        ),
        click.option(
            "--publish-command",
            default=DEFAULT_PUBLISH_COMMAND,
            show_default=True,
            help="Publish command; {out_dir} and {tag} are replaced.",
        ),
        click.option("-d", "--debug", is_flag=True, help="Enable debug logging."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _done() -> None:
    click.echo(f"\n{'=' * 60}\nDone!\n{'=' * 60}")


def _run(config: ReleaseConfig) -> None:
    try:
        Orchestrator(config).run()
    except ReleaseTrainError as exc:
        raise click.ClickException(str(exc)) from exc
    _done()


@click.group()
@click.version_option(package_name="release-train")
def cli() -> None:
    """Commit-driven versioning and publishing for monorepo packages."""


@cli.command()
@click.option(
    "-t",
    "--target",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="The pyproject.toml of the package to build and publish.",
)
@release_options
def publish(target: Path, **options: Any) -> None:
    """Build and publish a single package."""
    _run(ReleaseConfig(target=target, **options))


@cli.command()
@click.option(
    "-f",
    "--folder",
    required=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Directory whose subdirectories are the packages to release together.",
)
@release_options
def batch(folder: Path, **options: Any) -> None:
    """Build and publish every package in a folder as one release train."""
    _run(ReleaseConfig(folder=folder, **options))


@cli.command("map-dependencies")
@click.option(
    "-t",
    "--target",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="The pyproject.toml whose dependencies are mapped.",
)
@click.option(
    "-b",
    "--base",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="The pyproject.toml whose requirement pins are reused.",
)
@click.option("-d", "--debug", is_flag=True, help="Enable debug logging.")
def map_dependencies_command(target: Path, base: Path, debug: bool) -> None:
    """Write the packages a project imports to its [project].dependencies."""
    try:
        map_dependencies(target, base, PyprojectStore(), ConsoleLogger(verbose=debug))
    except ReleaseTrainError as exc:
        raise click.ClickException(str(exc)) from exc
    _done()
