"""Shell, git and console utilities.

Provides simple wrappers around subprocess calls for running shell commands
and git operations, the default build/publish invokers, the interactive
confirmation prompt, and the console logger used by every pipeline.
"""

from __future__ import annotations

import shlex
import subprocess
from pathlib import Path

import click

DEFAULT_BUILD_COMMAND = "uv build --out-dir {out_dir}"
DEFAULT_PUBLISH_COMMAND = "uv publish {out_dir}/*.whl {out_dir}/*.tar.gz"


def git(*args: str, cwd: Path | None = None, check: bool = True) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "log", "-1").
        cwd: Directory to run git in; defaults to the current directory.
        check: If True (default), raise on non-zero exit. Set to False
               for commands that may legitimately fail.

    Returns:
        Stripped stdout from the git command.
    """
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=check
    )
    return result.stdout.strip()


def run(
    *args: str, cwd: Path | None = None, check: bool = True
) -> subprocess.CompletedProcess[bytes]:
    """Run an arbitrary shell command.

    Unlike git(), this doesn't capture output - it streams directly to
    the terminal so users can see build progress, etc.

    Returns:
        CompletedProcess with returncode for checking success.
    """
    return subprocess.run(args, cwd=cwd, check=check)


def render_command(template: str, **values: str) -> list[str]:
    """Split a command template and fill in its ``{placeholders}``.

    Example:
        render_command("uv build --out-dir {out_dir}", out_dir="dist")
        → ["uv", "build", "--out-dir", "dist"]
    """
    return [part.format(**values) for part in shlex.split(template)]


class ShellBuilder:
    """Builds a package by running a command inside its directory."""

    def __init__(self, command: str = DEFAULT_BUILD_COMMAND) -> None:
        self.command = command

    def build(self, package_dir: Path, out_dir: Path) -> int:
        args = render_command(self.command, out_dir=str(out_dir))
        return run(*args, cwd=package_dir, check=False).returncode


class ShellPublisher:
    """Publishes the contents of an output directory.

    The command template may reference ``{out_dir}`` and ``{tag}``. The
    default uploads the wheels and sdists with ``uv publish``, which expands
    the globs itself.
    """

    def __init__(self, command: str = DEFAULT_PUBLISH_COMMAND) -> None:
        self.command = command

    def publish(self, out_dir: Path, tag: str) -> int:
        args = render_command(self.command, out_dir=str(out_dir), tag=tag)
        return run(*args, cwd=out_dir, check=False).returncode


def click_confirm(question: str) -> bool:
    """Ask a yes/no question on the terminal, defaulting to no."""
    return click.confirm(question, default=False)


class ConsoleLogger:
    """Terminal logger shared by the orchestrator and the pipelines.

    Messages go to stdout, warnings and errors to stderr. A prefix (the
    package name) is prepended in batch mode so interleaved output from
    sibling pipelines stays readable.
    """

    def __init__(self, *, verbose: bool = False, prefix: str | None = None) -> None:
        self.verbose = verbose
        self.prefix = prefix

    def for_package(self, name: str) -> ConsoleLogger:
        return ConsoleLogger(verbose=self.verbose, prefix=name)

    def _fmt(self, msg: str) -> str:
        return f"[{self.prefix}] {msg}" if self.prefix else msg

    def step(self, msg: str) -> None:
        """Print a visually distinct step header."""
        click.echo(f"\n{'─' * 60}\n{self._fmt(msg)}\n{'─' * 60}")

    def info(self, msg: str) -> None:
        click.echo(f"  {self._fmt(msg)}")

    def debug(self, msg: str) -> None:
        if self.verbose:
            click.echo(f"  debug: {self._fmt(msg)}")

    def warn(self, msg: str) -> None:
        click.echo(f"Warning: {self._fmt(msg)}", err=True)

    def error(self, msg: str) -> None:
        click.echo(f"ERROR: {self._fmt(msg)}", err=True)
