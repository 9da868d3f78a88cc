"""Tests for release_train.pipeline."""

from __future__ import annotations

import shutil
import threading
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import tomlkit
from conftest import HEAD, FakeCommits, make_commit, make_history, write_package

from release_train.config import PipelineOverrides, ReleaseConfig
from release_train.errors import (
    BuildFailure,
    CircularDependencyError,
    InvalidVersionError,
    ManifestError,
    PreconditionError,
    PublishCancelled,
    PublishFailure,
)
from release_train.graph import validate_dependencies
from release_train.models import GreatestRelease, ReferenceCommit
from release_train.pipeline import PublishPipeline, ensure_commits_or_continue
from release_train.shell import ShellBuilder
from release_train.toml import PyprojectStore
from release_train.versions import resolve_version


def read_manifest(path: Path) -> tomlkit.TOMLDocument:
    return tomlkit.parse(path.read_text())


@pytest.fixture
def package_dir(tmp_path: Path) -> Path:
    """A package at 1.0.0, last published from c1, with one file and one dir asset."""
    pkg = tmp_path / "pkg"
    write_package(
        pkg,
        "pkg-a",
        "1.0.0",
        reference_commit="c1",
        assets=["README.md", "data"],
    )
    (pkg / "README.md").write_text("# pkg-a\n")
    (pkg / "data").mkdir()
    (pkg / "data" / "table.csv").write_text("a,b\n")
    return pkg


@pytest.fixture
def feat_commits() -> FakeCommits:
    return FakeCommits(
        histories={
            "c1": [
                make_commit(HEAD, "feat: add export"),
                make_commit("c2", "chore: tidy"),
            ]
        }
    )


def make_pipeline(
    config: ReleaseConfig,
    commits: FakeCommits,
    builder: MagicMock,
    publisher: MagicMock,
    logger: MagicMock,
    overrides: PipelineOverrides | None = None,
    confirm: MagicMock | None = None,
) -> PublishPipeline:
    return PublishPipeline(
        config,
        overrides,
        commits=commits,
        builder=builder,
        publisher=publisher,
        confirm=confirm or MagicMock(return_value=False),
        logger=logger,
    )


class TestPublishPipelineEndToEnd:
    def test_feat_commit_bumps_minor_and_publishes(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        """1.0.0 with a feat: commit since c1 is released as 1.1.0."""
        manifest = package_dir / "pyproject.toml"
        config = ReleaseConfig(target=manifest)

        result = make_pipeline(config, feat_commits, builder, publisher, logger).run()

        out_dir = (package_dir / "dist").resolve()
        assert result.new_version == "1.1.0"
        assert result.old_version == "1.0.0"
        assert result.reference_commit == HEAD
        assert result.published is True

        doc = read_manifest(manifest)
        assert doc["project"]["version"] == "1.1.0"
        assert doc["tool"]["release-train"]["reference-commit"] == HEAD
        assert list(doc["tool"]["release-train"]["assets"]) == ["README.md", "data"]

        assert (out_dir / "README.md").read_text() == "# pkg-a\n"
        assert (out_dir / "data" / "table.csv").exists()
        assert 'version = "1.1.0"' in (out_dir / "pyproject.toml").read_text()

        builder.build.assert_called_once_with(package_dir, out_dir)
        publisher.publish.assert_called_once_with(out_dir, "latest")

    def test_declined_gate_leaves_everything_untouched(
        self,
        package_dir: Path,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        """No commits since c1 and the operator says no: nothing happens."""
        manifest = package_dir / "pyproject.toml"
        before = manifest.read_text()
        confirm = MagicMock(return_value=False)

        with pytest.raises(PublishCancelled):
            make_pipeline(
                ReleaseConfig(target=manifest),
                FakeCommits(),
                builder,
                publisher,
                logger,
                confirm=confirm,
            ).run()

        confirm.assert_called_once()
        assert manifest.read_text() == before
        builder.build.assert_not_called()
        publisher.publish.assert_not_called()
        assert not (package_dir / "dist").exists()

    def test_accepted_gate_republishes_same_version(
        self,
        package_dir: Path,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        manifest = package_dir / "pyproject.toml"
        result = make_pipeline(
            ReleaseConfig(target=manifest),
            FakeCommits(),
            builder,
            publisher,
            logger,
            confirm=MagicMock(return_value=True),
        ).run()

        assert result.new_version == "1.0.0"
        publisher.publish.assert_called_once()

    def test_force_continue_skips_question(
        self,
        package_dir: Path,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        confirm = MagicMock(return_value=False)
        make_pipeline(
            ReleaseConfig(target=package_dir / "pyproject.toml", force_continue=True),
            FakeCommits(),
            builder,
            publisher,
            logger,
            confirm=confirm,
        ).run()

        confirm.assert_not_called()
        publisher.publish.assert_called_once()


class TestPublishPipelinePreconditions:
    def test_missing_version_is_fatal(
        self, tmp_path: Path, builder: MagicMock, publisher: MagicMock, logger: MagicMock
    ) -> None:
        manifest = write_package(tmp_path / "pkg", "pkg-a", version="")
        with pytest.raises(PreconditionError, match="No version"):
            make_pipeline(
                ReleaseConfig(target=manifest), FakeCommits(), builder, publisher, logger
            ).run()

    def test_missing_name_is_fatal(
        self, tmp_path: Path, builder: MagicMock, publisher: MagicMock, logger: MagicMock
    ) -> None:
        manifest = write_package(tmp_path / "pkg", "", version="1.0.0")
        with pytest.raises(PreconditionError, match="No name"):
            make_pipeline(
                ReleaseConfig(target=manifest), FakeCommits(), builder, publisher, logger
            ).run()

    def test_soft_error_skips_package(
        self, tmp_path: Path, builder: MagicMock, publisher: MagicMock, logger: MagicMock
    ) -> None:
        manifest = write_package(tmp_path / "pkg", "pkg-a", version="")
        result = make_pipeline(
            ReleaseConfig(target=manifest),
            FakeCommits(),
            builder,
            publisher,
            logger,
            overrides=PipelineOverrides(soft_error=True),
        ).run()

        assert result.skipped is True
        assert result.name == "pkg-a"
        logger.warn.assert_called_once()
        publisher.publish.assert_not_called()

    def test_invalid_version_is_fatal_even_with_soft_error(
        self, tmp_path: Path, builder: MagicMock, publisher: MagicMock, logger: MagicMock
    ) -> None:
        manifest = write_package(tmp_path / "pkg", "pkg-a", version="1.0")
        with pytest.raises(InvalidVersionError):
            make_pipeline(
                ReleaseConfig(target=manifest),
                FakeCommits(),
                builder,
                publisher,
                logger,
                overrides=PipelineOverrides(soft_error=True),
            ).run()

    def test_missing_extension_table_warns_and_uses_head(
        self, tmp_path: Path, builder: MagicMock, publisher: MagicMock, logger: MagicMock
    ) -> None:
        """Without [tool.release-train] the reference commit defaults to HEAD."""
        manifest = write_package(tmp_path / "pkg", "pkg-a", extension=False)
        commits = FakeCommits()

        result = make_pipeline(
            ReleaseConfig(target=manifest, force_continue=True),
            commits,
            builder,
            publisher,
            logger,
        ).run()

        assert commits.history_calls == [(tmp_path / "pkg", HEAD)]
        doc = read_manifest(manifest)
        assert doc["tool"]["release-train"]["reference-commit"] == HEAD
        assert doc["tool"]["release-train"]["schema"] == 1
        assert result.new_version == "1.0.0"
        warnings = " ".join(c[0][0] for c in logger.warn.call_args_list)
        assert "[tool.release-train]" in warnings
        assert "using latest commit" in warnings


class TestPublishPipelineFailures:
    def test_build_failure_aborts_before_writing(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        manifest = package_dir / "pyproject.toml"
        before = manifest.read_text()
        builder.build.return_value = 2

        with pytest.raises(BuildFailure, match="code 2"):
            make_pipeline(
                ReleaseConfig(target=manifest), feat_commits, builder, publisher, logger
            ).run()

        assert manifest.read_text() == before
        publisher.publish.assert_not_called()

    def test_publish_failure_raises(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        publisher.publish.return_value = 1
        with pytest.raises(PublishFailure, match="pkg-a@1.1.0"):
            make_pipeline(
                ReleaseConfig(target=package_dir / "pyproject.toml"),
                feat_commits,
                builder,
                publisher,
                logger,
            ).run()

    def test_circular_dependency_blocks_write(
        self,
        tmp_path: Path,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        manifest = write_package(
            tmp_path / "a",
            "x-a",
            deps=["x-b"],
            reference_commit="c1",
            sources={"x-b": {"path": "../b"}},
        )
        write_package(tmp_path / "b", "x-b", deps=["x-a"])
        before = manifest.read_text()
        commits = FakeCommits(histories={"c1": [make_commit(HEAD, "fix: x")]})

        with pytest.raises(CircularDependencyError):
            make_pipeline(
                ReleaseConfig(target=manifest), commits, builder, publisher, logger
            ).run()

        assert manifest.read_text() == before
        publisher.publish.assert_not_called()


class TestPublishPipelineSwitches:
    def test_no_build(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        make_pipeline(
            ReleaseConfig(target=package_dir / "pyproject.toml", build=False),
            feat_commits,
            builder,
            publisher,
            logger,
        ).run()
        builder.build.assert_not_called()

    def test_override_build_beats_config(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        make_pipeline(
            ReleaseConfig(target=package_dir / "pyproject.toml", build=True),
            feat_commits,
            builder,
            publisher,
            logger,
            overrides=PipelineOverrides(build=False),
        ).run()
        builder.build.assert_not_called()

    def test_no_publish_keeps_manifest(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        """With publishing off the version is not bumped and the window not moved."""
        manifest = package_dir / "pyproject.toml"
        before = manifest.read_text()

        result = make_pipeline(
            ReleaseConfig(target=manifest, publish=False),
            feat_commits,
            builder,
            publisher,
            logger,
        ).run()

        assert result.new_version == "1.0.0"
        assert result.published is False
        assert manifest.read_text() == before
        publisher.publish.assert_not_called()

    def test_no_version_bump(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        manifest = package_dir / "pyproject.toml"
        result = make_pipeline(
            ReleaseConfig(target=manifest, version_bump=False),
            feat_commits,
            builder,
            publisher,
            logger,
        ).run()

        assert result.new_version == "1.0.0"
        doc = read_manifest(manifest)
        assert doc["tool"]["release-train"]["reference-commit"] == HEAD

    def test_no_stage_assets(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        make_pipeline(
            ReleaseConfig(target=package_dir / "pyproject.toml", stage_assets=False),
            feat_commits,
            builder,
            publisher,
            logger,
        ).run()
        assert not (package_dir / "dist").exists()

    def test_custom_out_dir_and_tag(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        make_pipeline(
            ReleaseConfig(
                target=package_dir / "pyproject.toml",
                out_dir=Path("build/out"),
                tag="next",
            ),
            feat_commits,
            builder,
            publisher,
            logger,
        ).run()

        out_dir = (package_dir / "build" / "out").resolve()
        assert (out_dir / "pyproject.toml").exists()
        publisher.publish.assert_called_once_with(out_dir, "next")


class TestPublishPipelineOverrides:
    def test_greatest_release_sets_baseline_and_reference(
        self,
        package_dir: Path,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        """A sibling at 1.0.0 joins the batch at the greatest version 2.0.0."""
        manifest = package_dir / "pyproject.toml"
        history = make_history(make_commit(HEAD, "fix: shared"))
        overrides = PipelineOverrides(
            greatest_release=GreatestRelease(
                greatest_version="2.0.0",
                reference_commit=ReferenceCommit(hash="c0", total=1),
            ),
            commit_history=history,
            latest_commit=make_commit(HEAD, "fix: shared"),
            omit_continue_question=True,
            soft_error=True,
            build=False,
        )
        commits = FakeCommits()

        result = make_pipeline(
            ReleaseConfig(target=manifest),
            commits,
            builder,
            publisher,
            logger,
            overrides=overrides,
        ).run()

        assert result.new_version == "2.0.1"
        assert commits.history_calls == []
        builder.build.assert_not_called()
        assert read_manifest(manifest)["tool"]["release-train"]["reference-commit"] == HEAD

    def test_greatest_release_reference_used_for_history(
        self,
        package_dir: Path,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        commits = FakeCommits(histories={"c0": [make_commit(HEAD, "feat: y")]})
        overrides = PipelineOverrides(
            greatest_release=GreatestRelease(
                greatest_version="1.0.0",
                reference_commit=ReferenceCommit(hash="c0", total=1),
            ),
        )

        result = make_pipeline(
            ReleaseConfig(target=package_dir / "pyproject.toml"),
            commits,
            builder,
            publisher,
            logger,
            overrides=overrides,
        ).run()

        assert commits.history_calls == [(package_dir, "c0")]
        assert result.new_version == "1.1.0"

    def test_omit_continue_question(
        self,
        package_dir: Path,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        confirm = MagicMock(return_value=False)
        make_pipeline(
            ReleaseConfig(target=package_dir / "pyproject.toml"),
            FakeCommits(),
            builder,
            publisher,
            logger,
            overrides=PipelineOverrides(omit_continue_question=True),
            confirm=confirm,
        ).run()
        confirm.assert_not_called()


class TestEnsureCommitsOrContinue:
    def test_commits_pass(self, logger: MagicMock) -> None:
        confirm = MagicMock()
        ensure_commits_or_continue(3, skip_question=False, confirm=confirm, logger=logger)
        confirm.assert_not_called()

    def test_skip_question(self, logger: MagicMock) -> None:
        confirm = MagicMock()
        ensure_commits_or_continue(0, skip_question=True, confirm=confirm, logger=logger)
        confirm.assert_not_called()

    def test_decline_raises(self, logger: MagicMock) -> None:
        with pytest.raises(PublishCancelled):
            ensure_commits_or_continue(
                0, skip_question=False, confirm=MagicMock(return_value=False), logger=logger
            )

    def test_accept_continues(self, logger: MagicMock) -> None:
        ensure_commits_or_continue(
            0, skip_question=False, confirm=MagicMock(return_value=True), logger=logger
        )


class TestPublishPipelineStageOrder:
    def test_stages_run_in_order(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        """History and bump precede the build; the build precedes persist and staging."""
        calls = MagicMock()
        commits = MagicMock(wraps=feat_commits)
        store = MagicMock(wraps=PyprojectStore())
        calls.attach_mock(commits.history, "history")
        calls.attach_mock(builder.build, "build")
        calls.attach_mock(store.save_release, "save_release")
        calls.attach_mock(publisher.publish, "publish")

        with patch(
            "release_train.pipeline.resolve_version", wraps=resolve_version
        ) as mock_resolve, patch(
            "release_train.pipeline.shutil.copy2", wraps=shutil.copy2
        ) as mock_copy:
            calls.attach_mock(mock_resolve, "resolve_version")
            calls.attach_mock(mock_copy, "copy2")
            PublishPipeline(
                ReleaseConfig(target=package_dir / "pyproject.toml"),
                commits=commits,
                store=store,
                builder=builder,
                publisher=publisher,
                confirm=MagicMock(return_value=False),
                logger=logger,
            ).run()

        order = [c[0] for c in calls.mock_calls]
        assert order == [
            "history",
            "resolve_version",
            "build",
            "save_release",
            "copy2",  # README.md
            "copy2",  # pyproject.toml
            "publish",
        ]

    def test_build_failure_after_dependency_check_leaves_manifest(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        manifest = package_dir / "pyproject.toml"
        before = manifest.read_text()
        checked = threading.Event()

        def validate(*args: Any, **kwargs: Any) -> None:
            validate_dependencies(*args, **kwargs)
            checked.set()

        def build(package_dir: Path, out_dir: Path) -> int:
            assert checked.wait(timeout=5)
            return 4

        builder.build.side_effect = build
        store = MagicMock(wraps=PyprojectStore())

        with patch("release_train.pipeline.validate_dependencies", side_effect=validate):
            with pytest.raises(BuildFailure, match="code 4"):
                PublishPipeline(
                    ReleaseConfig(target=manifest),
                    commits=feat_commits,
                    store=store,
                    builder=builder,
                    publisher=publisher,
                    confirm=MagicMock(return_value=False),
                    logger=logger,
                ).run()

        assert manifest.read_text() == before
        store.save_release.assert_not_called()
        publisher.publish.assert_not_called()


class TestPublishPipelineMissingTools:
    def test_missing_build_tool_is_a_build_failure(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        manifest = package_dir / "pyproject.toml"
        before = manifest.read_text()

        with pytest.raises(BuildFailure, match="could not start"):
            make_pipeline(
                ReleaseConfig(target=manifest),
                feat_commits,
                ShellBuilder("definitely-not-a-real-tool-xyz --out-dir {out_dir}"),
                publisher,
                logger,
            ).run()

        assert manifest.read_text() == before

    def test_missing_publish_tool_is_a_publish_failure(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        publisher.publish.side_effect = FileNotFoundError("uv")

        with pytest.raises(PublishFailure, match="pkg-a@1.1.0 could not start"):
            make_pipeline(
                ReleaseConfig(target=package_dir / "pyproject.toml"),
                feat_commits,
                builder,
                publisher,
                logger,
            ).run()


class TestStageAssets:
    @pytest.mark.parametrize("asset", ["../outside.txt", "ABSOLUTE"])
    def test_asset_outside_package_rejected(
        self,
        tmp_path: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
        asset: str,
    ) -> None:
        outside = tmp_path / "outside.txt"
        outside.write_text("secret\n")
        if asset == "ABSOLUTE":
            asset = str(outside)
        manifest = write_package(
            tmp_path / "pkg", "pkg-a", reference_commit="c1", assets=[asset]
        )

        with pytest.raises(ManifestError, match="outside"):
            make_pipeline(
                ReleaseConfig(target=manifest), feat_commits, builder, publisher, logger
            ).run()

        publisher.publish.assert_not_called()
        assert not (tmp_path / "pkg" / "dist" / "outside.txt").exists()

    def test_out_dir_is_package_dir(
        self,
        package_dir: Path,
        feat_commits: FakeCommits,
        builder: MagicMock,
        publisher: MagicMock,
        logger: MagicMock,
    ) -> None:
        """Assets already in place are not copied onto themselves."""
        result = make_pipeline(
            ReleaseConfig(target=package_dir / "pyproject.toml", out_dir=Path(".")),
            feat_commits,
            builder,
            publisher,
            logger,
        ).run()

        assert result.published is True
        assert (package_dir / "README.md").read_text() == "# pkg-a\n"
        assert read_manifest(package_dir / "pyproject.toml")["project"]["version"] == "1.1.0"
        publisher.publish.assert_called_once_with(package_dir.resolve(), "latest")
