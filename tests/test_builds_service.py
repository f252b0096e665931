"""Tests for builds/service.py module.

The container engine and cargo are mocked; the fake build step writes
synthetic ELFs where the export stage would put them.
"""

import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from reprobuild.builds.artifacts import TARGET_DIR, get_elf_path
from reprobuild.builds.service import (
    describe_build,
    docker_build,
    identify_artifacts,
    prepare_request,
)
from reprobuild.config import Settings
from reprobuild.errors import (
    BuildFailedError,
    EngineUnavailableError,
    LoadError,
    MetadataError,
    ReproBuildError,
)
from reprobuild.metadata import PackageDescriptor, TargetDescriptor
from reprobuild.types import BuildStatus

SERVICE = "reprobuild.builds.service"


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, skip_build="")


@pytest.fixture
def manifest(guest_pkg) -> Path:
    return guest_pkg / "methods" / "guest" / "Cargo.toml"


@pytest.fixture
def root_pkg() -> PackageDescriptor:
    return PackageDescriptor(
        name="fib-guest",
        targets=[
            TargetDescriptor(name="fib_guest", kind=["lib"]),
            TargetDescriptor(name="fib", kind=["bin"]),
        ],
    )


@pytest.fixture
def fake_engine(guest_elf):
    """Patch every external collaborator of docker_build.

    Yields a dict of the mocks; the build mock exports ``guest_elf`` for
    each binary target and records the Dockerfile it was given.
    """
    seen: dict[str, object] = {}

    def fake_run_build(src_dir, build_dir, settings=None):
        seen["dockerfile"] = (build_dir / "Dockerfile").read_text()
        seen["build_dir"] = build_dir
        elf_path = get_elf_path(src_dir, "fib-guest", "fib")
        elf_path.parent.mkdir(parents=True, exist_ok=True)
        elf_path.write_bytes(guest_elf)
        return src_dir / TARGET_DIR

    with (
        patch(f"{SERVICE}.ensure_ready") as ensure_ready,
        patch(f"{SERVICE}.check_engine_version") as check_version,
        patch(f"{SERVICE}.get_root_package") as get_root,
        patch(f"{SERVICE}.run_build", side_effect=fake_run_build) as run_build,
    ):
        yield {
            "ensure_ready": ensure_ready,
            "check_engine_version": check_version,
            "get_root_package": get_root,
            "run_build": run_build,
            "seen": seen,
        }


class TestPrepareRequest:
    """Tests for prepare_request function."""

    def test_canonical_paths(self, manifest, guest_pkg):
        """Should resolve paths and keep features in order."""
        request = prepare_request(manifest, guest_pkg, ["b", "a"])

        assert request.manifest_path == manifest.resolve()
        assert request.src_dir == guest_pkg.resolve()
        assert request.features == ("b", "a")

    def test_missing_manifest(self, guest_pkg):
        """A missing manifest should be reported as not found."""
        with pytest.raises(MetadataError) as exc_info:
            prepare_request(guest_pkg / "nope" / "Cargo.toml", guest_pkg)
        assert exc_info.value.code == "manifest_not_found"

    def test_missing_src_dir(self, manifest, tmp_path):
        """A missing source root should raise."""
        with pytest.raises(ReproBuildError):
            prepare_request(manifest, tmp_path / "nope")

    def test_manifest_outside_context(self, manifest, tmp_path):
        """The manifest must lie inside the build context."""
        other = tmp_path / "other"
        other.mkdir()
        with pytest.raises(MetadataError) as exc_info:
            prepare_request(manifest, other)
        assert exc_info.value.code == "manifest_outside_context"


class TestDescribeBuild:
    """Tests for describe_build function."""

    def test_relative_manifest(self, manifest, guest_pkg, root_pkg):
        """The Dockerfile should reference the manifest relative to /src."""
        request = prepare_request(manifest, guest_pkg, ["a", "b"])
        description = describe_build(request, root_pkg)
        rendered = description.render()

        assert 'CARGO_MANIFEST_PATH="/src/methods/guest/Cargo.toml"' in rendered
        assert "--features a,b" in rendered
        assert "/fib_guest" in rendered


class TestIdentifyArtifacts:
    """Tests for identify_artifacts function."""

    def test_missing_elf(self, guest_pkg, root_pkg):
        """A missing ELF should fail loudly."""
        with pytest.raises(LoadError):
            identify_artifacts(guest_pkg, root_pkg)

    def test_only_bin_targets(self, guest_pkg, root_pkg, guest_elf):
        """Library targets should not produce records."""
        elf_path = get_elf_path(guest_pkg, "fib-guest", "fib")
        elf_path.parent.mkdir(parents=True)
        elf_path.write_bytes(guest_elf)

        records = identify_artifacts(guest_pkg, root_pkg)
        assert [r.target_name for r in records] == ["fib"]
        assert records[0].size_bytes == len(guest_elf)


class TestDockerBuild:
    """Tests for docker_build function."""

    def test_end_to_end(self, manifest, guest_pkg, root_pkg, settings, fake_engine):
        """One binary target should yield one record and one ImageID line."""
        fake_engine["get_root_package"].return_value = root_pkg
        lines: list[str] = []

        result = docker_build(manifest, guest_pkg, [], settings=settings, echo=lines.append)

        assert result.status is BuildStatus.SUCCESS
        assert len(result.artifacts) == 1
        record = result.artifacts[0]
        assert record.target_name == "fib"
        assert record.image_id
        assert record.path == get_elf_path(guest_pkg.resolve(), "fib-guest", "fib")
        assert lines == [
            f"ImageID: {record.image_id} - {TARGET_DIR}/fib_guest/fib"
        ]
        assert result.package_name == "fib-guest"
        assert result.description_digest.startswith("sha256:")

    def test_steps_in_order(self, manifest, guest_pkg, root_pkg, settings, fake_engine):
        """Readiness, metadata and version checks should precede the build."""
        fake_engine["get_root_package"].return_value = root_pkg
        order = MagicMock()
        order.attach_mock(fake_engine["ensure_ready"], "ensure_ready")
        order.attach_mock(fake_engine["get_root_package"], "get_root_package")
        order.attach_mock(fake_engine["check_engine_version"], "check_engine_version")
        order.attach_mock(fake_engine["run_build"], "run_build")

        docker_build(manifest, guest_pkg, settings=settings, echo=lambda _: None)

        names = [c[0] for c in order.mock_calls]
        assert names == [
            "ensure_ready",
            "get_root_package",
            "check_engine_version",
            "run_build",
        ]
        fake_engine["ensure_ready"].assert_called_once_with(5.0, "docker")

    def test_features_reach_dockerfile(
        self, manifest, guest_pkg, root_pkg, settings, fake_engine
    ):
        """Features should be threaded into the synthesized Dockerfile."""
        fake_engine["get_root_package"].return_value = root_pkg

        docker_build(manifest, guest_pkg, ["a", "b"], settings=settings, echo=lambda _: None)

        assert "--features a,b" in fake_engine["seen"]["dockerfile"]

    def test_idempotent(self, manifest, guest_pkg, root_pkg, settings, fake_engine):
        """Rerunning with the same inputs should give the same identifiers."""
        fake_engine["get_root_package"].return_value = root_pkg

        first = docker_build(manifest, guest_pkg, settings=settings, echo=lambda _: None)
        second = docker_build(manifest, guest_pkg, settings=settings, echo=lambda _: None)

        assert first.artifacts == second.artifacts
        assert first.description_digest == second.description_digest

    def test_host_environment_ignored(
        self, manifest, guest_pkg, root_pkg, settings, fake_engine
    ):
        """Host variables must not change the Dockerfile or the image IDs."""
        fake_engine["get_root_package"].return_value = root_pkg

        baseline = docker_build(manifest, guest_pkg, settings=settings, echo=lambda _: None)
        baseline_dockerfile = fake_engine["seen"]["dockerfile"]
        with patch.dict(
            os.environ,
            {
                "REPROBUILD_TEXT_START": "4096",
                "REPROBUILD_PAGE_SIZE": "4096",
                "REPROBUILD_MAX_MEM": "4096",
            },
        ):
            rerun_settings = Settings(_env_file=None, skip_build="")
            rerun = docker_build(
                manifest, guest_pkg, settings=rerun_settings, echo=lambda _: None
            )

        assert fake_engine["seen"]["dockerfile"] == baseline_dockerfile
        assert rerun.artifacts == baseline.artifacts
        assert rerun.description_digest == baseline.description_digest

    def test_temp_dir_removed(self, manifest, guest_pkg, root_pkg, settings, fake_engine):
        """The synthesized Dockerfile should not outlive the run."""
        fake_engine["get_root_package"].return_value = root_pkg

        docker_build(manifest, guest_pkg, settings=settings, echo=lambda _: None)

        assert not fake_engine["seen"]["build_dir"].exists()

    def test_temp_dir_removed_on_failure(
        self, manifest, guest_pkg, root_pkg, settings, fake_engine
    ):
        """A failed build should still clean up and propagate the error."""
        fake_engine["get_root_package"].return_value = root_pkg
        seen = {}

        def failing_build(src_dir, build_dir, settings=None):
            seen["build_dir"] = build_dir
            raise BuildFailedError("docker build failed", exit_code=1)

        fake_engine["run_build"].side_effect = failing_build

        with pytest.raises(BuildFailedError):
            docker_build(manifest, guest_pkg, settings=settings, echo=lambda _: None)

        assert not seen["build_dir"].exists()

    def test_missing_lockfile_warns(
        self, manifest, guest_pkg, root_pkg, settings, fake_engine, caplog
    ):
        """A missing Cargo.lock should not stop the build."""
        fake_engine["get_root_package"].return_value = root_pkg
        (manifest.parent / "Cargo.lock").unlink()

        result = docker_build(manifest, guest_pkg, settings=settings, echo=lambda _: None)

        assert result.status is BuildStatus.SUCCESS
        assert "Cargo.lock not found" in caplog.text

    def test_engine_unavailable(self, manifest, guest_pkg, settings, fake_engine):
        """Engine errors should propagate before anything else runs."""
        fake_engine["ensure_ready"].side_effect = EngineUnavailableError("down")

        with pytest.raises(EngineUnavailableError):
            docker_build(manifest, guest_pkg, settings=settings)

        fake_engine["get_root_package"].assert_not_called()
        fake_engine["run_build"].assert_not_called()

    def test_metadata_error(self, manifest, guest_pkg, settings, fake_engine):
        """Metadata errors should stop the run before building."""
        fake_engine["get_root_package"].side_effect = MetadataError("bad manifest")

        with pytest.raises(MetadataError):
            docker_build(manifest, guest_pkg, settings=settings)

        fake_engine["run_build"].assert_not_called()


class TestSkip:
    """Tests for the RISC0_SKIP_BUILD switch."""

    def test_skip_does_not_touch_engine(self, manifest, guest_pkg):
        """With the switch set nothing should be invoked or written."""
        with patch.dict(os.environ, {"RISC0_SKIP_BUILD": "1"}):
            settings = Settings(_env_file=None)

        with (
            patch("subprocess.run") as mock_run,
            patch("shutil.which") as mock_which,
        ):
            result = docker_build(manifest, guest_pkg, settings=settings)

        assert result.status is BuildStatus.SKIPPED
        assert result.skipped
        assert result.artifacts == []
        mock_run.assert_not_called()
        mock_which.assert_not_called()
        assert not (guest_pkg / "target").exists()
