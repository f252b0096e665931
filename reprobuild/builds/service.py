"""Build service module.

This module provides the high-level build API:
- docker_build(): Main entry point - build a guest package in a container
  and compute the image ID of every binary target
- describe_build(): Synthesize the build description without building

The pipeline is strictly linear:

    skip check -> ensure_ready -> metadata -> engine version
      -> lockfile warning -> synthesize -> build -> resolve -> identify

Only the readiness check retries. Every other step fails fast.
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path

from reprobuild.builds.artifacts import (
    compute_file_hash,
    format_image_id_line,
    get_output_dir,
    normalize_package_name,
    resolve_artifacts,
)
from reprobuild.builds.dockerfile import (
    BuildDescription,
    synthesize,
    write_build_files,
)
from reprobuild.builds.runner import run_build
from reprobuild.config import DEFAULT_TARGET_TRIPLE, Settings, get_settings
from reprobuild.engine import check_engine_version, ensure_ready
from reprobuild.errors import (
    MANIFEST_NOT_FOUND,
    MANIFEST_OUTSIDE_CONTEXT,
    LoadError,
    MetadataError,
    ReproBuildError,
)
from reprobuild.image_id import compute_image_id
from reprobuild.metadata import PackageDescriptor, check_lockfile, get_root_package
from reprobuild.types import ArtifactRecord, BuildRequest, BuildResult, BuildStatus

logger = logging.getLogger(__name__)


def prepare_request(
    manifest_path: Path,
    src_dir: Path,
    features: Sequence[str] = (),
) -> BuildRequest:
    """Canonicalize and validate build inputs.

    Args:
        manifest_path: Path to Cargo.toml.
        src_dir: Source root sent as the build context.
        features: Cargo features to enable.

    Returns:
        BuildRequest with canonical paths.

    Raises:
        MetadataError: If the manifest is missing or lies outside src_dir.
        ReproBuildError: If src_dir does not exist.
    """
    try:
        manifest = Path(manifest_path).resolve(strict=True)
    except OSError as e:
        raise MetadataError(
            f"Manifest not found: {manifest_path}",
            manifest_path=Path(manifest_path),
            code=MANIFEST_NOT_FOUND,
        ) from e

    try:
        src = Path(src_dir).resolve(strict=True)
    except OSError as e:
        raise ReproBuildError(
            f"Failed to canonicalize path: {src_dir}", code="source_not_found"
        ) from e

    if not manifest.is_relative_to(src):
        raise MetadataError(
            f"Manifest {manifest} is outside the build context {src}",
            manifest_path=manifest,
            code=MANIFEST_OUTSIDE_CONTEXT,
        )

    return BuildRequest(manifest_path=manifest, src_dir=src, features=tuple(features))


def describe_build(
    request: BuildRequest,
    root_pkg: PackageDescriptor,
) -> BuildDescription:
    """Synthesize the build description for a request."""
    rel_manifest_path = request.manifest_path.relative_to(request.src_dir)
    return synthesize(rel_manifest_path, root_pkg.name, request.features)


def identify_artifacts(
    src_dir: Path,
    root_pkg: PackageDescriptor,
) -> list[ArtifactRecord]:
    """Resolve and identify every binary target of a built package.

    Raises:
        LoadError: If any ELF is missing or cannot be loaded.
    """
    targets = [t.name for t in root_pkg.bin_targets()]
    records: list[ArtifactRecord] = []

    for target_name, elf_path in resolve_artifacts(src_dir, root_pkg.name, targets):
        image_id = compute_image_id(elf_path)
        try:
            sha256 = compute_file_hash(elf_path)
            size_bytes = elf_path.stat().st_size
        except OSError as e:
            raise LoadError(elf_path, "read", str(e)) from e

        records.append(
            ArtifactRecord(
                target_name=target_name,
                path=elf_path,
                image_id=image_id,
                sha256=sha256,
                size_bytes=size_bytes,
            )
        )
    return records


def docker_build(
    manifest_path: Path,
    src_dir: Path,
    features: Sequence[str] = (),
    settings: Settings | None = None,
    echo: Callable[[str], None] = print,
) -> BuildResult:
    """Build the package in the manifest path using a docker environment.

    Args:
        manifest_path: Path to the guest Cargo.toml.
        src_dir: Source root; must contain the manifest.
        features: Cargo features to enable.
        settings: Settings; loaded from the environment if not provided.
        echo: Receives one ``ImageID: <id> - <path>`` line per ELF.

    Returns:
        BuildResult with status SUCCESS and one record per binary target,
        or status SKIPPED when RISC0_SKIP_BUILD is set.

    Raises:
        ReproBuildError: The first error of whichever step failed.
    """
    if settings is None:
        settings = get_settings()

    if settings.skip_requested:
        logger.warning("Skipping build because RISC0_SKIP_BUILD is set")
        return BuildResult(status=BuildStatus.SKIPPED)

    ensure_ready(settings.ready_timeout, settings.engine)

    request = prepare_request(manifest_path, src_dir, features)
    logger.info("Docker context: %s", request.src_dir)

    root_pkg = get_root_package(request.manifest_path)
    logger.info(
        "Building ELF binaries in %s for %s target...",
        root_pkg.name,
        DEFAULT_TARGET_TRIPLE,
    )

    check_engine_version(settings.engine)
    check_lockfile(request.manifest_path)

    description = describe_build(request, root_pkg)
    with tempfile.TemporaryDirectory(prefix="reprobuild-") as temp_dir:
        write_build_files(description, Path(temp_dir))
        output_dir = run_build(request.src_dir, Path(temp_dir), settings)

    records = identify_artifacts(request.src_dir, root_pkg)

    logger.info(
        "ELFs ready at: %s",
        get_output_dir(request.src_dir) / normalize_package_name(root_pkg.name),
    )
    for record in records:
        echo(format_image_id_line(record, request.src_dir))

    return BuildResult(
        status=BuildStatus.SUCCESS,
        artifacts=records,
        output_dir=output_dir,
        package_name=root_pkg.name,
        description_digest=description.digest(),
    )


__all__ = [
    "describe_build",
    "docker_build",
    "identify_artifacts",
    "prepare_request",
]
