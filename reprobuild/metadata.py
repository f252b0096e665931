"""Package metadata resolution.

This module handles:
- Querying ``cargo metadata`` for the package behind a manifest
- Validating the JSON output into PackageDescriptor models
- The soft Cargo.lock precondition check
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reprobuild.errors import (
    CARGO_NOT_FOUND,
    MANIFEST_MALFORMED,
    MANIFEST_NOT_FOUND,
    MetadataError,
)

logger = logging.getLogger(__name__)

METADATA_FORMAT_VERSION = "1"

# Fragments cargo prints when the manifest path does not exist
_NOT_FOUND_MARKERS = (
    "could not find",
    "failed to read",
    "no such file or directory",
    "manifest path",
)


class TargetDescriptor(BaseModel):
    """A single Cargo target (bin, lib, example, ...)."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str
    kind: list[str] = Field(default_factory=list)

    def is_bin(self) -> bool:
        return "bin" in self.kind


class PackageDescriptor(BaseModel):
    """Root package name and its targets, in declaration order."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str
    id: str | None = None
    manifest_path: str | None = None
    targets: list[TargetDescriptor] = Field(default_factory=list)

    def bin_targets(self) -> list[TargetDescriptor]:
        """Return only binary targets."""
        return [t for t in self.targets if t.is_bin()]


class _ResolveSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    root: str | None = None


class CargoMetadata(BaseModel):
    """Subset of ``cargo metadata --format-version 1`` output."""

    model_config = ConfigDict(extra="ignore")

    packages: list[PackageDescriptor]
    workspace_members: list[str] = Field(default_factory=list)
    resolve: _ResolveSchema | None = None

    def root_package(self, manifest_path: Path | None = None) -> PackageDescriptor | None:
        """Find the package the query was made for.

        Matches on the manifest path first, then on ``resolve.root``, and
        finally accepts a lone package.
        """
        if manifest_path is not None:
            for pkg in self.packages:
                if pkg.manifest_path and Path(pkg.manifest_path) == manifest_path:
                    return pkg
        if self.resolve is not None and self.resolve.root:
            for pkg in self.packages:
                if pkg.id == self.resolve.root:
                    return pkg
        if len(self.packages) == 1:
            return self.packages[0]
        return None


def compose_metadata_command(manifest_path: Path, cargo: str = "cargo") -> list[str]:
    """Compose the ``cargo metadata`` command for a manifest."""
    return [
        cargo,
        "metadata",
        "--format-version",
        METADATA_FORMAT_VERSION,
        "--no-deps",
        "--manifest-path",
        str(manifest_path),
    ]


def parse_metadata(raw: str, manifest_path: Path) -> PackageDescriptor:
    """Parse ``cargo metadata`` JSON output into the root package.

    Args:
        raw: JSON text printed by cargo.
        manifest_path: Manifest the query was made for.

    Returns:
        The root PackageDescriptor.

    Raises:
        MetadataError: If the output is invalid or has no root package.
    """
    try:
        meta = CargoMetadata.model_validate_json(raw)
    except ValidationError as e:
        raise MetadataError(
            f"failed to parse metadata for {manifest_path}: {e}",
            manifest_path=manifest_path,
            code=MANIFEST_MALFORMED,
        ) from e

    root = meta.root_package(manifest_path)
    if root is None:
        raise MetadataError(
            f"failed to parse Cargo.toml: no root package in {manifest_path}",
            manifest_path=manifest_path,
            code=MANIFEST_MALFORMED,
        )
    return root


def get_root_package(
    manifest_path: Path,
    cargo: str = "cargo",
    timeout: int | None = 120,
) -> PackageDescriptor:
    """Resolve the root package of a manifest.

    Args:
        manifest_path: Canonical path to Cargo.toml.
        cargo: Cargo executable.
        timeout: Command timeout in seconds.

    Returns:
        PackageDescriptor for the root package.

    Raises:
        MetadataError: With code ``manifest_not_found`` if the manifest is
            missing, ``manifest_malformed`` if it cannot be parsed, or
            ``cargo_not_found`` if cargo cannot be executed.
    """
    if not manifest_path.is_file():
        raise MetadataError(
            f"Manifest not found: {manifest_path}",
            manifest_path=manifest_path,
            code=MANIFEST_NOT_FOUND,
        )

    cmd = compose_metadata_command(manifest_path, cargo)
    logger.debug("Querying package metadata: %s", " ".join(cmd))

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise MetadataError(
            f"cargo metadata timed out after {timeout}s",
            manifest_path=manifest_path,
        ) from e
    except OSError as e:
        raise MetadataError(
            f"Failed to run cargo metadata: {e}",
            manifest_path=manifest_path,
            code=CARGO_NOT_FOUND,
        ) from e

    if result.returncode != 0:
        stderr = result.stderr.strip()
        lowered = stderr.lower()
        code = (
            MANIFEST_NOT_FOUND
            if any(marker in lowered for marker in _NOT_FOUND_MARKERS)
            and "parse" not in lowered
            else MANIFEST_MALFORMED
        )
        raise MetadataError(
            f"cargo metadata failed for {manifest_path}: {stderr}",
            manifest_path=manifest_path,
            code=code,
        )

    return parse_metadata(result.stdout, manifest_path)


def check_lockfile(manifest_path: Path) -> bool:
    """Check for a Cargo.lock beside the manifest.

    A missing lockfile degrades reproducibility but does not stop the
    build, so this only logs a warning.

    Returns:
        True if the lockfile exists.
    """
    lock_file = manifest_path.parent / "Cargo.lock"
    if not lock_file.is_file():
        logger.warning("Cargo.lock not found in path %s", lock_file)
        return False
    return True


__all__ = [
    "CargoMetadata",
    "PackageDescriptor",
    "TargetDescriptor",
    "check_lockfile",
    "compose_metadata_command",
    "get_root_package",
    "parse_metadata",
]
