"""ELF path resolution and build reports.

This module handles:
- Normalizing package names the way cargo names output directories
- Computing the expected ELF path of every binary target
- Hashing ELF files
- Generating the JSON report of a build run
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from reprobuild.types import ArtifactRecord

logger = logging.getLogger(__name__)

# Where the exported stage lands, relative to the source root
TARGET_DIR = "target/riscv-guest/riscv32im-risc0-zkvm-elf/docker"

REPORT_VERSION = "1.0"

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def normalize_package_name(pkg_name: str) -> str:
    """Replace '-' with '_' to match cargo's output naming."""
    return pkg_name.replace("-", "_")


def get_output_dir(src_dir: Path) -> Path:
    """Directory the build exports into."""
    return src_dir / TARGET_DIR


def get_elf_path(src_dir: Path, pkg_name: str, target_name: str) -> Path:
    """Get the path to the ELF binary.

    Args:
        src_dir: Source root (build context).
        pkg_name: Package name, normalized here.
        target_name: Binary target name.

    Returns:
        ``<src_dir>/TARGET_DIR/<normalized pkg>/<target>``.
    """
    return get_output_dir(src_dir) / normalize_package_name(pkg_name) / target_name


def resolve_artifacts(
    src_dir: Path,
    pkg_name: str,
    target_names: Iterable[str],
) -> list[tuple[str, Path]]:
    """Resolve the expected ELF path of each binary target.

    Pure path computation: existence is not checked.

    Returns:
        List of (target name, path) in target order.
    """
    return [(name, get_elf_path(src_dir, pkg_name, name)) for name in target_names]


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def format_image_id_line(record: ArtifactRecord, src_dir: Path) -> str:
    """Format the ``ImageID: <id> - <path>`` report line.

    The path is shown relative to the source root when possible.
    """
    return f"ImageID: {record.image_id} - {_relative_posix(record.path, src_dir)}"


def generate_report(
    artifacts: list[ArtifactRecord],
    pkg_name: str,
    src_dir: Path,
    features: Iterable[str] = (),
    description_digest: str | None = None,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a report of a build run.

    Args:
        artifacts: Identified artifacts.
        pkg_name: Root package name.
        src_dir: Source root, used to relativize paths.
        features: Features the build was run with.
        description_digest: Digest of the synthesized Dockerfile.
        extra_metadata: Optional additional metadata.

    Returns:
        Report dictionary suitable for JSON serialization.
    """
    report: dict[str, Any] = {
        "version": REPORT_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "package": pkg_name,
        "features": list(features),
        "artifacts": [
            {
                "target": a.target_name,
                "path": _relative_posix(a.path, src_dir),
                "image_id": a.image_id,
                "sha256": a.sha256,
                "size_bytes": a.size_bytes,
            }
            for a in artifacts
        ],
    }

    if description_digest:
        report["description_digest"] = description_digest
    if extra_metadata:
        report["metadata"] = extra_metadata

    return report


def write_report(report: dict[str, Any], output_path: Path) -> Path:
    """Write a report to a JSON file.

    Args:
        report: Report dictionary.
        output_path: Output file path.

    Returns:
        Path to written report file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(report, f, indent=2, sort_keys=True)

    logger.info("Wrote report to %s", output_path)
    return output_path


def _relative_posix(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


__all__ = [
    "HASH_CHUNK_SIZE",
    "REPORT_VERSION",
    "TARGET_DIR",
    "compute_file_hash",
    "format_image_id_line",
    "generate_report",
    "get_elf_path",
    "get_output_dir",
    "normalize_package_name",
    "resolve_artifacts",
    "write_report",
]
