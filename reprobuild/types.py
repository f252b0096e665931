"""Shared type definitions for reprobuild.

This module contains dataclasses and enums shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class BuildStatus(str, Enum):
    """Outcome of a docker_build run.

    There is no failed status: failures are raised as errors.
    """

    SUCCESS = "success"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class BuildRequest:
    """Inputs to one orchestration run."""

    manifest_path: Path
    src_dir: Path
    features: tuple[str, ...] = ()


@dataclass(frozen=True)
class ArtifactRecord:
    """An identified guest ELF produced by a build.

    Attributes:
        target_name: Name of the binary target.
        path: Absolute path of the ELF on the host.
        image_id: Deterministic image identifier.
        sha256: SHA-256 of the raw ELF bytes.
        size_bytes: Size of the ELF file.
    """

    target_name: str
    path: Path
    image_id: str
    sha256: str = ""
    size_bytes: int = 0


@dataclass
class BuildResult:
    """Result of a docker_build run."""

    status: BuildStatus
    artifacts: list[ArtifactRecord] = field(default_factory=list)
    output_dir: Path | None = None
    package_name: str | None = None
    description_digest: str | None = None

    @property
    def skipped(self) -> bool:
        return self.status is BuildStatus.SKIPPED


__all__ = [
    "ArtifactRecord",
    "BuildRequest",
    "BuildResult",
    "BuildStatus",
]
