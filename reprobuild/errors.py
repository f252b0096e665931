"""Error definitions for reprobuild.

Every error carries a stable ``code`` for programmatic handling, in
addition to a human-readable message. Phases fail fast and raise one
of these; nothing is retried except the engine readiness probe.
"""

from __future__ import annotations

from pathlib import Path

# Error code constants
ENGINE_NOT_FOUND = "engine_not_found"
ENGINE_NOT_RUNNING = "engine_not_running"
ENGINE_VERSION_FAILED = "engine_version_failed"
CARGO_NOT_FOUND = "cargo_not_found"
MANIFEST_NOT_FOUND = "manifest_not_found"
MANIFEST_MALFORMED = "manifest_malformed"
MANIFEST_OUTSIDE_CONTEXT = "manifest_outside_context"
BUILD_FAILED = "build_failed"
BUILD_TIMEOUT = "build_timeout"
EXECUTION_ERROR = "execution_error"
LOAD_ERROR = "load_error"
INVALID_CONFIG = "invalid_config"

DOCKER_MSG = """Docker is not running.

Reproducible builds rely on Docker to build the ELF binaries.
Please install Docker and ensure it is running before running this command.
"""


class ReproBuildError(Exception):
    """Base error for reprobuild operations."""

    def __init__(self, message: str, code: str = "reprobuild_error") -> None:
        super().__init__(message)
        self.code = code


class EngineUnavailableError(ReproBuildError):
    """Raised when the container engine is missing or not responding."""

    def __init__(self, message: str, code: str = ENGINE_NOT_RUNNING) -> None:
        super().__init__(message, code=code)
        self.guidance = DOCKER_MSG


class MetadataError(ReproBuildError):
    """Raised when package metadata cannot be resolved."""

    def __init__(
        self,
        message: str,
        manifest_path: Path | None = None,
        code: str = MANIFEST_MALFORMED,
    ) -> None:
        super().__init__(message, code=code)
        self.manifest_path = manifest_path


class BuildFailedError(ReproBuildError):
    """Raised when the container build fails or cannot be started."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = BUILD_FAILED,
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code


class LoadError(ReproBuildError):
    """Raised when an ELF cannot be turned into an image ID.

    Attributes:
        path: The ELF file being processed.
        step: Which step failed (read, load_elf, memory_image).
    """

    def __init__(self, path: Path, step: str, reason: str) -> None:
        super().__init__(f"{step} failed for {path}: {reason}", code=LOAD_ERROR)
        self.path = path
        self.step = step


__all__ = [
    "BUILD_FAILED",
    "BUILD_TIMEOUT",
    "CARGO_NOT_FOUND",
    "DOCKER_MSG",
    "ENGINE_NOT_FOUND",
    "ENGINE_NOT_RUNNING",
    "ENGINE_VERSION_FAILED",
    "EXECUTION_ERROR",
    "INVALID_CONFIG",
    "LOAD_ERROR",
    "MANIFEST_MALFORMED",
    "MANIFEST_NOT_FOUND",
    "MANIFEST_OUTSIDE_CONTEXT",
    "BuildFailedError",
    "EngineUnavailableError",
    "LoadError",
    "MetadataError",
    "ReproBuildError",
]
