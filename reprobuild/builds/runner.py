"""Build runner for executing container engine builds.

This module handles:
- Composing the ``<engine> build --output=...`` command
- Executing the build with subprocess
- Mapping failures to BuildFailedError

Success is decided by the engine's exit status alone. The engine's own
output is streamed to the terminal and never parsed.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from reprobuild.builds.artifacts import get_output_dir
from reprobuild.builds.dockerfile import DOCKERFILE_NAME
from reprobuild.config import Settings
from reprobuild.errors import (
    BUILD_FAILED,
    BUILD_TIMEOUT,
    EXECUTION_ERROR,
    BuildFailedError,
)

logger = logging.getLogger(__name__)


def compose_build_command(
    src_dir: Path,
    build_dir: Path,
    engine: str = "docker",
) -> list[str]:
    """Compose the engine build command.

    Args:
        src_dir: Build context.
        build_dir: Directory holding the synthesized Dockerfile.
        engine: Engine executable.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    return [
        engine,
        "build",
        f"--output={get_output_dir(src_dir)}",
        "-f",
        str(build_dir / DOCKERFILE_NAME),
        str(src_dir),
    ]


def run_build(
    src_dir: Path,
    build_dir: Path,
    settings: Settings | None = None,
) -> Path:
    """Build the Dockerfile and export the ELFs.

    Overwrites if an ELF with the same name already exists.

    Args:
        src_dir: Build context (canonical source root).
        build_dir: Directory holding the synthesized Dockerfile.
        settings: Settings supplying the engine and timeout.

    Returns:
        The output directory the ELFs were exported to.

    Raises:
        BuildFailedError: If the engine exits non-zero, times out, or
            cannot be executed.
    """
    if settings is None:
        settings = Settings()

    cmd = compose_build_command(src_dir, build_dir, settings.engine)
    cmd_str = shlex.join(cmd)
    logger.info("Executing build: %s", cmd_str)

    try:
        result = subprocess.run(
            cmd,
            timeout=settings.build_timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        message = f"{settings.engine} build timed out after {settings.build_timeout} seconds"
        logger.error(message)
        raise BuildFailedError(message, exit_code=-1, code=BUILD_TIMEOUT) from e
    except OSError as e:
        message = f"{settings.engine} failed to execute: {e}"
        logger.error(message)
        raise BuildFailedError(message, code=EXECUTION_ERROR) from e

    if result.returncode != 0:
        message = f"{settings.engine} build failed with exit code {result.returncode}"
        logger.error(message)
        raise BuildFailedError(message, exit_code=result.returncode, code=BUILD_FAILED)

    output_dir = get_output_dir(src_dir)
    logger.info("Build exported to %s", output_dir)
    return output_dir


__all__ = ["compose_build_command", "run_build"]
