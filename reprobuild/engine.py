"""Container engine availability checks.

This module handles:
- Locating the engine executable on the host
- Polling ``<engine> version`` with exponential backoff until the daemon answers
- Checking that ``<engine> --version`` runs at all

Engines such as Docker Desktop start asynchronously, so the first probe
may fail while the daemon is still booting. Polling is bounded by a total
time budget so an absent daemon never hangs the caller.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from collections.abc import Callable
from pathlib import Path

from reprobuild.errors import (
    ENGINE_NOT_FOUND,
    ENGINE_NOT_RUNNING,
    ENGINE_VERSION_FAILED,
    EngineUnavailableError,
)

logger = logging.getLogger(__name__)

# Backoff parameters (seconds)
INITIAL_INTERVAL = 0.5
MULTIPLIER = 1.5
MAX_INTERVAL = 2.0


def find_engine(engine: str = "docker") -> Path:
    """Locate the engine executable.

    Args:
        engine: Executable name or path.

    Returns:
        Absolute path to the executable.

    Raises:
        EngineUnavailableError: If the executable is not on PATH.
    """
    found = shutil.which(engine)
    if found is None:
        raise EngineUnavailableError(
            f"Could not find `{engine}` on PATH",
            code=ENGINE_NOT_FOUND,
        )
    return Path(found)


def probe_engine(engine: str | Path, timeout: float | None = None) -> bool:
    """Run a single liveness probe.

    Args:
        engine: Engine executable.
        timeout: Upper bound for the probe process.

    Returns:
        True if ``<engine> version`` exited with status 0.
    """
    try:
        result = subprocess.run(
            [str(engine), "version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.debug("`%s version` timed out", engine)
        return False
    except OSError as e:
        logger.debug("Failed to run `%s version`: %s", engine, e)
        return False
    return result.returncode == 0


def wait_for_engine(
    engine: str | Path,
    max_wait: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Poll the engine until it answers or the time budget runs out.

    The delay between probes grows exponentially from INITIAL_INTERVAL
    and is capped both by MAX_INTERVAL and by the remaining budget.

    Args:
        engine: Engine executable.
        max_wait: Total time budget in seconds.
        sleep: Sleep function (injectable for tests).
        clock: Monotonic clock (injectable for tests).

    Raises:
        EngineUnavailableError: If the budget is exhausted.
    """
    start = clock()
    interval = INITIAL_INTERVAL
    attempt = 0

    while True:
        attempt += 1
        remaining = max_wait - (clock() - start)
        if probe_engine(engine, timeout=max(remaining, 0.1)):
            logger.debug("Engine ready after %d attempt(s)", attempt)
            return

        remaining = max_wait - (clock() - start)
        if remaining <= 0:
            break

        delay = min(interval, MAX_INTERVAL, remaining)
        logger.debug(
            "Engine not ready (attempt %d), retrying in %.2fs", attempt, delay
        )
        sleep(delay)
        interval *= MULTIPLIER

    raise EngineUnavailableError(
        f"Container engine did not respond within {max_wait:g}s "
        f"({attempt} attempts)",
        code=ENGINE_NOT_RUNNING,
    )


def ensure_ready(max_wait: float = 5.0, engine: str = "docker") -> Path:
    """Ensure the container engine is installed and running.

    Args:
        max_wait: Total time budget in seconds.
        engine: Engine executable name.

    Returns:
        Path to the engine executable.

    Raises:
        EngineUnavailableError: If the engine is missing (no retry) or
            does not become ready within ``max_wait``.
    """
    logger.info("Checking if %s is running...", engine)
    engine_path = find_engine(engine)
    wait_for_engine(engine_path, max_wait)
    return engine_path


def check_engine_version(engine: str | Path) -> str:
    """Run ``<engine> --version``.

    Args:
        engine: Engine executable.

    Returns:
        The version line reported by the engine.

    Raises:
        EngineUnavailableError: If the command cannot run or fails.
    """
    try:
        result = subprocess.run(
            [str(engine), "--version"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise EngineUnavailableError(
            f"Could not find or execute {engine}: {e}",
            code=ENGINE_VERSION_FAILED,
        ) from e

    if result.returncode != 0:
        raise EngineUnavailableError(
            f"`{engine} --version` failed with exit code {result.returncode}",
            code=ENGINE_VERSION_FAILED,
        )
    version = result.stdout.strip()
    logger.debug("Engine version: %s", version)
    return version


__all__ = [
    "INITIAL_INTERVAL",
    "MAX_INTERVAL",
    "MULTIPLIER",
    "check_engine_version",
    "ensure_ready",
    "find_engine",
    "probe_engine",
    "wait_for_engine",
]
