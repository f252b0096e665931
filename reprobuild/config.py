"""Configuration settings for reprobuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Only operational values come from the environment. Values that shape the
compiled output or the image ID are module constants and are never read
from the host.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Pinned guest builder image; floating tags break reproducibility
DEFAULT_BUILDER_IMAGE = "risczero/risc0-guest-builder:v2024-02-08.1"

# zkVM guest target and memory layout; identical on every host
DEFAULT_TARGET_TRIPLE = "riscv32im-risc0-zkvm-elf"
TEXT_START = 0x0020_0800
GUEST_MAX_MEM = 0x0C00_0000
PAGE_SIZE = 1024


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the REPROBUILD_
    prefix. The skip switch keeps its historical name, RISC0_SKIP_BUILD.
    """

    model_config = SettingsConfigDict(
        env_prefix="REPROBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Container engine
    engine: str = Field(
        default="docker",
        description="Container engine executable",
    )
    ready_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait for the container engine to respond",
    )
    build_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Timeout for the container build (unbounded if not set)",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    skip_build: str = Field(
        default="",
        validation_alias="RISC0_SKIP_BUILD",
        description="Skip the build entirely when non-empty",
    )

    @property
    def skip_requested(self) -> bool:
        """Whether RISC0_SKIP_BUILD is set to a non-empty value."""
        return bool(self.skip_build)


def get_settings() -> Settings:
    """Load application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_BUILDER_IMAGE",
    "DEFAULT_TARGET_TRIPLE",
    "GUEST_MAX_MEM",
    "PAGE_SIZE",
    "TEXT_START",
    "Settings",
    "get_settings",
    "print_settings_json",
]
