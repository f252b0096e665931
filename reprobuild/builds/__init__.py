"""Build orchestration module.

This module handles:
- Dockerfile synthesis for the guest build
- Running the container engine build
- Resolving ELF output paths and writing run reports
- The end-to-end docker_build pipeline
"""

from reprobuild.builds.artifacts import TARGET_DIR, get_elf_path
from reprobuild.builds.service import docker_build

__all__ = ["TARGET_DIR", "docker_build", "get_elf_path"]
