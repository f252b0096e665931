"""Image ID computation for guest ELFs.

Reads the ELF, hands it to the loader and memory-image reduction in
``reprobuild.binfmt``, and reports any failure as a single LoadError
naming the file and the failing step. The loader and reduction are used
as-is; this module only sequences them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from reprobuild.binfmt import BinfmtError, MemoryImage, Program
from reprobuild.config import GUEST_MAX_MEM, PAGE_SIZE
from reprobuild.errors import LoadError

logger = logging.getLogger(__name__)


def compute_image_id(
    elf_path: Path,
    max_mem: int = GUEST_MAX_MEM,
    page_size: int = PAGE_SIZE,
) -> str:
    """Compute the image ID for a given ELF.

    ``max_mem`` and ``page_size`` must be identical on every host or the
    resulting IDs are not comparable.

    Args:
        elf_path: Path to the ELF binary.
        max_mem: Upper bound of guest memory.
        page_size: Page granularity of the memory image.

    Returns:
        Image ID as a hex string.

    Raises:
        LoadError: If the file cannot be read or loaded.
    """
    try:
        elf = elf_path.read_bytes()
    except OSError as e:
        raise LoadError(elf_path, "read", str(e)) from e

    try:
        program = Program.load_elf(elf, max_mem)
    except BinfmtError as e:
        raise LoadError(elf_path, "load_elf", f"unable to load elf: {e}") from e

    try:
        image = MemoryImage(program, page_size)
    except BinfmtError as e:
        raise LoadError(
            elf_path, "memory_image", f"unable to create memory image: {e}"
        ) from e

    image_id = image.compute_id()
    logger.debug("Computed image ID %s for %s", image_id, elf_path)
    return image_id


__all__ = ["compute_image_id"]
