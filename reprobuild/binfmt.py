"""Guest ELF loading and memory image reduction.

A guest ELF is loaded into a sparse word map bounded by the guest memory
size, quantized into fixed-size pages, and reduced to an image ID with a
SHA-256 Merkle tree over the pages and the entry point. The same ELF,
maximum memory and page size always produce the same ID, independent of
the host.
"""

from __future__ import annotations

import hashlib
import io
from dataclasses import dataclass, field

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

WORD_SIZE = 4

_LEAF_TAG = b"risc0.page"
_NODE_TAG = b"risc0.node"
_IMAGE_TAG = b"risc0.image"


class BinfmtError(Exception):
    """Raised when an ELF does not form a valid guest program."""


@dataclass
class Program:
    """A loaded guest program.

    Attributes:
        entry: Entry point address.
        image: Word-aligned address to little-endian word value.
    """

    entry: int
    image: dict[int, int] = field(default_factory=dict)

    @classmethod
    def load_elf(cls, data: bytes, max_mem: int) -> Program:
        """Load a 32-bit RISC-V executable.

        Args:
            data: Raw ELF bytes.
            max_mem: Exclusive upper bound on any loaded address.

        Returns:
            Program with every PT_LOAD segment mapped word by word.

        Raises:
            BinfmtError: If the ELF is malformed or out of bounds.
        """
        try:
            elf = ELFFile(io.BytesIO(data))
            if elf.elfclass != 32:
                raise BinfmtError("Not a 32-bit ELF")
            if elf.header["e_machine"] != "EM_RISCV":
                raise BinfmtError("Invalid machine type, must be RISC-V")
            if elf.header["e_type"] != "ET_EXEC":
                raise BinfmtError("Invalid ELF type, must be executable")

            entry = elf.header["e_entry"]
            if entry >= max_mem or entry % WORD_SIZE:
                raise BinfmtError(f"Invalid entrypoint 0x{entry:08x}")

            image: dict[int, int] = {}
            for segment in elf.iter_segments():
                if segment["p_type"] != "PT_LOAD":
                    continue
                _load_segment(
                    image,
                    vaddr=segment["p_vaddr"],
                    file_data=segment.data(),
                    file_size=segment["p_filesz"],
                    mem_size=segment["p_memsz"],
                    max_mem=max_mem,
                )
        except ELFError as e:
            raise BinfmtError(f"Malformed ELF: {e}") from e

        return cls(entry=entry, image=image)


def _load_segment(
    image: dict[int, int],
    vaddr: int,
    file_data: bytes,
    file_size: int,
    mem_size: int,
    max_mem: int,
) -> None:
    if vaddr % WORD_SIZE:
        raise BinfmtError(f"vaddr 0x{vaddr:08x} is unaligned")
    if file_size > mem_size:
        raise BinfmtError("Segment file size exceeds memory size")
    if len(file_data) < file_size:
        raise BinfmtError("Segment data is truncated")

    for offset in range(0, mem_size, WORD_SIZE):
        addr = vaddr + offset
        if addr >= max_mem:
            raise BinfmtError(
                f"Address 0x{addr:08x} is beyond max memory 0x{max_mem:08x}"
            )
        if offset >= file_size:
            # bss
            image[addr] = 0
            continue
        chunk = file_data[offset : min(offset + WORD_SIZE, file_size)]
        image[addr] = int.from_bytes(chunk.ljust(WORD_SIZE, b"\0"), "little")


class MemoryImage:
    """Page-quantized memory of a loaded program."""

    def __init__(self, program: Program, page_size: int) -> None:
        if page_size < WORD_SIZE or page_size & (page_size - 1):
            raise BinfmtError(f"Invalid page size {page_size}")
        self.pc = program.entry
        self.page_size = page_size
        self.pages: dict[int, bytearray] = {}

        for addr, word in program.image.items():
            page_idx, offset = divmod(addr, page_size)
            page = self.pages.get(page_idx)
            if page is None:
                page = self.pages[page_idx] = bytearray(page_size)
            page[offset : offset + WORD_SIZE] = word.to_bytes(WORD_SIZE, "little")

    def page_digests(self) -> list[bytes]:
        """Leaf digests of every resident page, in address order."""
        return [
            hashlib.sha256(
                _LEAF_TAG + idx.to_bytes(4, "little") + bytes(self.pages[idx])
            ).digest()
            for idx in sorted(self.pages)
        ]

    def merkle_root(self) -> bytes:
        level = self.page_digests()
        if not level:
            return hashlib.sha256(_NODE_TAG).digest()
        while len(level) > 1:
            if len(level) % 2:
                level.append(level[-1])
            level = [
                hashlib.sha256(_NODE_TAG + level[i] + level[i + 1]).digest()
                for i in range(0, len(level), 2)
            ]
        return level[0]

    def compute_id(self) -> str:
        """Reduce the image to a 64-character hex identifier."""
        digest = hashlib.sha256(
            _IMAGE_TAG
            + self.merkle_root()
            + self.pc.to_bytes(4, "little")
            + self.page_size.to_bytes(4, "little")
        )
        return digest.hexdigest()


__all__ = ["WORD_SIZE", "BinfmtError", "MemoryImage", "Program"]
