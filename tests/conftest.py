"""Shared fixtures for reprobuild tests."""

import struct
from collections.abc import Callable

import pytest

EM_RISCV = 243
ET_EXEC = 2
ET_DYN = 3
PT_LOAD = 1

ELF32_HEADER_SIZE = 52
ELF32_PHDR_SIZE = 32
ELF32_SHDR_SIZE = 40

DEFAULT_ENTRY = 0x0020_0800


def build_elf32(
    segments: list[tuple[int, bytes, int]],
    entry: int = DEFAULT_ENTRY,
    machine: int = EM_RISCV,
    e_type: int = ET_EXEC,
    elf_class: int = 1,
) -> bytes:
    """Build a minimal little-endian ELF32 executable.

    Args:
        segments: (vaddr, file bytes, memsz) for each PT_LOAD segment.
        entry: Entry point.
        machine: e_machine value.
        e_type: e_type value.
        elf_class: EI_CLASS byte (1 = 32-bit).
    """
    phoff = ELF32_HEADER_SIZE
    data_offset = phoff + ELF32_PHDR_SIZE * len(segments)

    phdrs = b""
    body = b""
    for vaddr, data, memsz in segments:
        offset = data_offset + len(body)
        phdrs += struct.pack(
            "<IIIIIIII", PT_LOAD, offset, vaddr, vaddr, len(data), memsz, 5, 4
        )
        body += data

    shstrtab = b"\0.shstrtab\0"
    shstrtab_offset = data_offset + len(body)
    body += shstrtab
    while (data_offset + len(body)) % 4:
        body += b"\0"
    shoff = data_offset + len(body)

    shdrs = b"\0" * ELF32_SHDR_SIZE
    shdrs += struct.pack(
        "<IIIIIIIIII", 1, 3, 0, 0, shstrtab_offset, len(shstrtab), 0, 0, 1, 0
    )

    ident = b"\x7fELF" + bytes([elf_class, 1, 1, 0]) + b"\0" * 8
    header = ident + struct.pack(
        "<HHIIIIIHHHHHH",
        e_type,
        machine,
        1,
        entry,
        phoff,
        shoff,
        0,
        ELF32_HEADER_SIZE,
        ELF32_PHDR_SIZE,
        len(segments),
        ELF32_SHDR_SIZE,
        2,
        1,
    )
    return header + phdrs + body + shdrs


@pytest.fixture
def make_elf() -> Callable[..., bytes]:
    """Factory for synthetic guest ELFs."""
    return build_elf32


@pytest.fixture
def guest_elf() -> bytes:
    """A small valid guest program with text and bss."""
    text = bytes(range(64))
    return build_elf32([(DEFAULT_ENTRY, text, 128)])


@pytest.fixture
def guest_pkg(tmp_path):
    """A source tree with a guest manifest and lockfile."""
    src = tmp_path / "src"
    guest = src / "methods" / "guest"
    guest.mkdir(parents=True)
    (guest / "Cargo.toml").write_text('[package]\nname = "fib-guest"\n')
    (guest / "Cargo.lock").write_text("version = 3\n")
    return src
