"""reprobuild - Reproducible container builds for zkVM guest binaries.

This package builds guest packages inside a pinned container environment and
derives a deterministic image ID for every produced ELF, so builds on
different hosts can be compared.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
