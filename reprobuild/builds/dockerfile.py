"""Dockerfile synthesis for reproducible guest builds.

This module handles:
- Composing the cargo fetch and build commands
- Describing the two-stage build (compile, then export ELFs only)
- Rendering the Dockerfile and its .dockerignore

The description is a pure function of the manifest path, package name,
features and the pinned build environment. Nothing is read from the host
environment.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from reprobuild.builds.artifacts import normalize_package_name
from reprobuild.config import (
    DEFAULT_BUILDER_IMAGE,
    DEFAULT_TARGET_TRIPLE,
    TEXT_START,
)

logger = logging.getLogger(__name__)

# Excluded from the build context
DOCKER_IGNORE = """
**/Dockerfile
**/.git
**/node_modules
**/target
**/tmp
"""

DOCKERFILE_NAME = "Dockerfile"
DOCKER_IGNORE_NAME = "Dockerfile.dockerignore"

CONTAINER_SRC_DIR = "/src"
CONTAINER_TARGET_DIR = "target"
BUILD_STAGE = "build"
EXPORT_STAGE = "export"

# Characters the Dockerfile parser interprets inside a double-quoted value
_ENV_ESCAPES = str.maketrans({"\\": "\\\\", '"': '\\"', "$": "\\$"})


def quote_env_value(value: str) -> str:
    """Quote a value for an ``ENV`` instruction.

    Non-ASCII text is written as-is; the Dockerfile parser does not decode
    ``\\uXXXX`` escapes. Backslashes, quotes and ``$`` are escaped so the
    value is neither split nor substituted.
    """
    return '"' + value.translate(_ENV_ESCAPES) + '"'


def validate_builder_image(image: str) -> str:
    """Require an explicit, non-floating tag or digest.

    Raises:
        ValueError: If the image has no tag or uses ``latest``.
    """
    if "@sha256:" in image:
        return image
    name = image.rsplit("/", 1)[-1]
    if ":" not in name:
        raise ValueError(f"builder image must pin a tag, got '{image}'")
    if name.rsplit(":", 1)[1] == "latest":
        raise ValueError("builder image must not use the 'latest' tag")
    return image


@dataclass(frozen=True)
class Stage:
    """One stage of a multi-stage Dockerfile.

    Attributes:
        alias: Stage name used by ``FROM ... AS`` and ``--from``.
        base: Base image.
        comment: Optional comment emitted above the stage.
        workdir: Working directory, if any.
        copies: ``COPY`` instructions as (source, destination, from_stage).
        env: Environment bindings, in order.
        commands: ``RUN`` commands, in order.
    """

    alias: str
    base: str
    comment: str | None = None
    workdir: str | None = None
    copies: tuple[tuple[str, str, str | None], ...] = ()
    env: tuple[tuple[str, str], ...] = ()
    commands: tuple[str, ...] = ()

    def render(self) -> str:
        lines: list[str] = []
        if self.comment:
            lines.append(f"# {self.comment}")
        lines.append(f"FROM {self.base} AS {self.alias}")
        if self.workdir:
            lines.append(f"WORKDIR {self.workdir}")
        for source, dest, from_stage in self.copies:
            if from_stage:
                lines.append(f"COPY --from={from_stage} {source} {dest}")
            else:
                lines.append(f"COPY {source} {dest}")
        for key, value in self.env:
            lines.append(f"ENV {key}={quote_env_value(value)}")
        for command in self.commands:
            lines.append(f"RUN {command}")
        return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class BuildDescription:
    """Two-stage build plan plus its context exclusion list."""

    build: Stage
    export: Stage
    ignore: str = DOCKER_IGNORE

    def render(self) -> str:
        """Render the Dockerfile text."""
        return self.build.render() + "\n" + self.export.render()

    def digest(self) -> str:
        """SHA-256 over the Dockerfile and ignore list."""
        sha256 = hashlib.sha256()
        sha256.update(self.render().encode("utf-8"))
        sha256.update(b"\0")
        sha256.update(self.ignore.encode("utf-8"))
        return f"sha256:{sha256.hexdigest()}"

    @property
    def fetch_command(self) -> str:
        return self.build.commands[0]

    @property
    def build_command(self) -> str:
        return self.build.commands[1]


def compose_rustflags(text_start: int) -> str:
    """Compose RUSTFLAGS with a fixed link base address."""
    return (
        "-C passes=loweratomic "
        f"-C link-arg=-Ttext=0x{text_start:08X} "
        "-C link-arg=--fatal-warnings"
    )


def compose_cargo_commands(
    target_triple: str,
    features: Sequence[str] = (),
) -> tuple[str, str]:
    """Compose the cargo fetch and build commands.

    Fetching separately lets the engine cache the downloads as long as
    Cargo.lock does not change.

    Args:
        target_triple: Rust target triple.
        features: Cargo features; omitted entirely when empty.

    Returns:
        Tuple of (fetch command, build command).
    """
    common_args = [
        "--locked",
        "--target",
        target_triple,
        "--manifest-path",
        "$CARGO_MANIFEST_PATH",
    ]

    build_args = list(common_args)
    if features:
        build_args.extend(["--features", ",".join(features)])

    fetch_cmd = " ".join(["cargo", "+risc0", "fetch", *common_args])
    build_cmd = " ".join(["cargo", "+risc0", "build", "--release", *build_args])
    return fetch_cmd, build_cmd


def synthesize(
    rel_manifest_path: Path,
    pkg_name: str,
    features: Sequence[str] = (),
    *,
    builder_image: str = DEFAULT_BUILDER_IMAGE,
    target_triple: str = DEFAULT_TARGET_TRIPLE,
    text_start: int = TEXT_START,
) -> BuildDescription:
    """Create the build description for a package.

    The build environment is passed explicitly and defaults to the pinned
    constants, so every value that shapes the output shows up in the
    rendered Dockerfile and therefore in its digest.

    Args:
        rel_manifest_path: Manifest path relative to the build context.
        pkg_name: Package name (normalized for the export path).
        features: Cargo features to enable.
        builder_image: Image for the build stage; must pin a tag or digest.
        target_triple: Rust target triple.
        text_start: Link base address of the .text section.

    Returns:
        BuildDescription for the package.

    Raises:
        ValueError: If the manifest path is absolute or escapes the context,
            or if the builder image is not pinned.
    """
    validate_builder_image(builder_image)

    rel = PurePosixPath(*rel_manifest_path.parts)
    if rel.is_absolute() or ".." in rel.parts:
        raise ValueError(
            f"Manifest path must be relative to the build context: {rel_manifest_path}"
        )
    manifest_in_container = str(PurePosixPath(CONTAINER_SRC_DIR) / rel)

    fetch_cmd, build_cmd = compose_cargo_commands(target_triple, features)

    build = Stage(
        alias=BUILD_STAGE,
        base=builder_image,
        workdir=CONTAINER_SRC_DIR,
        copies=((".", ".", None),),
        env=(
            ("CARGO_MANIFEST_PATH", manifest_in_container),
            ("RUSTFLAGS", compose_rustflags(text_start)),
            ("CARGO_TARGET_DIR", CONTAINER_TARGET_DIR),
        ),
        commands=(fetch_cmd, build_cmd),
    )

    release_dir = f"{CONTAINER_SRC_DIR}/{CONTAINER_TARGET_DIR}/{target_triple}/release"
    export = Stage(
        alias=EXPORT_STAGE,
        base="scratch",
        comment="export stage",
        copies=((release_dir, f"/{normalize_package_name(pkg_name)}", BUILD_STAGE),),
    )

    return BuildDescription(build=build, export=export)


def write_build_files(description: BuildDescription, directory: Path) -> Path:
    """Write the Dockerfile and its ignore file.

    Overwrites if a Dockerfile already exists.

    Args:
        description: Build description to render.
        directory: Target directory.

    Returns:
        Path to the written Dockerfile.
    """
    dockerfile = directory / DOCKERFILE_NAME
    dockerfile.write_text(description.render(), encoding="utf-8")
    (directory / DOCKER_IGNORE_NAME).write_text(description.ignore, encoding="utf-8")
    logger.debug("Wrote %s (%s)", dockerfile, description.digest())
    return dockerfile


__all__ = [
    "BUILD_STAGE",
    "DOCKERFILE_NAME",
    "DOCKER_IGNORE",
    "DOCKER_IGNORE_NAME",
    "EXPORT_STAGE",
    "BuildDescription",
    "Stage",
    "compose_cargo_commands",
    "compose_rustflags",
    "quote_env_value",
    "synthesize",
    "validate_builder_image",
    "write_build_files",
]
