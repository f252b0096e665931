"""Thin CLI wrapper for reprobuild.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from reprobuild import __version__
from reprobuild.config import (
    DEFAULT_BUILDER_IMAGE,
    DEFAULT_TARGET_TRIPLE,
    GUEST_MAX_MEM,
    PAGE_SIZE,
    TEXT_START,
    Settings,
    get_settings,
    print_settings_json,
)
from reprobuild.errors import INVALID_CONFIG, EngineUnavailableError, ReproBuildError

app = typer.Typer(
    name="reprobuild",
    help="Reproducible Guest Builder - build guest ELFs in Docker and compute image IDs",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Route library logging through rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"reprobuild version {__version__}")
        raise typer.Exit()


def _fail(e: ReproBuildError) -> None:
    err_console.print(f"[red]Error ({e.code}): {escape(str(e))}[/red]")
    raise typer.Exit(code=1) from None


def _fail_engine(e: EngineUnavailableError) -> None:
    err_console.print(f"[red]Error ({e.code}): {escape(str(e))}[/red]")
    err_console.print(e.guidance, highlight=False)
    raise typer.Exit(code=1) from None


def _load_settings() -> Settings:
    try:
        return get_settings()
    except ValidationError as e:
        err_console.print(f"[red]Error ({INVALID_CONFIG}): {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Reproducible Guest Builder - build guest ELFs in Docker and compute image IDs."""
    settings = _load_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = _load_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Engine:[/bold]")
        console.print(f"  Engine:              {settings.engine}")
        console.print(f"  Ready timeout:       {settings.ready_timeout}")
        console.print(f"  Build timeout:       {settings.build_timeout or '(none)'}")
        console.print()
        console.print("[bold]Build environment (fixed):[/bold]")
        console.print(f"  Builder image:       {DEFAULT_BUILDER_IMAGE}")
        console.print(f"  Target triple:       {DEFAULT_TARGET_TRIPLE}")
        console.print(f"  Text start:          0x{TEXT_START:08X}")
        console.print()
        console.print("[bold]Image ID (fixed):[/bold]")
        console.print(f"  Max memory:          0x{GUEST_MAX_MEM:08X}")
        console.print(f"  Page size:           {PAGE_SIZE}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Skip build:          {settings.skip_requested}")


@app.command()
def check(
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", "-t", help="Seconds to wait for the engine"),
    ] = None,
) -> None:
    """Check that the container engine is installed and running."""
    from reprobuild.engine import check_engine_version, ensure_ready

    settings = _load_settings()
    try:
        engine_path = ensure_ready(timeout or settings.ready_timeout, settings.engine)
        version = check_engine_version(engine_path)
    except EngineUnavailableError as e:
        _fail_engine(e)
        return

    console.print(f"[green]✓ {settings.engine} is running[/green]")
    console.print(f"  Path:    {engine_path}")
    console.print(f"  Version: {version}")


@app.command()
def build(
    manifest_path: Annotated[
        Path, typer.Argument(help="Path to the guest Cargo.toml")
    ],
    src_dir: Annotated[
        Path | None,
        typer.Option(
            "--src-dir",
            "-s",
            help="Build context root (defaults to the manifest's directory)",
        ),
    ] = None,
    features: Annotated[
        list[str] | None,
        typer.Option("--feature", "-F", help="Cargo feature (can be repeated)"),
    ] = None,
    report_path: Annotated[
        Path | None,
        typer.Option("--report", "-r", help="Write a JSON report to this path"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output result as JSON"),
    ] = False,
) -> None:
    """Build guest ELFs reproducibly and print their image IDs."""
    from reprobuild.builds.artifacts import generate_report, write_report
    from reprobuild.builds.service import docker_build

    settings = _load_settings()
    context = src_dir if src_dir is not None else manifest_path.parent
    feature_list = features or []

    try:
        result = docker_build(
            manifest_path,
            context,
            feature_list,
            settings=settings,
            echo=(lambda _line: None) if json_output else typer.echo,
        )
    except EngineUnavailableError as e:
        _fail_engine(e)
        return
    except ReproBuildError as e:
        _fail(e)
        return

    if result.skipped:
        if json_output:
            typer.echo(json.dumps({"status": result.status.value}))
        else:
            console.print("[yellow]Build skipped (RISC0_SKIP_BUILD is set)[/yellow]")
        return

    resolved_src = context.resolve()
    report = generate_report(
        result.artifacts,
        pkg_name=result.package_name or "",
        src_dir=resolved_src,
        features=feature_list,
        description_digest=result.description_digest,
    )
    if report_path is not None:
        write_report(report, report_path)

    if json_output:
        report["status"] = result.status.value
        typer.echo(json.dumps(report, indent=2, sort_keys=True))


@app.command("image-id")
def image_id(
    elf_path: Annotated[Path, typer.Argument(help="Path to a guest ELF")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Compute the image ID of an existing ELF."""
    from reprobuild.builds.artifacts import compute_file_hash
    from reprobuild.image_id import compute_image_id

    try:
        computed = compute_image_id(elf_path)
    except ReproBuildError as e:
        _fail(e)
        return

    if json_output:
        output = {
            "path": str(elf_path),
            "image_id": computed,
            "sha256": compute_file_hash(elf_path),
        }
        typer.echo(json.dumps(output, indent=2))
    else:
        typer.echo(f"ImageID: {computed} - {elf_path}")


@app.command()
def dockerfile(
    manifest_path: Annotated[
        Path, typer.Argument(help="Path to the guest Cargo.toml")
    ],
    src_dir: Annotated[
        Path | None,
        typer.Option("--src-dir", "-s", help="Build context root"),
    ] = None,
    features: Annotated[
        list[str] | None,
        typer.Option("--feature", "-F", help="Cargo feature (can be repeated)"),
    ] = None,
) -> None:
    """Print the synthesized Dockerfile without building."""
    from reprobuild.builds.service import describe_build, prepare_request
    from reprobuild.metadata import get_root_package

    context = src_dir if src_dir is not None else manifest_path.parent

    try:
        request = prepare_request(manifest_path, context, features or [])
        root_pkg = get_root_package(request.manifest_path)
    except ReproBuildError as e:
        _fail(e)
        return

    description = describe_build(request, root_pkg)
    typer.echo(description.render(), nl=False)
    typer.echo(f"# digest: {description.digest()}")


if __name__ == "__main__":
    app()
