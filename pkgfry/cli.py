"""Thin CLI wrapper for pkgfry.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from pkgfry import __version__
from pkgfry.config import Settings, get_settings, print_settings_json
from pkgfry.errors import BuildFailure, LintError, PkgfryError
from pkgfry.recipe.io import DEFAULT_RECIPE
from pkgfry.types import UpdatePolicy

app = typer.Typer(
    name="pkgfry",
    help="pkgfry - build deb/rpm packages inside containers",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Route log records through a rich handler on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(console=err_console, show_path=False, rich_tracebacks=True)
        ],
        force=True,
    )
    # Per-request logs of the HTTP client are noise at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def report_error(error: PkgfryError) -> None:
    """Print a failure in red."""
    console.print(f"[red]Error: {escape(error.message)}[/red]")
    if isinstance(error, LintError):
        for problem in error.problems:
            console.print(f"  - {escape(problem)}")
    if isinstance(error, BuildFailure) and error.exit_code is not None:
        console.print(f"  Exit code: {error.exit_code}")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"pkgfry version {__version__}")
        raise typer.Exit()


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
) -> None:
    """pkgfry - build deb/rpm packages inside containers."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
    else:
        tmp_dir_display = (
            str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
        )
        timeout_display = (
            str(settings.engine_timeout) if settings.engine_timeout else "(none)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Engine:[/bold]")
        console.print(f"  Docker host:         {settings.docker_host}")
        console.print(f"  API version:         {settings.api_version}")
        console.print(f"  Engine timeout:      {timeout_display}")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Cache directory:     {settings.cache_dir}")
        console.print(f"  Output directory:    {settings.output_dir}")
        console.print(f"  Temp directory:      {tmp_dir_display}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Cache tag prefix:    {settings.cache_tag_prefix}")
        console.print(f"  Download timeout:    {settings.download_timeout}")


@app.command()
def detect(
    image: Annotated[str, typer.Argument(help="Image to inspect")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Detect distribution, release and flavour of an image."""
    from pkgfry.detector import detect_variables
    from pkgfry.engine.client import EngineClient

    settings = get_settings()
    configure_logging(settings.log_level)
    try:
        with EngineClient.from_settings(settings) as client:
            variables = detect_variables(client, image)
    except PkgfryError as e:
        report_error(e)
        raise typer.Exit(code=1) from None

    if json_output:
        console.print(json.dumps(variables.as_dict(), indent=2))
    else:
        console.print(f"[bold]{escape(image)}[/bold]")
        for key, value in variables.as_dict().items():
            if key == "image":
                continue
            console.print(f"  {key + ':':<14} {value if value is not None else '(unknown)'}")


@app.command()
def cook(
    image: Annotated[str, typer.Argument(help="Base image to build on")],
    recipe: Annotated[
        Path,
        typer.Argument(help="Recipe file"),
    ] = Path(DEFAULT_RECIPE),
    keep: Annotated[
        bool,
        typer.Option("--keep", help="Keep the build container"),
    ] = False,
    overwrite: Annotated[
        bool,
        typer.Option("--overwrite/--no-overwrite", help="Replace existing packages"),
    ] = True,
    update: Annotated[
        str,
        typer.Option(
            "--update", "-u", help="Refresh package lists: auto, never or always"
        ),
    ] = "auto",
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", "-o", help="Directory receiving packages"),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Also write build output to this file"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Cook a recipe on an image and write the resulting packages.

    The recipe's build steps run in a container created from IMAGE; the
    files they produce are extracted and written as deb or rpm packages
    depending on the image's distribution.
    """
    from pkgfry.builds.cook import Cook, CookOptions
    from pkgfry.engine.client import EngineClient

    # Validate update policy
    try:
        update_policy = UpdatePolicy(update)
    except ValueError:
        console.print(f"[red]Invalid update policy: {escape(update)}[/red]")
        console.print("Valid values: auto, never, always")
        raise typer.Exit(code=1) from None

    settings: Settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)

    options = CookOptions(
        keep=keep,
        overwrite=overwrite,
        update=update_policy,
        output_dir=output_dir,
        log_file=log_file,
    )
    try:
        with EngineClient.from_settings(settings) as client:
            result = Cook(
                client,
                settings=settings,
                out=sys.stdout.buffer,
                err=sys.stderr.buffer,
            ).run(image, recipe, options)
    except PkgfryError as e:
        report_error(e)
        raise typer.Exit(code=1) from None

    if result.packages:
        console.print("[bold]Packages:[/bold]")
        for path in result.packages:
            console.print(f"  [green]✓ {escape(str(path))}[/green]")
    else:
        console.print("[yellow]No packages written[/yellow]")
    if keep and result.container:
        console.print(f"Kept container {result.container[:12]}")


__all__ = ["app", "configure_logging"]
