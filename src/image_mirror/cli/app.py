from pathlib import Path
from typing import Optional

import typer


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:  # pragma: no cover
        import image_mirror

        typer.echo(f"image-mirror version: {image_mirror.__version__}")
        raise typer.Exit()


app = typer.Typer(name="image-mirror")


@app.callback()
def app_callback(
    ctx: typer.Context,
    repository: Optional[Path] = typer.Option(
        None,
        "--repository",
        "-r",
        help="Image repository to mirror",
        envvar="IMAGE_MIRROR_REPOSITORY_PATH",
    ),
    mirror: Optional[Path] = typer.Option(
        None,
        "--mirror",
        "-m",
        help="Local mirror directory",
        envvar="IMAGE_MIRROR_MIRROR_PATH",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """image-mirror - keep a fast local copy of a slow photo repository."""
    if ctx.invoked_subcommand is not None:
        from image_mirror.cli.commands.command_utils import build_config

        ctx.obj = build_config(repository, mirror)
