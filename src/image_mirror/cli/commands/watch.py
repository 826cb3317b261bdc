"""Watch command for image-mirror CLI."""

import asyncio
from datetime import datetime

import typer
from loguru import logger

from image_mirror.cli.app import app
from image_mirror.cli.commands.command_utils import console, initialize_mirror
from image_mirror.config import MirrorConfig
from image_mirror.mirror.events import (
    REPOSITORY_CHANGED,
    SYNC_COMPLETED,
    RepositoryChanged,
    SyncCompleted,
)

CHANGE_STYLES = {
    "add": ("New:\t\t", "green"),
    "change": ("Modified:\t", "yellow"),
    "unlink": ("Deleted:\t", "red"),
}


def _timestamp() -> str:
    return datetime.now().isoformat(timespec="minutes")


def print_repository_change(change: RepositoryChanged) -> None:
    label, style = CHANGE_STYLES[change.type]
    console.print(f"{_timestamp()} {label} [{style}]{change.filename}[/{style}]")


def print_sync_completed(completed: SyncCompleted) -> None:
    if completed.success:
        console.print(
            f"{_timestamp()} Synced:\t [cyan]{completed.synced} copied[/cyan], "
            f"{completed.errors} errors"
        )
    else:
        console.print(f"{_timestamp()} Sync failed:\t [red]{completed.error}[/red]")


async def run_watch(config: MirrorConfig):
    """Sync once, then keep the mirror up to date until interrupted."""
    mirror = await initialize_mirror(config)
    mirror.on(REPOSITORY_CHANGED, print_repository_change)
    mirror.on(SYNC_COMPLETED, print_sync_completed)

    await mirror.sync()
    if not await mirror.start_watch():
        console.print(f"[red]✗ Cannot watch {mirror.repository_path}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[cyan]Watching {mirror.repository_path} for changes...[/cyan]")
    try:
        await asyncio.Event().wait()
    finally:
        mirror.stop_sync()
        await mirror.stop_watch()


@app.command()
def watch(ctx: typer.Context):
    """Keep the mirror in sync with the repository until interrupted."""
    try:
        asyncio.run(run_watch(ctx.obj))
    except KeyboardInterrupt:
        console.print("\n[cyan]Stopped watching[/cyan]")
    except typer.Exit:
        raise
    except Exception as e:
        logger.exception("Watch failed")
        typer.echo(f"Error while watching: {e}", err=True)
        raise typer.Exit(1)
