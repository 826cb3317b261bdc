"""Command module for image-mirror sync operations."""

import asyncio
from typing import List

import typer
from loguru import logger
from rich.tree import Tree

from image_mirror.cli.app import app
from image_mirror.cli.commands.command_utils import console, initialize_mirror
from image_mirror.config import MirrorConfig
from image_mirror.mirror.events import FILE_SYNCED, SyncCompleted


def display_sync_summary(completed: SyncCompleted):
    """Display a one-line summary of a sync pass."""
    if not completed.success:
        console.print(f"[red]Sync failed:[/red] {completed.error}")
        return

    if completed.synced == 0 and completed.errors == 0:
        console.print("[green]Everything up to date[/green]")
        return

    # Format as: "Synced X files (Y errors)"
    summary = f"Synced [green]{completed.synced}[/green] files"
    if completed.errors:
        summary += f" ([red]{completed.errors} errors[/red])"
    console.print(summary)


def display_detailed_sync_results(completed: SyncCompleted, synced_files: List[str]):
    """Display the copied files as a tree."""
    if not completed.success or not synced_files:
        display_sync_summary(completed)
        return

    console.print("\n[bold]Sync Results[/bold]")
    tree = Tree("[bold]Mirrored Files[/bold]")
    copied = tree.add(f"[green]Copied[/green] ({len(synced_files)})")
    for filename in sorted(synced_files):
        copied.add(f"[green]{filename}[/green]")
    if completed.errors:
        tree.add(f"[red]{completed.errors} files failed, see the log for details[/red]")
    console.print(tree)


async def run_sync(config: MirrorConfig, verbose: bool = False) -> SyncCompleted:
    """Run one sync pass."""
    mirror = await initialize_mirror(config)

    synced_files: List[str] = []
    mirror.on(FILE_SYNCED, synced_files.append)

    with console.status("Syncing repository..."):
        completed = await mirror.sync()

    if verbose:
        display_detailed_sync_results(completed, synced_files)
    else:
        display_sync_summary(completed)
    return completed


@app.command()
def sync(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show detailed sync information.",
    ),
) -> None:
    """Copy new and changed photos from the repository into the mirror."""
    try:
        completed = asyncio.run(run_sync(ctx.obj, verbose))
    except typer.Exit:
        raise
    except Exception as e:
        logger.exception("Sync failed")
        typer.echo(f"Error during sync: {e}", err=True)
        raise typer.Exit(1)

    if not completed.success:
        raise typer.Exit(1)
