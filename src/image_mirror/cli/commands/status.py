"""Status command for image-mirror CLI."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from pydantic import ValidationError
from rich.panel import Panel
from rich.tree import Tree

from image_mirror.cli.app import app
from image_mirror.cli.commands.command_utils import console, initialize_mirror
from image_mirror.config import MirrorConfig
from image_mirror.mirror import RepositoryMirror
from image_mirror.mirror.watch_service import WatchStatus
from image_mirror.utils import filename_key


@dataclass
class MirrorStatusReport:
    """Differences between the repository and the mirror, without copying anything.

    Attributes:
        repository_files: Accepted files found in the repository
        mirrored_files: Files in the mirror index
        to_copy: Files the next sync would copy
        to_remove: Files the next sync would delete from the mirror
    """

    repository_files: int = 0
    mirrored_files: int = 0
    to_copy: List[str] = field(default_factory=list)
    to_remove: List[str] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return len(self.to_copy) + len(self.to_remove)


async def get_status_report(mirror: RepositoryMirror) -> MirrorStatusReport:
    """Run discovery and diff against an initialized mirror."""
    repository_files = await mirror.scanner.discover_files(mirror.repository_path)
    to_copy = await mirror.scanner.find_files_to_sync(
        mirror.repository_path, repository_files, mirror.force_resync
    )
    present = {filename_key(name) for name in repository_files}
    to_remove = [name for name in mirror.get_all_files() if filename_key(name) not in present]

    return MirrorStatusReport(
        repository_files=len(repository_files),
        mirrored_files=len(mirror.index),
        to_copy=to_copy,
        to_remove=to_remove,
    )


def read_watch_status(status_path: Path) -> Optional[WatchStatus]:
    """Read the status file written by a running watcher, if there is one."""
    if not status_path.exists():
        return None
    try:
        return WatchStatus.model_validate_json(status_path.read_text())
    except (OSError, ValidationError) as e:
        logger.warning(f"Could not read watch status {status_path}: {e}")
        return None


def display_changes(title: str, report: MirrorStatusReport, verbose: bool = False):
    """Display pending changes using Rich."""
    tree = Tree(title)
    tree.add(f"{report.repository_files} in repository, {report.mirrored_files} mirrored")

    if report.total_changes == 0:
        tree.add("No changes")
        console.print(Panel(tree, expand=False))
        return

    summary = []
    if report.to_copy:
        summary.append(f"[green]{len(report.to_copy)} to copy[/green]")
    if report.to_remove:
        summary.append(f"[red]{len(report.to_remove)} to remove[/red]")
    tree.add(f"Found {', '.join(summary)}")

    if verbose:
        if report.to_copy:
            branch = tree.add("[green]To Copy[/green]")
            for filename in sorted(report.to_copy):
                branch.add(f"[green]{filename}[/green]")
        if report.to_remove:
            branch = tree.add("[red]To Remove[/red]")
            for filename in sorted(report.to_remove):
                branch.add(f"[red]{filename}[/red]")

    console.print(Panel(tree, expand=False))


def display_watch_status(status: Optional[WatchStatus]):
    if status is None:
        console.print("[dim]No watcher has run yet[/dim]")
        return

    state = "[green]running[/green]" if status.running else "[yellow]stopped[/yellow]"
    tree = Tree(f"Watcher {state} (pid {status.pid})")
    tree.add(f"Started: {status.start_time.isoformat(timespec='seconds')}")
    if status.last_scan:
        tree.add(f"Last sync: {status.last_scan.isoformat(timespec='seconds')}")
    tree.add(f"Mirrored files: {status.mirrored_files}")
    if status.error_count:
        tree.add(f"[red]Errors: {status.error_count}[/red]")

    if status.recent_events:
        recent = tree.add("Recent events")
        for event in status.recent_events[:10]:
            line = f"{event.timestamp.isoformat(timespec='seconds')} {event.action} {event.path}".rstrip()
            if event.error:
                line += f" [red]{event.error}[/red]"
            recent.add(line)

    console.print(Panel(tree, expand=False))


async def run_status(config: MirrorConfig, verbose: bool = False):
    """Check pending changes between repository and mirror."""
    mirror = await initialize_mirror(config)
    report = await get_status_report(mirror)
    display_changes("Repository Mirror", report, verbose)
    display_watch_status(read_watch_status(config.status_path))


@app.command()
def status(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed file information"),
):
    """Show pending changes between the repository and the mirror."""
    try:
        asyncio.run(run_status(ctx.obj, verbose))
    except typer.Exit:
        raise
    except Exception as e:
        logger.error(f"Error checking status: {e}")
        typer.echo(f"Error checking status: {e}", err=True)
        raise typer.Exit(1)
