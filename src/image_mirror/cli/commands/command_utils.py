"""utility functions for commands"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from image_mirror.config import MirrorConfig, get_config
from image_mirror.mirror import RepositoryMirror

console = Console()


def build_config(repository: Optional[Path], mirror: Optional[Path]) -> MirrorConfig:
    """Apply command line overrides on top of the environment config."""
    config = get_config()
    overrides = {}
    if repository is not None:
        overrides["repository_path"] = repository
    if mirror is not None:
        overrides["mirror_path"] = mirror
    return config.model_copy(update=overrides)


def get_repository_mirror(config: MirrorConfig) -> RepositoryMirror:
    if config.repository_path is None:
        console.print(
            "[red]✗ No repository configured.[/red] "
            "Pass --repository or set IMAGE_MIRROR_REPOSITORY_PATH."
        )
        raise typer.Exit(1)

    return RepositoryMirror(
        repository_path=config.repository_path,
        mirror_path=config.mirror_dir,
        config=config,
        status_path=config.status_path,
    )


async def initialize_mirror(config: MirrorConfig) -> RepositoryMirror:
    mirror = get_repository_mirror(config)
    if not await mirror.initialize():
        console.print(f"[red]✗ Could not initialize mirror at {mirror.mirror_path}[/red]")
        raise typer.Exit(1)
    return mirror
