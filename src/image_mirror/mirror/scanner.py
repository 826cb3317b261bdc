"""Service for discovering repository files and diffing them against the mirror."""

import asyncio
from pathlib import Path
from typing import Callable, List, Optional

import aiofiles.os
from loguru import logger

from image_mirror.file_utils import list_files
from image_mirror.mirror.events import SyncProgress
from image_mirror.mirror.index import ForceResyncSet, MirrorIndex
from image_mirror.mirror.utils import MirrorLogger
from image_mirror.utils import is_accepted_image

ProgressCallback = Callable[[SyncProgress], None]
AbortCheck = Callable[[], bool]


def _never_aborted() -> bool:
    return False


class RepositoryScanner:
    """
    Finds repository files and decides which of them need copying.
    The repository is treated as the source of truth.

    Both passes work in fixed-size batches and yield to the event loop between
    batches, so a large or slow repository never blocks other tasks for more
    than one batch.
    """

    def __init__(self, index: MirrorIndex, batch_size: int = 50, log: Optional[MirrorLogger] = None):
        self.index = index
        self.batch_size = batch_size
        self.logger = log or logger

    async def discover_files(
        self,
        directory: Path,
        on_progress: Optional[ProgressCallback] = None,
        is_aborted: AbortCheck = _never_aborted,
    ) -> List[str]:
        """
        List accepted image files in the repository directory.

        Args:
            directory: Repository directory to scan (top level only)
            on_progress: Receives a discovery progress update after each batch
            is_aborted: Checked before each batch, stops the scan early when True

        Returns:
            Regular files with an accepted extension, in directory order
        """
        if not await aiofiles.os.path.isdir(directory):
            self.logger.warning(f"Repository directory does not exist: {directory}")
            return []

        entries = await list_files(directory)
        total = len(entries)
        files: List[str] = []

        for start in range(0, total, self.batch_size):
            if is_aborted():
                break

            batch = entries[start : start + self.batch_size]
            files.extend(name for name in batch if is_accepted_image(name))

            if on_progress:
                on_progress(
                    SyncProgress(
                        phase="discovery",
                        current=min(start + self.batch_size, total),
                        total=total,
                    )
                )

            if start + self.batch_size < total:
                await asyncio.sleep(0)

        return files

    async def find_files_to_sync(
        self,
        directory: Path,
        repository_files: List[str],
        force_resync: ForceResyncSet,
        is_aborted: AbortCheck = _never_aborted,
    ) -> List[str]:
        """
        Decide which discovered files must be copied into the mirror.

        A file needs syncing when it is flagged for force resync, when it is
        missing from the index or not yet verified, or when its size or
        modification time differ from the index entry. Only metadata is
        compared here; content hashing is left to the poller's sampling.

        Args:
            directory: Repository directory
            repository_files: Output of discover_files
            force_resync: Files flagged by the watcher or poller
            is_aborted: Checked before each batch

        Returns:
            Filenames to copy, in discovery order
        """
        files_to_sync: List[str] = []

        for start in range(0, len(repository_files), self.batch_size):
            if is_aborted():
                break

            for filename in repository_files[start : start + self.batch_size]:
                if filename in force_resync:
                    self.logger.info(f"Force re-syncing file flagged by watcher: {filename}")
                    files_to_sync.append(filename)
                    continue

                entry = self.index.get(filename)
                if entry is None or not entry.synced:
                    files_to_sync.append(filename)
                    continue

                try:
                    stats = await aiofiles.os.stat(directory / filename)
                except OSError:
                    # deleted mid-scan, cleanup handles it on the next pass
                    self.logger.warning(f"Could not stat repository file: {filename}")
                    continue

                if stats.st_size != entry.size or stats.st_mtime != entry.mtime:
                    files_to_sync.append(filename)

            if start + self.batch_size < len(repository_files):
                await asyncio.sleep(0)

        return files_to_sync
