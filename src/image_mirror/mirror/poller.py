"""Interval-based change detection, the fallback for unreliable watchers."""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import aiofiles.os
from loguru import logger

from image_mirror.config import MirrorConfig
from image_mirror.file_utils import FileError, compute_partial_checksum, list_files
from image_mirror.mirror.events import (
    REPOSITORY_CHANGED,
    ChangeType,
    MirrorEvents,
    RepositoryChanged,
)
from image_mirror.mirror.index import ForceResyncSet, MirrorIndex
from image_mirror.mirror.utils import MirrorLogger
from image_mirror.utils import is_accepted_image


@dataclass
class PolledFile:
    filename: str
    path: Path
    stats: os.stat_result


class ChangePoller:
    """
    Detects repository changes that file watchers miss.

    Network shares often drop change notifications, and copying a photo over an
    existing one can keep its size and timestamp. Each check compares file
    counts and then verifies a bounded, evenly strided sample of files by
    metadata and by a hash of their leading bytes. Files outside the sample are
    not checked on that tick; repeated ticks make detection likely over time
    while keeping the per-tick cost bounded.
    """

    def __init__(
        self,
        repository_path: Path,
        mirror_path: Path,
        index: MirrorIndex,
        force_resync: ForceResyncSet,
        events: MirrorEvents,
        config: MirrorConfig,
        log: Optional[MirrorLogger] = None,
    ):
        self.repository_path = repository_path
        self.mirror_path = mirror_path
        self.index = index
        self.force_resync = force_resync
        self.events = events
        self.config = config
        self.logger = log or logger

    async def check_for_changes(self) -> bool:
        """
        Check the repository against the mirror once.

        Returns:
            True when a change was detected and a sync should be scheduled
        """
        try:
            names = await list_files(self.repository_path)
            image_files = [name for name in names if is_accepted_image(name)]

            self.logger.info(
                f"[Polling] Checking repository: {len(image_files)} image files, "
                f"{len(self.index)} in mirror index"
            )

            # Quick check: a new or removed file changes the count
            if len(image_files) != len(self.index):
                self.logger.info(
                    f"[Polling] File count mismatch detected "
                    f"({len(image_files)} vs {len(self.index)})"
                )
                return True

            polled = await self._stat_files(image_files)
            for file in self.sample(polled):
                if await self._check_file(file):
                    return True

            self.logger.info("[Polling] No changes detected")
            return False
        except Exception as e:
            self.logger.error(f"Error checking for changes: {e}")
            return False

    def sample(self, polled: List[PolledFile]) -> List[PolledFile]:
        """Evenly strided sample of files, most recently modified first."""
        if not polled:
            return []

        ordered = sorted(polled, key=lambda f: f.stats.st_mtime, reverse=True)
        sample_size = min(self.config.poll_sample_size, len(ordered))
        step = len(ordered) // sample_size
        return [ordered[i * step] for i in range(sample_size)]

    async def _stat_files(self, image_files: List[str]) -> List[PolledFile]:
        polled: List[PolledFile] = []
        batch_size = self.config.discovery_batch_size

        for i, filename in enumerate(image_files, 1):
            path = self.repository_path / filename
            try:
                stats = await aiofiles.os.stat(path)
            except OSError:
                self.logger.info(f"[Polling] File inaccessible: {filename}")
                continue
            polled.append(PolledFile(filename=filename, path=path, stats=stats))

            if i % batch_size == 0:
                await asyncio.sleep(0)

        return polled

    async def _check_file(self, file: PolledFile) -> bool:
        entry = self.index.get(file.filename)
        if entry is None:
            self.logger.info(f"[Polling] New file detected: {file.filename}")
            self._flag(file.filename, "add")
            return True

        if file.stats.st_size != entry.size or file.stats.st_mtime != entry.mtime:
            self.logger.info(
                f"[Polling] Change detected in file: {file.filename} "
                f"(mtime: {entry.mtime} -> {file.stats.st_mtime}, "
                f"size: {entry.size} -> {file.stats.st_size})"
            )
            self._flag(file.filename, "change")
            return True

        mirror_file = self.mirror_path / entry.filename
        if not await aiofiles.os.path.exists(mirror_file):
            self.logger.info(f"[Polling] Mirror file missing: {file.filename}")
            self._flag(file.filename, "change")
            return True

        # Metadata matches, compare content to catch copy-over replacements
        try:
            source_hash = await compute_partial_checksum(file.path, self.config.hash_chunk_size)
            mirror_hash = await compute_partial_checksum(mirror_file, self.config.hash_chunk_size)
        except FileError as e:
            # unreadable this tick, treated as unchanged
            self.logger.error(f"[Polling] Error checking hash for {file.filename}: {e}")
            return False

        if source_hash != mirror_hash:
            self.logger.info(f"[Polling] Content change detected (hash mismatch): {file.filename}")
            self._flag(file.filename, "change")
            return True

        return False

    def _flag(self, filename: str, change_type: ChangeType) -> None:
        self.force_resync.add(filename)
        self.events.emit(REPOSITORY_CHANGED, RepositoryChanged(type=change_type, filename=filename))
