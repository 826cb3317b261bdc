"""Service for syncing the repository into the local mirror."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

import aiofiles.os
from loguru import logger

from image_mirror.config import MirrorConfig
from image_mirror.file_utils import copy_file
from image_mirror.mirror.events import (
    FILE_SYNCED,
    SYNC_COMPLETED,
    SYNC_PROGRESS,
    SYNC_STARTED,
    MirrorEvents,
    SyncCompleted,
    SyncProgress,
)
from image_mirror.mirror.index import ForceResyncSet, MirrorIndex
from image_mirror.mirror.scanner import RepositoryScanner
from image_mirror.mirror.utils import MirrorLogger, SyncPhase, SyncResult, SyncState
from image_mirror.utils import filename_key

ABORTED = "Aborted"
REPOSITORY_MISSING = "Repository path does not exist"


class MirrorSyncService:
    """
    Runs the sync pipeline: discovery -> diff -> copy -> cleanup.

    Only one pass runs at a time. The guard is state.is_syncing, which is
    checked and set synchronously before any work is scheduled. Cancellation
    is cooperative: stop_sync() sets a flag that every phase checks between
    batches, an in-flight copy is never interrupted.
    """

    def __init__(
        self,
        repository_path: Path,
        mirror_path: Path,
        index: MirrorIndex,
        scanner: RepositoryScanner,
        force_resync: ForceResyncSet,
        events: MirrorEvents,
        config: MirrorConfig,
        log: Optional[MirrorLogger] = None,
    ):
        self.repository_path = repository_path
        self.mirror_path = mirror_path
        self.index = index
        self.scanner = scanner
        self.force_resync = force_resync
        self.events = events
        self.config = config
        self.logger = log or logger
        self.state = SyncState()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_syncing(self) -> bool:
        return self.state.is_syncing

    def is_aborted(self) -> bool:
        return self.state.aborted

    def start_sync(self) -> Optional[asyncio.Task]:
        """Schedule a pass on the running loop. No-op while a pass is running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # guard stays untouched
            self.logger.error("Cannot start sync: no running event loop")
            return None

        if not self._begin():
            return None
        self._task = loop.create_task(self._run())
        return self._task

    async def sync(self) -> Optional[SyncCompleted]:
        """Run a pass inline and return its outcome, or None if one is already running."""
        if not self._begin():
            return None
        return await self._run()

    def stop_sync(self) -> None:
        if self.state.is_syncing:
            self.state.aborted = True
            self.logger.info("Sync stop requested")

    async def wait(self) -> None:
        """Wait for the pass scheduled by start_sync, if any."""
        if self._task is not None:
            await self._task

    def _begin(self) -> bool:
        if self.state.is_syncing:
            self.logger.warning("Sync already in progress")
            return False

        self.state.is_syncing = True
        self.state.aborted = False
        self.events.emit(SYNC_STARTED)
        return True

    async def _run(self) -> SyncCompleted:
        try:
            completed = await self._run_pipeline()
        except Exception as e:
            self.logger.error(f"Error during sync: {e}")
            completed = SyncCompleted(success=False, error=str(e))
        finally:
            self.state.is_syncing = False
            self.state.phase = SyncPhase.IDLE

        if completed.success:
            self.state.last_sync_time = datetime.now()
            self.logger.success(
                f"Sync completed: {completed.synced} synced, "
                f"{completed.skipped} skipped, {completed.errors} errors"
            )
        self.events.emit(SYNC_COMPLETED, completed)
        return completed

    async def _run_pipeline(self) -> SyncCompleted:
        if not await aiofiles.os.path.isdir(self.repository_path):
            self.logger.warning("Repository path does not exist, sync aborted")
            return SyncCompleted(success=False, error=REPOSITORY_MISSING)

        self.logger.info("Starting repository sync...")
        if self.force_resync:
            self.logger.info(f"Force-resync files: {', '.join(self.force_resync)}")

        # Phase 1: discovery
        self.state.phase = SyncPhase.DISCOVERING
        repository_files = await self.scanner.discover_files(
            self.repository_path, on_progress=self._emit_progress, is_aborted=self.is_aborted
        )
        if self.state.aborted:
            return self._aborted()
        self.logger.info(f"Discovered {len(repository_files)} files in repository")

        # Phase 2: diff
        self.state.phase = SyncPhase.DIFFING
        files_to_sync = await self.scanner.find_files_to_sync(
            self.repository_path, repository_files, self.force_resync, is_aborted=self.is_aborted
        )
        if self.state.aborted:
            return self._aborted()
        self.logger.info(f"{len(files_to_sync)} files need syncing")

        # Phase 3: copy
        self.state.phase = SyncPhase.SYNCING
        result = await self.sync_files(files_to_sync)
        if self.state.aborted:
            return self._aborted()

        # Phase 4: cleanup against the discovery snapshot
        self.state.phase = SyncPhase.CLEANING
        await self.cleanup_deleted_files(repository_files)
        if self.state.aborted:
            return self._aborted()

        return SyncCompleted(
            success=True, synced=result.synced, skipped=result.skipped, errors=result.errors
        )

    async def sync_files(self, files_to_sync: List[str]) -> SyncResult:
        """
        Copy files from the repository into the mirror.

        Each copy is re-statted and the destination's stat is what goes into
        the index. A failed file is logged and counted, the rest still run.
        """
        result = SyncResult()
        total = len(files_to_sync)

        for i, filename in enumerate(files_to_sync):
            if self.state.aborted:
                break

            source = self.repository_path / filename
            destination = self.mirror_path / filename
            try:
                await copy_file(source, destination)
                stats = await aiofiles.os.stat(destination)
                self.index.upsert(filename, stats.st_size, stats.st_mtime)
                self.force_resync.discard(filename)
                result.synced += 1
                self.events.emit(FILE_SYNCED, filename)
            except Exception as e:
                self.logger.error(f"Error syncing file {filename}: {e}")
                result.errors += 1

            self._emit_progress(
                SyncProgress(
                    phase="syncing",
                    current=i + 1,
                    total=total,
                    synced=result.synced,
                    errors=result.errors,
                )
            )

            if (i + 1) % self.config.sync_batch_size == 0:
                await asyncio.sleep(0)

        return result

    async def cleanup_deleted_files(self, repository_files: Iterable[str]) -> List[str]:
        """
        Remove mirrored files whose source is no longer in the repository.

        Returns:
            Filenames removed from the mirror and the index
        """
        present = {filename_key(name) for name in repository_files}
        to_delete = [
            entry.filename
            for entry in self.index.entries()
            if filename_key(entry.filename) not in present
        ]
        self.logger.info(f"Cleaning up {len(to_delete)} deleted files from mirror")

        # flags for deleted files are never cleared by a copy
        for key in list(self.force_resync):
            if key not in present:
                self.force_resync.discard(key)

        removed: List[str] = []
        for i, filename in enumerate(to_delete):
            if self.state.aborted:
                break

            try:
                await aiofiles.os.remove(self.mirror_path / filename)
                self.logger.info(f"Deleted from mirror: {filename}")
            except FileNotFoundError:
                self.logger.info(f"Mirrored file already gone: {filename}")
            except OSError as e:
                self.logger.warning(f"Could not delete mirrored file {filename}: {e}")
                continue

            self.index.remove(filename)
            removed.append(filename)
            self._emit_progress(SyncProgress(phase="cleanup", current=i + 1, total=len(to_delete)))
            await asyncio.sleep(0)

        return removed

    def _aborted(self) -> SyncCompleted:
        self.logger.info("Sync aborted by user")
        return SyncCompleted(success=False, error=ABORTED)

    def _emit_progress(self, progress: SyncProgress) -> None:
        self.events.emit(SYNC_PROGRESS, progress)
