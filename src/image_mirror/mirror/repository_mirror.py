"""Local mirror of an image repository that may live on a slow network share."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from loguru import logger
from pydantic import BaseModel

from image_mirror.config import MirrorConfig
from image_mirror.file_utils import FileOperationError, ensure_directory
from image_mirror.mirror.events import Handler, MirrorEvents, SyncCompleted
from image_mirror.mirror.index import ForceResyncSet, MirrorIndex
from image_mirror.mirror.poller import ChangePoller
from image_mirror.mirror.scanner import RepositoryScanner
from image_mirror.mirror.sync_service import MirrorSyncService
from image_mirror.mirror.utils import MirrorLogger
from image_mirror.mirror.watch_service import ChangeSource, WatchService


class MirrorStats(BaseModel):
    total_files: int
    is_syncing: bool
    last_sync_time: Optional[datetime] = None
    is_watching: bool


class RepositoryMirror:
    """
    Keeps a local, fast-access copy of the repository's photos.

    The UI reads photos through get_mirror_path() and never touches the
    repository directly. Replication is one-directional (repository -> mirror)
    and eventually consistent: changes reach the mirror through watcher
    notifications, the periodic poller, or an explicit sync.

    Progress and results are reported through events, see on().
    """

    def __init__(
        self,
        repository_path: Path,
        mirror_path: Path,
        log: Optional[MirrorLogger] = None,
        config: Optional[MirrorConfig] = None,
        change_source: Optional[ChangeSource] = None,
        status_path: Optional[Path] = None,
    ):
        self.repository_path = Path(repository_path)
        self.mirror_path = Path(mirror_path)
        self.logger = log or logger
        self.config = config or MirrorConfig()

        self.events = MirrorEvents()
        self.force_resync = ForceResyncSet()
        self.index = MirrorIndex(self.mirror_path, self.logger)
        self.scanner = RepositoryScanner(
            self.index, batch_size=self.config.discovery_batch_size, log=self.logger
        )
        self.sync_service = MirrorSyncService(
            repository_path=self.repository_path,
            mirror_path=self.mirror_path,
            index=self.index,
            scanner=self.scanner,
            force_resync=self.force_resync,
            events=self.events,
            config=self.config,
            log=self.logger,
        )
        self.poller = ChangePoller(
            repository_path=self.repository_path,
            mirror_path=self.mirror_path,
            index=self.index,
            force_resync=self.force_resync,
            events=self.events,
            config=self.config,
            log=self.logger,
        )
        self.watch_service = WatchService(
            repository_path=self.repository_path,
            sync_service=self.sync_service,
            poller=self.poller,
            force_resync=self.force_resync,
            events=self.events,
            config=self.config,
            log=self.logger,
            change_source=change_source,
            status_path=status_path,
        )

    async def initialize(self) -> bool:
        """Create the mirror directory if needed and load the mirror index."""
        try:
            if not self.mirror_path.exists():
                await ensure_directory(self.mirror_path)
                self.logger.info(f"Created mirror directory: {self.mirror_path}")

            await self.index.load()
            self.logger.success("Repository mirror initialized")
            return True
        except FileOperationError as e:
            self.logger.error(f"Error initializing repository mirror: {e}")
            return False

    # sync

    def start_sync(self) -> Optional[asyncio.Task]:
        """Start a sync pass in the background. Results arrive as events."""
        return self.sync_service.start_sync()

    async def sync(self) -> Optional[SyncCompleted]:
        """Run a sync pass and wait for it."""
        return await self.sync_service.sync()

    def stop_sync(self) -> None:
        self.sync_service.stop_sync()

    async def force_full_resync(self) -> Optional[SyncCompleted]:
        """Manual refresh: run the full pipeline now and wait for it."""
        self.logger.info("[Manual Refresh] Forcing full repository resync")
        completed = await self.sync_service.sync()
        if completed is not None and completed.success:
            self.logger.success("[Manual Refresh] Repository resync completed")
        return completed

    # watch

    async def start_watch(self) -> bool:
        return await self.watch_service.start()

    async def stop_watch(self) -> None:
        await self.watch_service.stop()

    def is_watching(self) -> bool:
        return self.watch_service.is_watching()

    # lookups

    def get_mirror_path(self, filename: str) -> Optional[Path]:
        """Local path of a repository file, or None if it is not mirrored."""
        return self.index.resolve_path(filename)

    def has_file(self, filename: str) -> bool:
        return self.index.has(filename)

    def get_all_files(self) -> List[str]:
        return self.index.filenames()

    def find_repository_file(self, identifier: str) -> Optional[str]:
        """Mirrored photo filename for a member identifier, if any."""
        return self.index.find_file(identifier)

    def get_stats(self) -> MirrorStats:
        return MirrorStats(
            total_files=len(self.index),
            is_syncing=self.sync_service.is_syncing,
            last_sync_time=self.sync_service.state.last_sync_time,
            is_watching=self.is_watching(),
        )

    # events

    def on(self, event: str, handler: Handler):
        return self.events.on(event, handler)

    def once(self, event: str, handler: Handler):
        return self.events.once(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        self.events.off(event, handler)
