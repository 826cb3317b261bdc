"""Watch service for the repository mirror."""

import asyncio
import os
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Protocol, Set, Tuple

import aiofiles.os
from loguru import logger
from pydantic import BaseModel, Field
from watchfiles import Change, awatch

from image_mirror.config import MirrorConfig
from image_mirror.mirror.events import (
    REPOSITORY_CHANGED,
    SYNC_COMPLETED,
    ChangeType,
    MirrorEvents,
    RepositoryChanged,
    SyncCompleted,
)
from image_mirror.mirror.index import ForceResyncSet
from image_mirror.mirror.poller import ChangePoller
from image_mirror.mirror.sync_service import MirrorSyncService
from image_mirror.mirror.utils import MirrorLogger
from image_mirror.utils import is_accepted_image

FileChanges = Set[Tuple[Change, str]]
WatchFilter = Callable[[Change, str], bool]

CHANGE_TYPES: Dict[Change, ChangeType] = {
    Change.added: "add",
    Change.modified: "change",
    Change.deleted: "unlink",
}


class ChangeSource(Protocol):
    """Native change notifications for a directory.

    Implementations yield batches of (change, path) tuples for files that pass
    watch_filter, until stop_event is set or the iterator is cancelled.
    """

    def subscribe(
        self, path: Path, watch_filter: WatchFilter, stop_event: asyncio.Event
    ) -> AsyncIterator[FileChanges]: ...


class WatchfilesChangeSource:
    """ChangeSource backed by watchfiles."""

    def __init__(self, debounce: int = 500, force_polling: bool = False, poll_delay_ms: int = 1000):
        self.debounce = debounce
        self.force_polling = force_polling
        self.poll_delay_ms = poll_delay_ms

    async def subscribe(
        self, path: Path, watch_filter: WatchFilter, stop_event: asyncio.Event
    ) -> AsyncIterator[FileChanges]:
        async for changes in awatch(
            path,
            watch_filter=watch_filter,
            debounce=self.debounce,
            stop_event=stop_event,
            force_polling=self.force_polling,
            poll_delay_ms=self.poll_delay_ms,
            recursive=False,
        ):
            yield changes


class WatchEvent(BaseModel):
    timestamp: datetime
    path: str
    action: str  # add, change, unlink, sync
    status: str  # detected, success, error
    error: Optional[str] = None


class WatchStatus(BaseModel):
    # Service status
    running: bool = False
    start_time: datetime = Field(default_factory=datetime.now)
    pid: int = Field(default_factory=os.getpid)

    # Stats
    error_count: int = 0
    last_error: Optional[datetime] = None
    last_scan: Optional[datetime] = None

    # File counts
    mirrored_files: int = 0

    # Recent activity
    recent_events: List[WatchEvent] = Field(default_factory=list)

    def add_event(
        self,
        path: str,
        action: str,
        status: str,
        error: Optional[str] = None,
    ) -> WatchEvent:
        event = WatchEvent(
            timestamp=datetime.now(),
            path=path,
            action=action,
            status=status,
            error=error,
        )
        self.recent_events.insert(0, event)
        self.recent_events = self.recent_events[:100]  # Keep last 100
        return event

    def record_error(self, error: str):
        self.error_count += 1
        self.add_event(path="", action="sync", status="error", error=error)
        self.last_error = datetime.now()


@dataclass
class WatchState:
    enabled: bool = False
    # at most one pending debounced sync
    debounce_handle: Optional[asyncio.TimerHandle] = None
    watch_task: Optional[asyncio.Task] = None
    poll_task: Optional[asyncio.Task] = None
    stop_event: Optional[asyncio.Event] = None


class WatchService:
    """
    Watches the repository and keeps the mirror up to date.

    Native notifications and the periodic poller run independently and both
    funnel into schedule_sync(), which coalesces bursts of changes into one
    sync pass once the repository has been quiet for sync_delay.
    """

    def __init__(
        self,
        repository_path: Path,
        sync_service: MirrorSyncService,
        poller: ChangePoller,
        force_resync: ForceResyncSet,
        events: MirrorEvents,
        config: MirrorConfig,
        log: Optional[MirrorLogger] = None,
        change_source: Optional[ChangeSource] = None,
        status_path: Optional[Path] = None,
    ):
        self.repository_path = repository_path
        self.sync_service = sync_service
        self.poller = poller
        self.force_resync = force_resync
        self.events = events
        self.config = config
        self.logger = log or logger
        self.change_source = change_source or WatchfilesChangeSource(
            debounce=config.watch_debounce, force_polling=config.force_polling
        )
        self.status_path = status_path
        self.state = WatchState()
        self.status = WatchStatus()

        self.events.on(SYNC_COMPLETED, self._record_sync)

    def is_watching(self) -> bool:
        return self.state.enabled

    async def start(self) -> bool:
        """Start the change watcher and the periodic poller."""
        if self.state.enabled:
            self.logger.warning("Repository watch already enabled")
            return True

        if not await aiofiles.os.path.isdir(self.repository_path):
            self.logger.warning("Repository path does not exist, cannot start watch")
            return False

        self.logger.info("Starting repository folder watch...")
        loop = asyncio.get_running_loop()
        self.state.stop_event = asyncio.Event()
        self.state.watch_task = loop.create_task(self._watch())
        self.logger.info(
            f"Starting periodic polling (every {self.config.polling_interval / 1000} seconds)"
        )
        self.state.poll_task = loop.create_task(self._poll())
        self.state.enabled = True

        self.status.running = True
        self.status.start_time = datetime.now()
        self.write_status()

        self.logger.success("Repository folder watch started")
        return True

    async def stop(self) -> None:
        """Stop watching and polling, and drop any pending debounced sync."""
        self._cancel_debounce()
        if not self.state.enabled:
            return

        self.logger.info("Stopping repository folder watch...")
        if self.state.stop_event is not None:
            self.state.stop_event.set()

        tasks = [t for t in (self.state.watch_task, self.state.poll_task) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

        self.state = WatchState()
        self.status.running = False
        self.write_status()
        self.logger.success("Repository folder watch stopped")

    def filter_changes(self, change: Change, path: str) -> bool:
        """Filter to only watch accepted image files"""
        name = Path(path).name
        return is_accepted_image(name)

    async def handle_changes(self, changes: Iterable[Tuple[Change, str]]) -> None:
        """Process a batch of file changes"""
        for change, path in sorted(changes, key=lambda c: c[1]):
            self.handle_change(change, path)
            await asyncio.sleep(0)

    def handle_change(self, change: Change, path: str) -> None:
        filename = Path(path).name
        change_type = CHANGE_TYPES[change]
        self.logger.info(f"Repository file {change_type}: {filename}")

        self.force_resync.add(filename)
        self.events.emit(REPOSITORY_CHANGED, RepositoryChanged(type=change_type, filename=filename))
        self.status.add_event(path=filename, action=change_type, status="detected")
        self.schedule_sync()

    def schedule_sync(self) -> None:
        """(Re)start the debounce timer. Only the last call in a burst triggers a sync."""
        self._cancel_debounce()
        loop = asyncio.get_running_loop()
        self.state.debounce_handle = loop.call_later(
            self.config.sync_delay / 1000, self._debounced_sync
        )

    async def poll_once(self) -> bool:
        """Run one poller tick. Skipped while a sync is running."""
        if self.sync_service.is_syncing:
            return False

        try:
            changed = await self.poller.check_for_changes()
        except Exception as e:
            self.logger.error(f"Error during periodic poll: {e}")
            return False

        if changed:
            self.logger.info("Periodic poll detected changes, triggering sync...")
            self.schedule_sync()
        return changed

    def write_status(self) -> None:
        """Write current state to status file"""
        if self.status_path is None:
            return
        try:
            self.status_path.parent.mkdir(parents=True, exist_ok=True)
            self.status_path.write_text(self.status.model_dump_json(indent=2))
        except OSError as e:
            self.logger.warning(f"Could not write watch status: {e}")

    async def _watch(self) -> None:
        try:
            async for changes in self.change_source.subscribe(
                self.repository_path, self.filter_changes, self.state.stop_event
            ):
                await self.handle_changes(changes)
                self.write_status()
        except Exception as e:
            # watching is degraded from here on, the poller keeps running
            self.logger.error(f"Repository watcher error: {e}")
            self.status.record_error(str(e))
            self.write_status()

    async def _poll(self) -> None:
        interval = self.config.polling_interval / 1000
        while True:
            await asyncio.sleep(interval)
            await self.poll_once()

    def _debounced_sync(self) -> None:
        self.state.debounce_handle = None
        if self.sync_service.is_syncing:
            self.logger.info("Sync already in progress, skipping auto-sync")
            return

        self.logger.info("Auto-syncing repository after detected changes...")
        self.sync_service.start_sync()

    def _cancel_debounce(self) -> None:
        if self.state.debounce_handle is not None:
            self.state.debounce_handle.cancel()
            self.state.debounce_handle = None

    def _record_sync(self, completed: SyncCompleted) -> None:
        self.status.last_scan = datetime.now()
        self.status.mirrored_files = len(self.sync_service.index)
        if completed.success:
            self.status.add_event(path="", action="sync", status="success")
        else:
            self.status.record_error(completed.error or "Sync failed")
        self.write_status()
