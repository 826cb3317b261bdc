"""Common test fixtures."""

import asyncio
import os
from functools import partial
from pathlib import Path
from typing import Any, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from watchfiles import Change

from image_mirror.config import MirrorConfig
from image_mirror.mirror import RepositoryMirror
from image_mirror.mirror.events import EVENT_NAMES, SYNC_COMPLETED


def write_image(
    path: Path, content: bytes = b"\xff\xd8\xff\xe0 jpeg data", mtime: Optional[float] = None
) -> Path:
    """Write a fake photo, optionally pinning its modification time."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


class FakeChangeSource:
    """ChangeSource driven by the test instead of the operating system."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.subscriptions = 0

    async def subscribe(self, path, watch_filter, stop_event):
        self.subscriptions += 1
        while not stop_event.is_set():
            changes = await self.queue.get()
            if isinstance(changes, Exception):
                raise changes
            yield {(change, p) for change, p in changes if watch_filter(change, p)}

    def push(self, *changes: Tuple[Change, str]) -> None:
        self.queue.put_nowait(set(changes))

    def fail(self, error: Exception) -> None:
        self.queue.put_nowait(error)


class EventRecorder:
    """Records every event a mirror emits, in order."""

    def __init__(self, mirror: RepositoryMirror):
        self.events: List[Tuple[str, Any]] = []
        for name in EVENT_NAMES:
            mirror.on(name, partial(self._record, name))

    def _record(self, name: str, *args: Any) -> None:
        self.events.append((name, args[0] if args else None))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> List[Any]:
        return [payload for event, payload in self.events if event == name]

    def count(self, name: str) -> int:
        return len(self.payloads(name))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def repository_dir(tmp_path) -> Path:
    path = tmp_path / "repository"
    path.mkdir()
    return path


@pytest.fixture
def mirror_dir(tmp_path) -> Path:
    return tmp_path / "mirror"


@pytest.fixture
def test_config(tmp_path) -> MirrorConfig:
    return MirrorConfig(
        home=tmp_path / "home",
        sync_delay=50,
        polling_interval=60_000,
        discovery_batch_size=50,
        sync_batch_size=10,
    )


@pytest.fixture
def mock_logger() -> MagicMock:
    return MagicMock()


@pytest.fixture
def change_source() -> FakeChangeSource:
    return FakeChangeSource()


@pytest.fixture
def status_path(tmp_path) -> Path:
    return tmp_path / "home" / "watch-status.json"


@pytest_asyncio.fixture
async def mirror(
    repository_dir, mirror_dir, mock_logger, test_config, change_source, status_path
) -> RepositoryMirror:
    repository_mirror = RepositoryMirror(
        repository_path=repository_dir,
        mirror_path=mirror_dir,
        log=mock_logger,
        config=test_config,
        change_source=change_source,
        status_path=status_path,
    )
    await repository_mirror.initialize()
    yield repository_mirror
    repository_mirror.stop_sync()
    await repository_mirror.stop_watch()
    await repository_mirror.sync_service.wait()


@pytest.fixture
def recorder(mirror) -> EventRecorder:
    return EventRecorder(mirror)


async def wait_for_event(mirror: RepositoryMirror, name: str, timeout: float = 2.0) -> Any:
    """Wait for the next occurrence of an event and return its payload."""
    future = asyncio.get_running_loop().create_future()

    def handler(*args):
        if not future.done():
            future.set_result(args[0] if args else None)

    unsubscribe = mirror.on(name, handler)
    try:
        return await asyncio.wait_for(future, timeout)
    finally:
        unsubscribe()


async def run_sync(mirror: RepositoryMirror):
    """Start a background sync and wait for its sync-completed payload."""
    waiter = asyncio.ensure_future(wait_for_event(mirror, SYNC_COMPLETED))
    await asyncio.sleep(0)
    assert mirror.start_sync() is not None
    return await waiter
