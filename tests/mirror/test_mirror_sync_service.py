"""Tests for the sync pipeline."""

import asyncio
from contextlib import suppress

import aiofiles.os
import pytest

from conftest import write_image
from image_mirror.mirror.events import (
    FILE_SYNCED,
    SYNC_COMPLETED,
    SYNC_PROGRESS,
    SYNC_STARTED,
)
from image_mirror.mirror.sync_service import ABORTED, REPOSITORY_MISSING
from image_mirror.mirror.utils import SyncPhase


@pytest.mark.asyncio
async def test_sync_files_copies_and_indexes(mirror, repository_dir, mirror_dir, recorder):
    source = write_image(repository_dir / "a.jpg", b"photo a", mtime=1_500_000)
    mirror.force_resync.add("a.jpg")

    result = await mirror.sync_service.sync_files(["a.jpg"])

    assert result.synced == 1 and result.errors == 0
    copy = mirror_dir / "a.jpg"
    assert copy.read_bytes() == b"photo a"
    # the copy keeps the source mtime so the next diff sees no change
    assert copy.stat().st_mtime == source.stat().st_mtime
    entry = mirror.index.get("a.jpg")
    assert entry.size == len(b"photo a")
    assert entry.mtime == copy.stat().st_mtime
    assert "a.jpg" not in mirror.force_resync
    assert recorder.payloads(FILE_SYNCED) == ["a.jpg"]


@pytest.mark.asyncio
async def test_sync_files_tolerates_failures(mirror, repository_dir, mirror_dir, recorder):
    write_image(repository_dir / "ok.jpg")
    mirror.force_resync.add("missing.jpg")

    result = await mirror.sync_service.sync_files(["missing.jpg", "ok.jpg"])

    assert result.synced == 1
    assert result.errors == 1
    assert (mirror_dir / "ok.jpg").exists()
    assert not mirror.index.has("missing.jpg")
    assert "missing.jpg" in mirror.force_resync

    progress = recorder.payloads(SYNC_PROGRESS)
    assert [(p.current, p.synced, p.errors) for p in progress] == [(1, 0, 1), (2, 1, 1)]
    assert all(p.phase == "syncing" and p.total == 2 for p in progress)


@pytest.mark.asyncio
async def test_cleanup_removes_stale_files(mirror, mirror_dir):
    for name in ("keep.jpg", "stale.jpg"):
        write_image(mirror_dir / name)
        mirror.index.upsert(name, 1, 1.0)

    removed = await mirror.sync_service.cleanup_deleted_files(["KEEP.jpg"])

    assert removed == ["stale.jpg"]
    assert (mirror_dir / "keep.jpg").exists()
    assert not (mirror_dir / "stale.jpg").exists()
    assert mirror.get_all_files() == ["keep.jpg"]


@pytest.mark.asyncio
async def test_cleanup_drops_entries_already_gone(mirror):
    mirror.index.upsert("ghost.jpg", 1, 1.0)

    removed = await mirror.sync_service.cleanup_deleted_files([])

    assert removed == ["ghost.jpg"]
    assert len(mirror.index) == 0


@pytest.mark.asyncio
async def test_cleanup_keeps_entry_when_delete_fails(mirror, mirror_dir, mock_logger, monkeypatch):
    write_image(mirror_dir / "locked.jpg")
    mirror.index.upsert("locked.jpg", 1, 1.0)

    async def locked_remove(path, *args, **kwargs):
        raise PermissionError(f"locked: {path}")

    monkeypatch.setattr(aiofiles.os, "remove", locked_remove)

    removed = await mirror.sync_service.cleanup_deleted_files([])

    assert removed == []
    assert mirror.has_file("locked.jpg")
    assert any(
        "Could not delete mirrored file locked.jpg" in call.args[0]
        for call in mock_logger.warning.call_args_list
    )


@pytest.mark.asyncio
async def test_events_are_ordered(mirror, repository_dir, recorder):
    write_image(repository_dir / "a.jpg")
    write_image(repository_dir / "b.jpg")

    completed = await mirror.sync()

    names = recorder.names()
    assert names[0] == SYNC_STARTED
    assert names[-1] == SYNC_COMPLETED
    assert names.count(SYNC_STARTED) == 1
    assert names.count(SYNC_COMPLETED) == 1
    assert SYNC_PROGRESS in names
    assert completed.success is True
    assert completed.synced == 2
    assert mirror.sync_service.state.phase == SyncPhase.IDLE
    assert mirror.sync_service.state.last_sync_time is not None


@pytest.mark.asyncio
async def test_missing_repository_fails_the_pass(mirror, repository_dir, recorder):
    repository_dir.rmdir()

    completed = await mirror.sync()

    assert completed.success is False
    assert completed.error == REPOSITORY_MISSING
    assert mirror.sync_service.is_syncing is False
    assert mirror.sync_service.state.last_sync_time is None
    assert recorder.payloads(SYNC_COMPLETED) == [completed]


@pytest.mark.asyncio
async def test_start_sync_is_mutually_exclusive(mirror, repository_dir, recorder):
    for i in range(20):
        write_image(repository_dir / f"img{i}.jpg")

    first = mirror.start_sync()
    second = mirror.start_sync()
    inline = await mirror.sync()

    assert first is not None
    assert second is None
    assert inline is None

    completed = await first
    assert completed.synced == 20
    assert recorder.count(SYNC_STARTED) == 1
    assert recorder.count(SYNC_COMPLETED) == 1
    assert recorder.count("file-synced") == 20


@pytest.mark.asyncio
async def test_stop_sync_aborts_between_files(mirror, repository_dir, mirror_dir, recorder):
    for i in range(3):
        write_image(repository_dir / f"img{i}.jpg")
    write_image(mirror_dir / "stale.jpg")
    mirror.index.upsert("stale.jpg", 1, 1.0)

    mirror.once(FILE_SYNCED, lambda filename: mirror.stop_sync())
    completed = await mirror.sync()

    assert completed.success is False
    assert completed.error == ABORTED
    assert recorder.count(FILE_SYNCED) == 1
    # cleanup never ran
    assert (mirror_dir / "stale.jpg").exists()
    assert mirror.sync_service.is_syncing is False


@pytest.mark.asyncio
async def test_stop_sync_during_discovery(mirror, repository_dir, recorder):
    write_image(repository_dir / "a.jpg")

    def stop_on_discovery(progress):
        if progress.phase == "discovery":
            mirror.stop_sync()

    mirror.on(SYNC_PROGRESS, stop_on_discovery)
    completed = await mirror.sync()

    assert completed.error == ABORTED
    assert recorder.count(FILE_SYNCED) == 0


@pytest.mark.asyncio
async def test_stop_sync_when_idle_is_noop(mirror):
    mirror.stop_sync()
    assert mirror.sync_service.state.aborted is False


@pytest.mark.asyncio
async def test_failing_handler_does_not_break_sync(mirror, repository_dir):
    write_image(repository_dir / "a.jpg")

    def broken(*args):
        raise RuntimeError("ui went away")

    mirror.on(FILE_SYNCED, broken)
    mirror.on(SYNC_PROGRESS, broken)

    completed = await mirror.sync()

    assert completed.success is True
    assert mirror.has_file("a.jpg")


@pytest.mark.asyncio
async def test_unexpected_error_is_reported(mirror, repository_dir, monkeypatch):
    write_image(repository_dir / "a.jpg")

    async def broken_discovery(*args, **kwargs):
        raise RuntimeError("share disconnected")

    monkeypatch.setattr(mirror.scanner, "discover_files", broken_discovery)

    completed = await mirror.sync()

    assert completed.success is False
    assert completed.error == "share disconnected"
    assert mirror.sync_service.is_syncing is False

    # the next pass starts from scratch
    monkeypatch.undo()
    completed = await mirror.sync()
    assert completed.success is True


@pytest.mark.asyncio
async def test_sync_yields_between_batches(mirror, repository_dir):
    for i in range(25):
        write_image(repository_dir / f"img{i:02d}.jpg")

    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            ticks += 1
            await asyncio.sleep(0)

    task = asyncio.ensure_future(ticker())
    try:
        await mirror.sync()
    finally:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    assert ticks > 1


@pytest.mark.asyncio
async def test_cleanup_drops_flags_for_deleted_files(mirror, repository_dir):
    write_image(repository_dir / "kept.jpg")
    mirror.force_resync.add("gone.jpg")

    completed = await mirror.sync()

    assert completed.success
    assert "gone.jpg" not in mirror.force_resync
    assert len(mirror.force_resync) == 0


@pytest.mark.asyncio
async def test_cleanup_keeps_flags_for_present_files(mirror, repository_dir):
    write_image(repository_dir / "pending.jpg")
    mirror.force_resync.add("pending.jpg")

    await mirror.sync_service.cleanup_deleted_files(["Pending.jpg"])

    assert "pending.jpg" in mirror.force_resync
