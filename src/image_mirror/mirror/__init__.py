from .index import ForceResyncSet, MirrorEntry, MirrorIndex
from .scanner import RepositoryScanner
from .sync_service import MirrorSyncService
from .poller import ChangePoller
from .watch_service import ChangeSource, WatchfilesChangeSource, WatchService
from .repository_mirror import MirrorStats, RepositoryMirror

__all__ = [
    "ChangePoller",
    "ChangeSource",
    "ForceResyncSet",
    "MirrorEntry",
    "MirrorIndex",
    "MirrorStats",
    "MirrorSyncService",
    "RepositoryMirror",
    "RepositoryScanner",
    "WatchService",
    "WatchfilesChangeSource",
]
