"""Types and utilities for mirror sync."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol


class MirrorLogger(Protocol):
    """Anything with these four methods can receive engine logs.

    loguru's logger satisfies this out of the box.
    """

    def info(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def success(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, message: str, *args: Any, **kwargs: Any) -> None: ...


class SyncPhase(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    DIFFING = "diffing"
    SYNCING = "syncing"
    CLEANING = "cleaning"


@dataclass
class SyncState:
    """Sync state owned by one mirror instance.

    Attributes:
        is_syncing: Mutual exclusion guard, set before any work begins
        aborted: Cooperative cancellation flag, checked between batches
        phase: Current pipeline phase
        last_sync_time: When the last successful pass finished
    """

    is_syncing: bool = False
    aborted: bool = False
    phase: SyncPhase = SyncPhase.IDLE
    last_sync_time: Optional[datetime] = None


@dataclass
class SyncResult:
    """Counts from the copy phase of one pass."""

    synced: int = 0
    skipped: int = 0
    errors: int = 0
