"""Events emitted by the mirror to the UI layer."""

from typing import Any, Callable, Dict, List, Literal, Optional

from loguru import logger
from pydantic import BaseModel

SYNC_STARTED = "sync-started"
SYNC_PROGRESS = "sync-progress"
SYNC_COMPLETED = "sync-completed"
FILE_SYNCED = "file-synced"
REPOSITORY_CHANGED = "repository-changed"

EVENT_NAMES = (SYNC_STARTED, SYNC_PROGRESS, SYNC_COMPLETED, FILE_SYNCED, REPOSITORY_CHANGED)

ChangeType = Literal["add", "change", "unlink"]
Handler = Callable[..., Any]


class SyncProgress(BaseModel):
    phase: Literal["discovery", "syncing", "cleanup"]
    current: int
    total: int
    synced: Optional[int] = None
    errors: Optional[int] = None


class SyncCompleted(BaseModel):
    success: bool
    synced: int = 0
    skipped: int = 0
    errors: int = 0
    error: Optional[str] = None


class RepositoryChanged(BaseModel):
    type: ChangeType
    filename: str


class MirrorEvents:
    """
    Observer registry for mirror events.

    Handlers run synchronously in emission order, so a subscriber sees
    sync-started before any sync-progress and sync-progress before
    sync-completed. A failing handler is logged and never reaches the engine.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {name: [] for name in EVENT_NAMES}

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        """Subscribe to an event. Returns a function that unsubscribes."""
        self._handlers_for(event).append(handler)
        return lambda: self.off(event, handler)

    def once(self, event: str, handler: Handler) -> Callable[[], None]:
        def wrapper(*args: Any) -> None:
            self.off(event, wrapper)
            handler(*args)

        return self.on(event, wrapper)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers_for(event)
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, *args: Any) -> None:
        # copy, handlers may unsubscribe while running
        for handler in list(self._handlers_for(event)):
            try:
                handler(*args)
            except Exception:
                logger.exception(f"Error in {event} handler")

    def _handlers_for(self, event: str) -> List[Handler]:
        if event not in self._handlers:
            raise ValueError(f"Unknown mirror event: {event}")
        return self._handlers[event]
