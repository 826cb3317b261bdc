"""CLI commands for image-mirror."""

from . import status, sync, watch

__all__ = ["status", "sync", "watch"]
