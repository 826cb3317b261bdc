"""Utilities for file operations."""

import asyncio
import hashlib
import shutil
from pathlib import Path
from typing import List

import aiofiles
import aiofiles.os
from loguru import logger


class FileError(Exception):
    """Base exception for file operations."""

    pass


class FileOperationError(FileError):
    """Raised when copying or creating files fails."""

    pass


async def compute_partial_checksum(path: Path, chunk_size: int = 64 * 1024) -> str:
    """
    Compute SHA-256 checksum of the first chunk_size bytes of a file.

    Photo overwrites almost always touch the header, so the leading chunk is
    enough to tell two copies apart. Changes past chunk_size go unnoticed.

    Args:
        path: File to hash
        chunk_size: Number of leading bytes to read

    Returns:
        SHA-256 hex digest

    Raises:
        FileError: If the file cannot be read
    """
    try:
        async with aiofiles.open(path, mode="rb") as f:
            content = await f.read(chunk_size)
        return hashlib.sha256(content).hexdigest()
    except Exception as e:
        raise FileError(f"Failed to compute checksum for {path}: {e}") from e


async def ensure_directory(path: Path) -> None:
    """
    Ensure directory exists, creating if necessary.

    Raises:
        FileOperationError: If directory creation fails
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except Exception as e:
        logger.error(f"Failed to create directory: {path}: {e}")
        raise FileOperationError(f"Failed to create directory {path}: {e}") from e


async def copy_file(source: Path, destination: Path) -> None:
    """
    Copy a file off the event loop, keeping its modification time.

    Raises:
        FileOperationError: If the copy fails
    """
    try:
        await asyncio.to_thread(shutil.copy2, source, destination)
    except Exception as e:
        raise FileOperationError(f"Failed to copy {source} to {destination}: {e}") from e


async def list_files(directory: Path) -> List[str]:
    """
    Names of the regular files directly inside a directory.

    Subdirectories are skipped even when their names look like files. Uses
    the cached entry type from scandir, so no extra stat per entry.

    Raises:
        OSError: If the directory cannot be listed
    """
    with await aiofiles.os.scandir(directory) as entries:
        return [entry.name for entry in entries if entry.is_file()]
