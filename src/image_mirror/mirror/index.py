"""In-memory index of the files present in the mirror directory."""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set

import aiofiles.os
from loguru import logger

from image_mirror.file_utils import list_files
from image_mirror.mirror.utils import MirrorLogger
from image_mirror.utils import filename_key, is_accepted_image


@dataclass
class MirrorEntry:
    """A mirrored file.

    Attributes:
        filename: Name as it exists in the mirror directory
        size: Size in bytes
        mtime: Modification time in seconds
        synced: True once the copy was verified by re-statting it
    """

    filename: str
    size: int
    mtime: float
    synced: bool = True


class MirrorIndex:
    """
    Case-insensitive map of mirrored filename -> MirrorEntry.

    The index is rebuilt from the mirror directory on startup, so it never
    needs to be persisted. All mutations are synchronous, so no pipeline phase
    can observe a half-updated entry.
    """

    def __init__(self, mirror_path: Path, log: Optional[MirrorLogger] = None):
        self.mirror_path = mirror_path
        self.logger = log or logger
        self._entries: Dict[str, MirrorEntry] = {}

    async def load(self) -> None:
        """Populate the index from the files currently in the mirror directory."""
        self._entries.clear()
        try:
            names = await list_files(self.mirror_path)
        except OSError as e:
            # Start with an empty index, the next sync repopulates it
            self.logger.warning(f"Could not load mirror index: {e}")
            return

        for name in names:
            if not is_accepted_image(name):
                continue
            try:
                stats = await aiofiles.os.stat(self.mirror_path / name)
            except OSError:
                self.logger.warning(f"Could not stat mirrored file: {name}")
                continue
            self.upsert(name, stats.st_size, stats.st_mtime)

        self.logger.info(f"Loaded mirror index: {len(self)} files")

    def get(self, filename: str) -> Optional[MirrorEntry]:
        return self._entries.get(filename_key(filename))

    def has(self, filename: str) -> bool:
        return filename_key(filename) in self._entries

    def resolve_path(self, filename: str) -> Optional[Path]:
        """Local path of a mirrored file, or None if it is not mirrored."""
        entry = self.get(filename)
        if entry is None:
            return None
        return self.mirror_path / entry.filename

    def upsert(self, filename: str, size: int, mtime: float) -> MirrorEntry:
        entry = MirrorEntry(filename=filename, size=size, mtime=mtime, synced=True)
        self._entries[filename_key(filename)] = entry
        return entry

    def remove(self, filename: str) -> Optional[MirrorEntry]:
        return self._entries.pop(filename_key(filename), None)

    def find_file(self, identifier: str) -> Optional[str]:
        """Find the mirrored photo for a member identifier (.jpg, then .jpeg)."""
        for extension in (".jpg", ".jpeg"):
            entry = self.get(f"{identifier}{extension}")
            if entry is not None:
                return entry.filename
        return None

    def filenames(self) -> List[str]:
        return [entry.filename for entry in self._entries.values()]

    def entries(self) -> List[MirrorEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, filename: str) -> bool:
        return self.has(filename)


class ForceResyncSet:
    """Filenames that must be copied on the next pass regardless of metadata."""

    def __init__(self):
        self._keys: Set[str] = set()

    def add(self, filename: str) -> None:
        self._keys.add(filename_key(filename))

    def discard(self, filename: str) -> None:
        self._keys.discard(filename_key(filename))

    def __contains__(self, filename: str) -> bool:
        return filename_key(filename) in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._keys))
