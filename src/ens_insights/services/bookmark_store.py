"""Persistence of sync bookmarks."""

import json
import os
from pathlib import Path
from typing import Dict, Optional, Protocol

from pydantic import BaseModel

from ..utils.logger import setup_logger

logger = setup_logger(__name__)


class SyncBookmark(BaseModel):
    """Newest activity timestamp already processed for one feed."""
    key: str
    boundary_timestamp: int

    class Config:
        frozen = True


class BookmarkStore(Protocol):
    async def load(self, key: str) -> Optional[SyncBookmark]:
        ...

    async def save(self, bookmark: SyncBookmark) -> None:
        ...


class InMemoryBookmarkStore:
    """Bookmark store for tests and one-shot runs."""

    def __init__(self):
        self._bookmarks: Dict[str, SyncBookmark] = {}

    async def load(self, key: str) -> Optional[SyncBookmark]:
        return self._bookmarks.get(key)

    async def save(self, bookmark: SyncBookmark) -> None:
        self._bookmarks[bookmark.key] = bookmark


class JsonFileBookmarkStore:
    """Stores bookmarks as a JSON object keyed by feed.

    Writes go to a temporary file that then replaces the original, so a crash
    mid-write leaves the previous bookmarks intact.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def _read_all(self) -> Dict[str, int]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Could not read bookmarks from {self.path}: {e}")
            raise
        return {key: int(value) for key, value in data.items()}

    async def load(self, key: str) -> Optional[SyncBookmark]:
        value = self._read_all().get(key)
        if value is None:
            return None
        return SyncBookmark(key=key, boundary_timestamp=value)

    async def save(self, bookmark: SyncBookmark) -> None:
        data = self._read_all()
        data[bookmark.key] = bookmark.boundary_timestamp

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)

        logger.debug(f"Saved bookmark {bookmark.key} = {bookmark.boundary_timestamp}")
