"""
Persistent, versioned feature cache for one directory root.

Each root gets one JSON file in an application-owned cache area (never
inside the scanned tree), named by a hash of the root's absolute path.
The file maps absolute image paths to CacheEntry rows:

    {
      "version": "1.0",
      "timestamp": 1700000000000,
      "files": {
        "/photos/a.png": {"path": ..., "size": "12.34 KB",
                          "dimensions": "64x64", "features": {...},
                          "lastModified": 1699999999000}
      }
    }

An entry is reused only while its stored ``lastModified`` equals the
file's current mtime (and the file version matches). A file rewritten
with an identical mtime is not detected; content is never hashed.
"""

import contextlib
import hashlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Dict, Iterator, Optional, Set

from pydantic import ValidationError

from .errors import CacheLoadError, CacheSaveError
from .models import CacheEntry, CacheFile
from .scanner import normalize_path

logger = logging.getLogger(__name__)

CACHE_VERSION = "1.0"

DEFAULT_CACHE_DIR = os.environ.get(
    "IMAGE_FINDER_CACHE_DIR",
    str(Path.home() / ".cache" / "image_finder"),
)


def cache_key(root: str) -> str:
    """Stable file-name key for a directory root."""
    return hashlib.sha256(normalize_path(root).encode("utf-8")).hexdigest()[:32]


def file_mtime_ms(path: str) -> int:
    """Filesystem modification time in milliseconds since the epoch."""
    return os.stat(path).st_mtime_ns // 1_000_000


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class CacheStore:
    """
    In-memory feature map for one root, plus its on-disk file.

    The store is the only writer of both. Readers (the query engine) go
    through get()/entries(). ``generation`` changes whenever the cache
    is saved or invalidated, so derived caches know when to reset.
    """

    def __init__(self, root: str, cache_dir: Optional[str] = None):
        """
        Args:
            root: Directory whose images this cache describes.
            cache_dir: Cache area. Defaults to IMAGE_FINDER_CACHE_DIR or
                ~/.cache/image_finder.
        """
        self.root = normalize_path(root)
        self.cache_dir = Path(cache_dir or DEFAULT_CACHE_DIR)
        self.cache_path = self.cache_dir / f"{cache_key(self.root)}.json"
        self.timestamp: Optional[int] = None
        self.generation = 0
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: str) -> bool:
        return normalize_path(path) in self._entries

    def _read(self) -> CacheFile:
        if not self.cache_path.exists():
            raise CacheLoadError("No cache file", str(self.cache_path))
        try:
            with self.cache_path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            raise CacheLoadError(f"Unreadable cache file: {e}", str(self.cache_path)) from e

        if not isinstance(raw, dict) or raw.get("version") != CACHE_VERSION:
            found = raw.get("version") if isinstance(raw, dict) else None
            raise CacheLoadError(
                f"Cache version {found!r} does not match {CACHE_VERSION!r}",
                str(self.cache_path),
            )
        try:
            return CacheFile.model_validate(raw)
        except ValidationError as e:
            raise CacheLoadError(f"Malformed cache file: {e}", str(self.cache_path)) from e

    def load(self) -> Optional[CacheFile]:
        """
        Load the on-disk cache into memory.

        Returns:
            The parsed CacheFile, or None if it is missing, unreadable or
            from another format version. In that case the in-memory map
            is left as it was.
        """
        try:
            cache_file = self._read()
        except CacheLoadError as e:
            if self.cache_path.exists():
                logger.warning(f"Ignoring cache for {self.root}: {e}")
            else:
                logger.debug(f"No cache for {self.root}")
            return None

        self._entries = {normalize_path(p): entry for p, entry in cache_file.files.items()}
        self.timestamp = cache_file.timestamp
        logger.info(f"Loaded cache for {self.root}: {len(self._entries)} entries")
        return cache_file

    @staticmethod
    def is_valid(entry: CacheEntry, current_mtime: int) -> bool:
        return entry.last_modified == current_mtime

    def get(self, path: str) -> Optional[CacheEntry]:
        return self._entries.get(normalize_path(path))

    def upsert(self, path: str, entry: CacheEntry) -> None:
        self._entries[normalize_path(path)] = entry

    def entries(self) -> Iterator[CacheEntry]:
        """Snapshot iterator over the cached entries."""
        return iter(list(self._entries.values()))

    def remove_missing(self, current_paths: Set[str]) -> int:
        """
        Drop entries whose path is not in ``current_paths``.

        Returns:
            Number of entries removed.
        """
        keep = {normalize_path(p) for p in current_paths}
        stale = [p for p in self._entries if p not in keep]
        for path in stale:
            del self._entries[path]
        if stale:
            logger.info(f"Removed {len(stale)} stale cache entries")
        return len(stale)

    def to_cache_file(self, timestamp: Optional[int] = None) -> CacheFile:
        return CacheFile(
            version=CACHE_VERSION,
            timestamp=timestamp if timestamp is not None else now_ms(),
            files=dict(sorted(self._entries.items())),
        )

    def save(self) -> None:
        """
        Write the full in-memory map to disk, bumping ``timestamp``.

        The file is written next to its destination and renamed into
        place, so readers never see a partial file.

        Raises:
            CacheSaveError: If the cache area or file cannot be written.
                The in-memory map stays usable.
        """
        cache_file = self.to_cache_file()
        payload = json.dumps(
            cache_file.model_dump(mode="json", by_alias=True),
            indent=2, sort_keys=True, ensure_ascii=False,
        )

        temp_path = self.cache_path.with_suffix(".json.tmp")
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with temp_path.open("w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(temp_path, self.cache_path)
        except OSError as e:
            with contextlib.suppress(OSError):
                temp_path.unlink()
            logger.error(f"Failed to save cache for {self.root}: {e}")
            raise CacheSaveError(f"Cannot write cache {self.cache_path}: {e}",
                                 str(self.cache_path)) from e

        self.timestamp = cache_file.timestamp
        self.generation += 1
        logger.info(f"Saved cache for {self.root}: {len(cache_file.files)} entries "
                    f"-> {self.cache_path}")

    def invalidate(self) -> None:
        """Clear the in-memory map and delete the on-disk file."""
        self._entries.clear()
        self.timestamp = None
        self.generation += 1
        try:
            self.cache_path.unlink()
            logger.info(f"Deleted cache file {self.cache_path}")
        except FileNotFoundError:
            pass
