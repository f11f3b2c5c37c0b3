"""
Cache construction for a directory of images.

Walks the root, reuses every cache entry whose mtime still matches,
decodes and extracts features for everything else, and saves the
result. Progress is reported as an ordered stream of ProgressEvent
objects:

    start(total) -> progress/error ... -> complete(total)

A file that cannot be stat'ed or decoded yields an ``error`` event and
is skipped; the build carries on. Only a failed directory scan (before
any cache mutation) or a failed save ends the build with an exception.

Decoding can run on a bounded thread pool. Results are applied to the
store and reported from the consuming thread only, in completion order.
"""

import enum
import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional

from .cache_store import CacheStore
from .decoder import ImageDecoder
from .errors import CacheSaveError, DecodeError, ScanError
from .features import ANALYSIS_SIZE, extract_features
from .models import CacheEntry, ProgressEvent
from .scanner import PathFilter, scan

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = int(os.environ.get("IMAGE_FINDER_WORKERS", "1"))


class BuildState(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PROCESSING = "processing"
    SAVING = "saving"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class _FileResult:
    path: str
    entry: Optional[CacheEntry] = None
    reused: bool = False
    error: Optional[str] = None


def size_label(size_bytes: int) -> str:
    """Human-readable size in KB with two decimals, e.g. ``"12.50 KB"``."""
    return f"{size_bytes / 1024:.2f} KB"


def dimensions_label(width: int, height: int) -> str:
    return f"{width}x{height}"


class CacheBuilder:
    """
    Populate a CacheStore from its root directory.

    Example:
        builder = CacheBuilder(CacheStore("/photos"))
        for event in builder.build():
            print(event.type, event.current, event.total)
    """

    def __init__(self, store: CacheStore,
                 decoder: Optional[ImageDecoder] = None,
                 workers: int = DEFAULT_WORKERS):
        """
        Args:
            store: Cache to populate; its root is the directory scanned.
            decoder: Image decoder (defaults to the OpenCV decoder).
            workers: Concurrent decode workers. 1 processes sequentially.
        """
        self.store = store
        self.decoder = decoder or ImageDecoder()
        self.workers = max(1, workers)
        self.state = BuildState.IDLE
        self.processed = 0
        self.reused = 0
        self.errors = 0

    def process_file(self, path: str) -> _FileResult:
        """Stat one file and reuse or compute its cache entry."""
        try:
            stat = os.stat(path)
        except OSError as e:
            return _FileResult(path, error=f"Cannot stat file: {e}")
        mtime = stat.st_mtime_ns // 1_000_000

        cached = self.store.get(path)
        if cached is not None and self.store.is_valid(cached, mtime):
            return _FileResult(path, entry=cached, reused=True)

        try:
            decoded = self.decoder.load(path, ANALYSIS_SIZE)
            features = extract_features(decoded)
        except DecodeError as e:
            return _FileResult(path, error=str(e))

        entry = CacheEntry(
            path=path,
            size_label=size_label(stat.st_size),
            dimensions_label=dimensions_label(decoded.width, decoded.height),
            features=features,
            last_modified=mtime,
        )
        return _FileResult(path, entry=entry)

    def _results(self, paths: List[str]) -> Iterable[_FileResult]:
        if self.workers == 1:
            for path in paths:
                yield self.process_file(path)
            return

        executor = ThreadPoolExecutor(max_workers=self.workers)
        try:
            futures = [executor.submit(self.process_file, p) for p in paths]
            for future in as_completed(futures):
                yield future.result()
        finally:
            # Queued decodes are dropped when the consumer stops iterating
            executor.shutdown(wait=True, cancel_futures=True)

    def build(self,
              include: PathFilter = None,
              exclude: PathFilter = None) -> Iterator[ProgressEvent]:
        """
        Scan the root and bring the cache up to date.

        Args:
            include: Optional regex a root-relative path must match.
            exclude: Optional regex that removes a root-relative path.

        Yields:
            ProgressEvent objects: one ``start``, then ``progress`` or
            ``error`` per file, then one ``complete``.

        Raises:
            ScanError: If the directory scan fails. Nothing is mutated.
            CacheSaveError: If the final save fails. The in-memory cache
                still holds the new entries.
        """
        return self._build(include, exclude, fresh=False)

    def rebuild(self,
                include: PathFilter = None,
                exclude: PathFilter = None) -> Iterator[ProgressEvent]:
        """Invalidate the cache, then build it from scratch.

        The existing cache is only discarded once the scan has succeeded.
        """
        return self._build(include, exclude, fresh=True)

    def _build(self, include: PathFilter, exclude: PathFilter,
               fresh: bool) -> Iterator[ProgressEvent]:
        self.processed = self.reused = self.errors = 0

        self.state = BuildState.SCANNING
        try:
            paths = scan(self.store.root, include, exclude)
        except ScanError:
            self.state = BuildState.ERROR
            raise

        self.state = BuildState.PROCESSING
        if fresh:
            self.store.invalidate()
        else:
            self.store.load()
        total = len(paths)
        logger.info(f"Building cache for {self.store.root}: {total} images")
        yield ProgressEvent(type="start", total=total)

        current = 0
        for result in self._results(paths):
            current += 1
            if result.error is not None:
                self.errors += 1
                logger.warning(f"Failed to process {result.path}: {result.error}")
                yield ProgressEvent(type="error", file=result.path, error=result.error)
                continue

            if result.reused:
                self.reused += 1
            else:
                self.store.upsert(result.path, result.entry)
            self.processed += 1
            yield ProgressEvent(type="progress", current=current, total=total, file=result.path)

        self.store.remove_missing(set(paths))

        self.state = BuildState.SAVING
        try:
            self.store.save()
        except CacheSaveError:
            self.state = BuildState.ERROR
            raise

        self.state = BuildState.COMPLETE
        logger.info(
            f"Cache built: {self.processed} images ({self.reused} reused, "
            f"{self.processed - self.reused} extracted), {self.errors} errors"
        )
        yield ProgressEvent(type="complete", total=total)

    def run(self, include: PathFilter = None, exclude: PathFilter = None,
            rebuild: bool = False) -> List[ProgressEvent]:
        """Drive a build to completion and return every event."""
        events = self.rebuild(include, exclude) if rebuild else self.build(include, exclude)
        return list(events)


def build_cache(root: str, cache_dir: Optional[str] = None,
                decoder: Optional[ImageDecoder] = None,
                workers: int = DEFAULT_WORKERS) -> CacheStore:
    """Build (or refresh) the cache for ``root`` and return its store."""
    store = CacheStore(root, cache_dir=cache_dir)
    CacheBuilder(store, decoder=decoder, workers=workers).run()
    return store
