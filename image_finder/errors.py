"""
Exception taxonomy for the feature/cache engine.

Fatal errors (ScanError, CacheSaveError, QueryError) propagate to the
caller. DecodeError is recoverable during bulk builds: the builder turns
it into an ``error`` progress event and moves on. CacheLoadError never
leaves the package; the store treats an unreadable cache as empty.
"""

from typing import Optional


class ImageFinderError(Exception):
    """Base class for all image_finder errors."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class ScanError(ImageFinderError):
    """A directory under the scan root could not be read."""


class DecodeError(ImageFinderError):
    """An image file is corrupt, missing, or uses an unsupported codec."""


class CacheLoadError(ImageFinderError):
    """The on-disk cache is missing, corrupt, or from another format version."""


class CacheSaveError(ImageFinderError):
    """The cache could not be written to disk."""


class QueryError(ImageFinderError):
    """The query image could not be read or decoded."""
