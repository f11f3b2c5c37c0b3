"""
File-info and preview helpers for hosts that display results.

Size and dimension labels are answered from the cache when the file is
cached, and computed from the filesystem/decoder otherwise.
"""

import base64
import logging
import os
from typing import Optional

from .builder import dimensions_label as format_dimensions
from .builder import size_label as format_size
from .cache_store import CacheStore
from .decoder import ImageDecoder
from .scanner import normalize_path

logger = logging.getLogger(__name__)

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
}


def mime_type(path: str) -> str:
    return MIME_TYPES.get(os.path.splitext(path)[1].lower(), "application/octet-stream")


def file_size_label(path: str, store: Optional[CacheStore] = None) -> str:
    """
    Human-readable file size, e.g. ``"12.50 KB"``.

    Raises:
        OSError: If the file is not cached and cannot be stat'ed.
    """
    path = normalize_path(path)
    if store is not None:
        entry = store.get(path)
        if entry is not None:
            return entry.size_label
    return format_size(os.stat(path).st_size)


def dimensions_label(path: str, store: Optional[CacheStore] = None,
                     decoder: Optional[ImageDecoder] = None) -> str:
    """
    Original pixel dimensions as ``"{width}x{height}"``.

    Raises:
        DecodeError: If the file is not cached and cannot be decoded.
    """
    path = normalize_path(path)
    if store is not None:
        entry = store.get(path)
        if entry is not None:
            return entry.dimensions_label
    decoder = decoder or ImageDecoder()
    width, height = decoder.decode(path)
    return format_dimensions(width, height)


def image_preview(path: str, decoder: Optional[ImageDecoder] = None) -> str:
    """
    Encode an image file as a ``data:`` URL for display.

    Raises:
        DecodeError: If the file cannot be read.
    """
    decoder = decoder or ImageDecoder()
    data = decoder.read_bytes(path)
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type(path)};base64,{encoded}"
