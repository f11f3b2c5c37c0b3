"""
Recursive directory scanning for image files.

Scanning is depth-first with entries sorted by name at every level, so
the same tree always yields the same sequence. Include/exclude patterns
are regular expressions searched against the path relative to the scan
root, written with forward slashes on every platform.

Unlike feature extraction, a scan is all-or-nothing: an unreadable
subdirectory aborts it with ScanError.
"""

import logging
import os
import re
from typing import List, Optional, Pattern, Union

from .errors import ScanError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".svg"}

PathFilter = Optional[Union[str, Pattern]]


def normalize_path(path: str) -> str:
    """Absolute, normalized path using the platform's native separator."""
    return os.path.normpath(os.path.abspath(os.fspath(path)))


def is_image_file(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in IMAGE_EXTENSIONS


def compile_filter(pattern: PathFilter) -> Optional[Pattern]:
    if pattern is None or isinstance(pattern, re.Pattern):
        return pattern
    return re.compile(pattern)


def relative_key(path: str, root: str) -> str:
    """Path relative to root, with forward slashes for pattern matching."""
    return os.path.relpath(path, root).replace(os.sep, "/")


def matches_filters(relative: str,
                    include: PathFilter = None,
                    exclude: PathFilter = None) -> bool:
    """
    Apply include/exclude patterns to a root-relative path.

    A path is rejected if it matches ``exclude``. When ``include`` is
    given the path must also match it.
    """
    include = compile_filter(include)
    exclude = compile_filter(exclude)
    if exclude is not None and exclude.search(relative):
        return False
    if include is not None and not include.search(relative):
        return False
    return True


def scan(root: str,
         include: PathFilter = None,
         exclude: PathFilter = None) -> List[str]:
    """
    Collect image files under ``root``.

    Args:
        root: Directory to scan.
        include: Optional regex a root-relative path must match.
        exclude: Optional regex that removes a root-relative path.

    Returns:
        Absolute, normalized image paths in deterministic order.

    Raises:
        ScanError: If ``root`` or any subdirectory cannot be read.
    """
    root = normalize_path(root)
    if not os.path.isdir(root):
        raise ScanError(f"Not a directory: {root}", root)

    include = compile_filter(include)
    exclude = compile_filter(exclude)
    results: List[str] = []

    def walk(directory: str) -> None:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            raise ScanError(f"Cannot read directory {directory}: {e}", directory) from e

        for entry in entries:
            # Symlinked directories are not followed
            if entry.is_dir(follow_symlinks=False):
                walk(entry.path)
            elif is_image_file(entry.name) and entry.is_file():
                if matches_filters(relative_key(entry.path, root), include, exclude):
                    results.append(normalize_path(entry.path))

    walk(root)
    logger.info(f"Scanned {root}: {len(results)} image files")
    return results
