"""
image_finder: visual similarity search over cached image fingerprints.

Indexes a directory tree of images, stores a compact per-image feature
record (RGB histogram, dominant color, aspect ratio, corner flags) in a
versioned on-disk cache keyed by path and mtime, and ranks cached
images by a weighted color + shape similarity to a query image.

Modules:
    scanner      Recursive image discovery with include/exclude filters
    decoder      OpenCV-backed image decoding
    features     Feature record extraction
    cache_store  Versioned JSON cache per directory root
    builder      Incremental cache construction with progress events
    scoring      Color/shape similarity scoring and ranking
    engine       QueryEngine for ranked similarity search
    preview      File-info labels and data-URL previews
    cli          Command-line interface
"""

__version__ = "1.0.0"
