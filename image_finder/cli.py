#!/usr/bin/env python3
"""CLI interface for image-finder."""

import argparse
import json
import logging
import re
import sys
from typing import Iterator

from tqdm import tqdm

from .builder import DEFAULT_WORKERS, CacheBuilder
from .cache_store import CacheStore
from .errors import CacheSaveError, QueryError, ScanError
from .engine import QueryEngine
from .models import WEIGHT_PRESETS, ProgressEvent, SimilarityWeights


def _consume(events: Iterator[ProgressEvent]) -> int:
    """Drive a build, rendering progress with tqdm. Returns the error count."""
    errors = 0
    bar = None
    try:
        for event in events:
            if event.type == "start":
                bar = tqdm(total=event.total, desc="Indexing images", unit="img")
            elif event.type == "progress":
                bar.update(event.current - bar.n)
            elif event.type == "error":
                errors += 1
                bar.update(1)
                tqdm.write(f"Skipped {event.file}: {event.error}")
            elif event.type == "complete":
                bar.n = event.total
                bar.refresh()
    finally:
        if bar is not None:
            bar.close()
    return errors


def _weights(args) -> SimilarityWeights:
    if args.preset:
        return WEIGHT_PRESETS[args.preset]
    return SimilarityWeights(color_weight=args.color_weight, shape_weight=args.shape_weight)


def index_command(args) -> None:
    store = CacheStore(args.root, cache_dir=args.cache_dir)
    builder = CacheBuilder(store, workers=args.workers)
    events = builder.rebuild if args.command == "rebuild" else builder.build
    errors = _consume(events(include=args.include, exclude=args.exclude))
    print(f"Cached {len(store)} images ({builder.reused} reused, {errors} errors)")
    print(f"Cache file: {store.cache_path}")


def search_command(args) -> None:
    store = CacheStore(args.root, cache_dir=args.cache_dir)
    if store.load() is None:
        print("No cache found, indexing first...")
        _consume(CacheBuilder(store, workers=args.workers).build())

    engine = QueryEngine(store)
    results = engine.query(
        args.query,
        weights=_weights(args),
        threshold=args.threshold,
        include=args.include,
        exclude=args.exclude,
        limit=args.top_k,
    )

    print(f"\nTop {len(results)} similar images:")
    for i, result in enumerate(results, 1):
        s = result.score
        print(f"{i}. {result.path} (total: {s.total:.4f}, color: {s.color:.4f}, "
              f"shape: {s.shape:.4f}, {result.dimensions_label}, {result.size_label})")

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump([r.model_dump() for r in results], f, indent=2)
        print(f"\nResults saved to: {args.output}")


def compare_command(args) -> None:
    store = CacheStore(args.root, cache_dir=args.cache_dir)
    store.load()
    score = QueryEngine(store).compare(args.source, args.target, _weights(args))
    print(f"Total similarity: {score.total:.4f}")
    print(f"Color similarity: {score.color:.4f}")
    print(f"Shape similarity: {score.shape:.4f}")


def clear_command(args) -> None:
    store = CacheStore(args.root, cache_dir=args.cache_dir)
    store.invalidate()
    print(f"Cleared cache for {store.root}")


def _add_filters(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--include", default=None,
                        help="Regex a root-relative path must match")
    parser.add_argument("--exclude", default=None,
                        help="Regex that excludes root-relative paths")


def _add_weights(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--color-weight", type=float, default=0.7,
                        help="Weight for color similarity (0-1)")
    parser.add_argument("--shape-weight", type=float, default=0.3,
                        help="Weight for shape similarity (0-1)")
    parser.add_argument("--preset", choices=sorted(WEIGHT_PRESETS), default=None,
                        help="Named weight preset (overrides explicit weights)")


def main() -> None:
    """CLI entry point for image-finder."""
    parser = argparse.ArgumentParser(
        description="Index image folders and find visually similar images",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--cache-dir", default=None,
                        help="Cache directory (default: $IMAGE_FINDER_CACHE_DIR "
                             "or ~/.cache/image_finder)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    for name, help_text in (("index", "Build or refresh the cache for a directory"),
                            ("rebuild", "Discard and rebuild the cache for a directory")):
        sub = subparsers.add_parser(name, help=help_text,
                                    formatter_class=argparse.ArgumentDefaultsHelpFormatter)
        sub.add_argument("root", help="Directory containing images")
        sub.add_argument("--workers", type=int, default=DEFAULT_WORKERS,
                         help="Number of parallel decode workers")
        _add_filters(sub)
        sub.set_defaults(func=index_command)

    search = subparsers.add_parser("search", help="Search for similar images",
                                   formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    search.add_argument("query", help="Path to query image")
    search.add_argument("root", help="Directory to search")
    search.add_argument("-t", "--threshold", type=float, default=0.0,
                        help="Minimum total similarity")
    search.add_argument("-k", "--top-k", type=int, default=20,
                        help="Number of results to return")
    search.add_argument("-o", "--output", help="Output JSON file for results")
    search.add_argument("--workers", type=int, default=DEFAULT_WORKERS,
                        help="Number of parallel decode workers when indexing")
    _add_filters(search)
    _add_weights(search)
    search.set_defaults(func=search_command)

    compare = subparsers.add_parser("compare", help="Score one pair of images",
                                    formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    compare.add_argument("source", help="First image")
    compare.add_argument("target", help="Second image")
    compare.add_argument("--root", default=".",
                         help="Directory whose cache may hold either image")
    _add_weights(compare)
    compare.set_defaults(func=compare_command)

    clear = subparsers.add_parser("clear", help="Delete the cache for a directory")
    clear.add_argument("root", help="Directory whose cache to delete")
    clear.set_defaults(func=clear_command)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command is None:
        parser.print_help()
        return

    try:
        args.func(args)
    except (ScanError, CacheSaveError, QueryError, ValueError, re.error) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
