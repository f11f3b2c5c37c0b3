"""Tests for incremental cache construction."""

import os

import pytest

from conftest import BLUE, RED, CountingDecoder, solid_image, write_png
from image_finder.builder import (
    BuildState, CacheBuilder, build_cache, dimensions_label, size_label,
)
from image_finder.cache_store import CacheStore
from image_finder.errors import CacheSaveError, ScanError


def _types(events):
    return [e.type for e in events]


def _bump_mtime(path, seconds=10):
    stat = os.stat(path)
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + seconds * 1_000_000_000))


class TestLabels:
    """Tests for size and dimension label formatting."""

    def test_size_label(self):
        assert size_label(12800) == "12.50 KB"
        assert size_label(0) == "0.00 KB"

    def test_dimensions_label(self):
        assert dimensions_label(640, 480) == "640x480"


class TestBuild:
    """Tests for incremental cache builds and progress events."""

    def test_event_sequence(self, store, decoder):
        events = CacheBuilder(store, decoder=decoder).run()
        assert _types(events) == ["start"] + ["progress"] * 5 + ["complete"]
        assert events[0].total == 5
        assert [e.current for e in events[1:-1]] == [1, 2, 3, 4, 5]
        assert all(e.total == 5 for e in events[1:-1])
        assert events[-1].total == 5

    def test_populates_and_saves(self, store, image_root, decoder):
        builder = CacheBuilder(store, decoder=decoder)
        builder.run()
        assert builder.state == BuildState.COMPLETE
        assert len(store) == 5
        assert decoder.loads == 5
        assert store.cache_path.exists()

        entry = store.get(str(image_root / "nested" / "green_wide.png"))
        assert entry.dimensions_label == "120x60"
        assert entry.features.aspect_ratio == pytest.approx(2.0)
        assert entry.size_label.endswith(" KB")

    def test_second_build_reuses_everything(self, image_root, cache_dir):
        build_cache(str(image_root), cache_dir=cache_dir, decoder=CountingDecoder())

        decoder = CountingDecoder()
        store = CacheStore(str(image_root), cache_dir=cache_dir)
        builder = CacheBuilder(store, decoder=decoder)
        events = builder.run()
        assert decoder.loads == 0
        assert builder.reused == 5
        assert _types(events).count("progress") == 5

    def test_changed_mtime_recomputed(self, image_root, cache_dir):
        build_cache(str(image_root), cache_dir=cache_dir, decoder=CountingDecoder())
        changed = str(image_root / "red_50.png")
        write_png(image_root / "red_50.png", solid_image(50, 50, BLUE))
        _bump_mtime(changed)

        decoder = CountingDecoder()
        store = CacheStore(str(image_root), cache_dir=cache_dir)
        CacheBuilder(store, decoder=decoder).run()
        assert decoder.loads == 1
        assert store.get(changed).features.dominant_color == (0, 0, 255)

    def test_corrupt_file_does_not_abort(self, tmp_path, cache_dir, decoder):
        root = tmp_path / "mixed"
        for i in range(4):
            write_png(root / f"img_{i}.png", solid_image(20 + i, 20, RED))
        (root / "img_corrupt.png").write_bytes(b"\x89PNG but not really")

        store = CacheStore(str(root), cache_dir=cache_dir)
        builder = CacheBuilder(store, decoder=decoder)
        events = builder.run()

        assert events[-1].type == "complete"
        assert events[-1].total == 5
        errors = [e for e in events if e.type == "error"]
        assert len(errors) == 1
        assert errors[0].file == os.path.normpath(str(root / "img_corrupt.png"))
        assert errors[0].error
        assert len(store) == 4
        assert builder.errors == 1

    def test_removes_deleted_files(self, store, image_root, cache_dir):
        CacheBuilder(store).run()
        os.remove(image_root / "red_100.png")
        os.remove(image_root / "nested" / "red_tall.png")

        fresh = CacheStore(str(image_root), cache_dir=cache_dir)
        CacheBuilder(fresh).run()
        assert len(fresh) == 3
        assert str(image_root / "red_100.png") not in fresh

    def test_rebuild_after_deletion(self, store, image_root, decoder):
        CacheBuilder(store).run()
        os.remove(image_root / "red_100.png")
        os.remove(image_root / "blue_100.png")

        builder = CacheBuilder(store, decoder=decoder)
        events = builder.run(rebuild=True)
        assert len(store) == 3
        assert decoder.loads == 3
        assert events[0].total == 3

    def test_filters_limit_cached_files(self, store):
        CacheBuilder(store).run(include=r"^nested/")
        assert len(store) == 2

    def test_worker_pool_matches_sequential(self, image_root, tmp_path):
        sequential = CacheStore(str(image_root), cache_dir=str(tmp_path / "seq"))
        pooled = CacheStore(str(image_root), cache_dir=str(tmp_path / "pool"))
        CacheBuilder(sequential, workers=1).run()
        events = CacheBuilder(pooled, workers=4).run()

        currents = [e.current for e in events if e.type == "progress"]
        assert currents == [1, 2, 3, 4, 5]
        assert sorted(p.path for p in pooled.entries()) == \
            sorted(p.path for p in sequential.entries())
        for entry in sequential.entries():
            assert pooled.get(entry.path).features == entry.features

    def test_abandoned_build_does_not_save(self, store):
        events = CacheBuilder(store).build()
        next(events)
        next(events)
        events.close()
        assert not store.cache_path.exists()


class TestBuildFailures:
    """Tests for fatal scan and save failures."""

    def test_missing_root_raises_scan_error(self, tmp_path, cache_dir):
        store = CacheStore(str(tmp_path / "missing"), cache_dir=cache_dir)
        builder = CacheBuilder(store)
        with pytest.raises(ScanError):
            builder.run()
        assert builder.state == BuildState.ERROR
        assert not store.cache_path.exists()

    def test_scan_error_leaves_cache_untouched(self, store, image_root, cache_dir):
        CacheBuilder(store).run()
        saved = store.cache_path.read_bytes()

        moved = image_root.parent / "moved"
        os.rename(image_root, moved)
        again = CacheStore(str(image_root), cache_dir=cache_dir)
        with pytest.raises(ScanError):
            CacheBuilder(again).run()
        assert store.cache_path.read_bytes() == saved

    def test_save_failure_raises(self, image_root, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        store = CacheStore(str(image_root), cache_dir=str(blocker))
        builder = CacheBuilder(store)
        with pytest.raises(CacheSaveError):
            builder.run()
        assert builder.state == BuildState.ERROR
        assert len(store) == 5

    def test_failed_rebuild_keeps_cache(self, store, image_root):
        CacheBuilder(store).run()
        saved = store.cache_path.read_bytes()

        os.rename(image_root, image_root.parent / "moved")
        builder = CacheBuilder(store)
        with pytest.raises(ScanError):
            builder.run(rebuild=True)
        assert builder.state == BuildState.ERROR
        assert store.cache_path.read_bytes() == saved
        assert len(store) == 5
