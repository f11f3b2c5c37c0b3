"""Tests for similarity queries against a built cache."""

import pytest

from conftest import RED, CountingDecoder, solid_image, write_png
from image_finder.builder import CacheBuilder
from image_finder.engine import QueryEngine
from image_finder.errors import QueryError
from image_finder.models import WEIGHT_PRESETS, SimilarityWeights
from image_finder.scanner import normalize_path


@pytest.fixture
def built_store(store):
    CacheBuilder(store).run()
    return store


@pytest.fixture
def outside_query(tmp_path):
    """Red square that is not part of the indexed root."""
    return write_png(tmp_path / "query" / "red_query.png", solid_image(80, 80, RED))


def _names(results):
    return [r.path.rsplit("/", 1)[-1].rsplit("\\", 1)[-1] for r in results]


class TestQuery:
    """Tests for ranked similarity queries."""

    def test_ranks_red_squares_first(self, built_store, outside_query):
        results = QueryEngine(built_store).query(outside_query)
        names = _names(results)
        assert len(results) == 5
        assert set(names[:2]) == {"red_100.png", "red_50.png"}
        assert names.index("blue_100.png") > names.index("red_50.png")

    def test_results_sorted(self, built_store, outside_query):
        results = QueryEngine(built_store).query(outside_query)
        totals = [r.score.total for r in results]
        assert totals == sorted(totals, reverse=True)

    def test_cached_query_matches_itself(self, built_store, image_root):
        query = str(image_root / "red_100.png")
        results = QueryEngine(built_store).query(query)
        assert results[0].path == normalize_path(query)
        assert results[0].score.total == 1.0

    def test_cached_query_not_decoded(self, built_store, image_root):
        decoder = CountingDecoder()
        QueryEngine(built_store, decoder=decoder).query(str(image_root / "blue_100.png"))
        assert decoder.loads == 0

    def test_threshold(self, built_store, outside_query):
        engine = QueryEngine(built_store)
        everything = engine.query(outside_query)
        cutoff = everything[1].score.total
        results = engine.query(outside_query, threshold=cutoff)
        assert all(r.score.total >= cutoff for r in results)
        assert len(results) == 2

    def test_threshold_above_one_returns_nothing(self, built_store, outside_query):
        assert QueryEngine(built_store).query(outside_query, threshold=1.5) == []

    def test_limit(self, built_store, outside_query):
        assert len(QueryEngine(built_store).query(outside_query, limit=3)) == 3

    def test_result_labels_from_cache(self, built_store, image_root, outside_query):
        results = QueryEngine(built_store).query(outside_query)
        wide = next(r for r in results if r.path.endswith("green_wide.png"))
        assert wide.dimensions_label == "120x60"
        assert wide.size_label == built_store.get(wide.path).size_label

    def test_include_exclude(self, built_store, outside_query):
        engine = QueryEngine(built_store)
        nested = engine.query(outside_query, include=r"^nested/")
        assert sorted(_names(nested)) == ["green_wide.png", "red_tall.png"]
        top_level = engine.query(outside_query, exclude=r"/")
        assert sorted(_names(top_level)) == ["blue_100.png", "red_100.png", "red_50.png"]

    def test_result_dir(self, built_store, image_root, outside_query):
        results = QueryEngine(built_store).query(
            outside_query, result_dir=str(image_root / "nested"))
        assert sorted(_names(results)) == ["green_wide.png", "red_tall.png"]

    def test_weights_change_ranking_scores(self, built_store, outside_query):
        engine = QueryEngine(built_store)
        color = engine.query(outside_query, weights=WEIGHT_PRESETS["color"])
        shape = engine.query(outside_query, weights=WEIGHT_PRESETS["shape"])
        blue_color = next(r for r in color if r.path.endswith("blue_100.png"))
        blue_shape = next(r for r in shape if r.path.endswith("blue_100.png"))
        assert blue_shape.score.total > blue_color.score.total

    def test_empty_cache_returns_nothing(self, store, outside_query):
        assert QueryEngine(store).query(outside_query) == []

    def test_missing_query_raises(self, built_store, tmp_path):
        with pytest.raises(QueryError):
            QueryEngine(built_store).query(str(tmp_path / "missing.png"))

    def test_corrupt_query_raises(self, built_store, tmp_path):
        bad = tmp_path / "bad.png"
        bad.write_bytes(b"garbage")
        with pytest.raises(QueryError) as exc_info:
            QueryEngine(built_store).query(str(bad))
        assert exc_info.value.path == normalize_path(str(bad))

    def test_query_does_not_write_cache(self, built_store, outside_query):
        before = built_store.cache_path.read_bytes()
        QueryEngine(built_store).query(outside_query)
        assert built_store.cache_path.read_bytes() == before
        assert len(built_store) == 5


class TestCompare:
    """Tests for pairwise comparison and score memoization."""

    def test_compare_pair(self, built_store, image_root):
        engine = QueryEngine(built_store)
        red = str(image_root / "red_100.png")
        small = str(image_root / "red_50.png")
        blue = str(image_root / "blue_100.png")
        assert engine.compare(red, small).total > engine.compare(red, blue).total

    def test_compare_uncached_images(self, store, tmp_path):
        a = write_png(tmp_path / "x" / "a.png", solid_image(30, 30, RED))
        b = write_png(tmp_path / "x" / "b.png", solid_image(60, 60, RED))
        result = QueryEngine(store).compare(a, b, SimilarityWeights())
        assert result.shape > 0.9

    def test_memoized(self, store, tmp_path):
        a = write_png(tmp_path / "x" / "a.png", solid_image(30, 30, RED))
        b = write_png(tmp_path / "x" / "b.png", solid_image(60, 60, RED))
        decoder = CountingDecoder()
        engine = QueryEngine(store, decoder=decoder)
        first = engine.compare(a, b)
        second = engine.compare(a, b)
        assert first == second
        assert decoder.loads == 2

    def test_memo_keyed_by_weights(self, store, tmp_path):
        a = write_png(tmp_path / "x" / "a.png", solid_image(30, 30, RED))
        b = write_png(tmp_path / "x" / "b.png", solid_image(60, 60, RED))
        decoder = CountingDecoder()
        engine = QueryEngine(store, decoder=decoder)
        engine.compare(a, b, WEIGHT_PRESETS["color"])
        engine.compare(a, b, WEIGHT_PRESETS["shape"])
        assert decoder.loads == 4

    def test_memo_dropped_after_rebuild(self, store, tmp_path):
        a = write_png(tmp_path / "x" / "a.png", solid_image(30, 30, RED))
        b = write_png(tmp_path / "x" / "b.png", solid_image(60, 60, RED))
        decoder = CountingDecoder()
        engine = QueryEngine(store, decoder=decoder)
        engine.compare(a, b)
        CacheBuilder(store).run(rebuild=True)
        engine.compare(a, b)
        assert decoder.loads == 4

    def test_clear_memo(self, store, tmp_path):
        a = write_png(tmp_path / "x" / "a.png", solid_image(30, 30, RED))
        decoder = CountingDecoder()
        engine = QueryEngine(store, decoder=decoder)
        engine.compare(a, a)
        engine.clear_memo()
        engine.compare(a, a)
        assert decoder.loads == 4
