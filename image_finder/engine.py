"""
Similarity queries against a populated feature cache.

The engine never writes to the cache. A query image that is already
cached (and unchanged on disk) reuses its stored features; any other
image is decoded on the fly. Every cached entry under the root is then
scored against it and the hits above the threshold are ranked.

Concurrent queries during an in-progress build see whatever the store
holds at that moment; they never wait for the build.
"""

import logging
import os
from typing import Dict, List, Optional, Tuple

from .cache_store import CacheStore, file_mtime_ms
from .decoder import ImageDecoder
from .errors import DecodeError, QueryError
from .features import extract_file_features
from .models import FeatureRecord, RankedResult, SimilarityScore, SimilarityWeights
from .scanner import PathFilter, compile_filter, matches_filters, normalize_path, relative_key
from .scoring import DEFAULT_POLICY, ScoringPolicy, rank_results, score

logger = logging.getLogger(__name__)

_MemoKey = Tuple[str, str, float, float]


class QueryEngine:
    """
    Rank cached images by visual similarity to a query image.

    Pairwise scores are memoized per (source, target, color_weight,
    shape_weight) for the lifetime of the engine. The memo is dropped
    whenever the store is saved or invalidated.
    """

    def __init__(self, store: CacheStore,
                 decoder: Optional[ImageDecoder] = None,
                 policy: ScoringPolicy = DEFAULT_POLICY):
        self.store = store
        self.decoder = decoder or ImageDecoder()
        self.policy = policy
        self._memo: Dict[_MemoKey, SimilarityScore] = {}
        self._memo_generation = store.generation

    def _check_memo(self) -> None:
        if self._memo_generation != self.store.generation:
            self._memo.clear()
            self._memo_generation = self.store.generation

    def clear_memo(self) -> None:
        self._memo.clear()

    def features_for(self, path: str) -> FeatureRecord:
        """
        Return features for an image, from the cache when still valid.

        Raises:
            QueryError: If the image cannot be read or decoded.
        """
        path = normalize_path(path)
        cached = self.store.get(path)
        if cached is not None:
            try:
                if self.store.is_valid(cached, file_mtime_ms(path)):
                    return cached.features
            except OSError as e:
                raise QueryError(f"Cannot read query image {path}: {e}", path) from e

        try:
            return extract_file_features(path, self.decoder)
        except DecodeError as e:
            raise QueryError(f"Cannot decode query image {path}: {e}", path) from e

    def _score(self, source: str, source_features: FeatureRecord,
               target: str, target_features: FeatureRecord,
               weights: SimilarityWeights) -> SimilarityScore:
        key = (source, target, weights.color_weight, weights.shape_weight)
        result = self._memo.get(key)
        if result is None:
            result = score(source_features, target_features, weights, self.policy)
            self._memo[key] = result
        return result

    def compare(self, source_path: str, target_path: str,
                weights: Optional[SimilarityWeights] = None) -> SimilarityScore:
        """
        Score one pair of images.

        Args:
            source_path: Query image.
            target_path: Candidate image.
            weights: Color/shape weights.

        Returns:
            SimilarityScore for the pair.

        Raises:
            QueryError: If either image cannot be read.
        """
        self._check_memo()
        weights = weights or SimilarityWeights()
        source = normalize_path(source_path)
        target = normalize_path(target_path)

        key = (source, target, weights.color_weight, weights.shape_weight)
        if key in self._memo:
            return self._memo[key]

        return self._score(source, self.features_for(source),
                           target, self.features_for(target), weights)

    def query(self, image_path: str,
              weights: Optional[SimilarityWeights] = None,
              threshold: float = 0.0,
              include: PathFilter = None,
              exclude: PathFilter = None,
              result_dir: Optional[str] = None,
              limit: Optional[int] = None) -> List[RankedResult]:
        """
        Find cached images similar to ``image_path``.

        Args:
            image_path: Query image; need not be inside the cached root.
            weights: Color/shape weights (defaults to SimilarityWeights()).
            threshold: Minimum total similarity for a hit.
            include: Optional regex on root-relative candidate paths.
            exclude: Optional regex removing root-relative candidate paths.
            result_dir: Only consider candidates under this directory.
            limit: Maximum number of results to return.

        Returns:
            Hits sorted by total similarity (descending), then path.

        Raises:
            QueryError: If the query image cannot be read or decoded.
        """
        self._check_memo()
        weights = weights or SimilarityWeights()
        source = normalize_path(image_path)
        query_features = self.features_for(source)

        include = compile_filter(include)
        exclude = compile_filter(exclude)
        prefix = None
        if result_dir is not None:
            prefix = normalize_path(result_dir).rstrip(os.sep) + os.sep

        results = []
        candidates = 0
        for entry in self.store.entries():
            if prefix is not None and not entry.path.startswith(prefix):
                continue
            if not matches_filters(relative_key(entry.path, self.store.root), include, exclude):
                continue
            candidates += 1

            similarity = self._score(source, query_features, entry.path, entry.features, weights)
            if similarity.total >= threshold:
                results.append(RankedResult(
                    path=entry.path,
                    score=similarity,
                    size_label=entry.size_label,
                    dimensions_label=entry.dimensions_label,
                ))

        results = rank_results(results)
        if limit is not None:
            results = results[:limit]

        logger.info(
            f"Query {source}: {candidates} candidates -> {len(results)} results "
            f"(threshold {threshold})"
        )
        return results
