"""
Weighted color + shape similarity between two feature records.

Color similarity blends a Euclidean histogram distance with a min/max
bin-overlap term, weighted per channel (R 0.40, G 0.35, B 0.25), then
sharpens the result with a sigmoid around 0.5.

Shape similarity combines a Gaussian falloff on aspect-ratio difference
with a size term built from log-area closeness, per-axis dimension
ratios, orientation agreement and corner-flag agreement.

The two are blended according to whichever weight dominates:
    color_weight >= 0.7  -> color priority (shape compressed by ^1.5)
    shape_weight >= 0.7  -> shape priority (shape boosted by ^0.7)
    otherwise            -> balanced (both ^0.8)
and the blend is finally raised to ^0.9.

All constants were tuned empirically and are part of the score's
compatibility contract. They can be overridden through SCORE_*
environment variables or by passing a ScoringPolicy explicitly.
"""

import logging
import math
import os
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .models import FeatureRecord, RankedResult, SimilarityScore, SimilarityWeights

logger = logging.getLogger(__name__)

# Color
CHANNEL_WEIGHTS = (
    float(os.environ.get("SCORE_RED_W", "0.40")),
    float(os.environ.get("SCORE_GREEN_W", "0.35")),
    float(os.environ.get("SCORE_BLUE_W", "0.25")),
)
EUCLIDEAN_BLEND = float(os.environ.get("SCORE_EUCLIDEAN_BLEND", "0.6"))
DISTRIBUTION_BLEND = float(os.environ.get("SCORE_DISTRIBUTION_BLEND", "0.4"))
SIGMOID_STEEPNESS = float(os.environ.get("SCORE_SIGMOID_STEEPNESS", "10.0"))
SIGMOID_MIDPOINT = float(os.environ.get("SCORE_SIGMOID_MIDPOINT", "0.5"))

# Shape
RATIO_GAUSSIAN_WIDTH = float(os.environ.get("SCORE_RATIO_WIDTH", "0.5"))
AREA_LOG_DIVISOR = float(os.environ.get("SCORE_AREA_DIVISOR", "20.0"))
MISMATCHED_ORIENTATION = float(os.environ.get("SCORE_ORIENTATION_MISMATCH", "0.7"))
SIZE_WEIGHTS = {
    "area":        float(os.environ.get("SCORE_SIZE_AREA_W", "0.15")),
    "dimension":   float(os.environ.get("SCORE_SIZE_DIMENSION_W", "0.40")),
    "orientation": float(os.environ.get("SCORE_SIZE_ORIENTATION_W", "0.25")),
    "corner":      float(os.environ.get("SCORE_SIZE_CORNER_W", "0.20")),
}
RATIO_BLEND = float(os.environ.get("SCORE_RATIO_BLEND", "0.7"))
SIZE_BLEND = float(os.environ.get("SCORE_SIZE_BLEND", "0.3"))
SHAPE_EXPONENT = float(os.environ.get("SCORE_SHAPE_EXP", "0.7"))

# Composite
MODE_THRESHOLD = float(os.environ.get("SCORE_MODE_THRESHOLD", "0.7"))
COLOR_MODE_EXPONENTS = (0.7, 1.5)
SHAPE_MODE_EXPONENTS = (1.0, 0.7)
BALANCED_EXPONENTS = (0.8, 0.8)
FINAL_EXPONENT = float(os.environ.get("SCORE_FINAL_EXP", "0.9"))


@dataclass(frozen=True)
class ScoringPolicy:
    """A versioned set of scoring constants. Defaults come from the module."""

    channel_weights: tuple = CHANNEL_WEIGHTS
    euclidean_blend: float = EUCLIDEAN_BLEND
    distribution_blend: float = DISTRIBUTION_BLEND
    sigmoid_steepness: float = SIGMOID_STEEPNESS
    sigmoid_midpoint: float = SIGMOID_MIDPOINT
    ratio_gaussian_width: float = RATIO_GAUSSIAN_WIDTH
    area_log_divisor: float = AREA_LOG_DIVISOR
    mismatched_orientation: float = MISMATCHED_ORIENTATION
    size_area_weight: float = SIZE_WEIGHTS["area"]
    size_dimension_weight: float = SIZE_WEIGHTS["dimension"]
    size_orientation_weight: float = SIZE_WEIGHTS["orientation"]
    size_corner_weight: float = SIZE_WEIGHTS["corner"]
    ratio_blend: float = RATIO_BLEND
    size_blend: float = SIZE_BLEND
    shape_exponent: float = SHAPE_EXPONENT
    mode_threshold: float = MODE_THRESHOLD
    color_mode_exponents: tuple = COLOR_MODE_EXPONENTS
    shape_mode_exponents: tuple = SHAPE_MODE_EXPONENTS
    balanced_exponents: tuple = BALANCED_EXPONENTS
    final_exponent: float = FINAL_EXPONENT


DEFAULT_POLICY = ScoringPolicy()


def _sigmoid(x: float, steepness: float, midpoint: float) -> float:
    return 1.0 / (1.0 + math.exp(-steepness * (x - midpoint)))


def color_similarity(hist_a, hist_b, policy: ScoringPolicy = DEFAULT_POLICY) -> float:
    """
    Compare two 768-bin RGB histograms.

    Args:
        hist_a: First histogram (sequence or array of 768 floats).
        hist_b: Second histogram.
        policy: Scoring constants.

    Returns:
        Similarity in (0, 1); identical, well-spread histograms approach 1.
    """
    a = np.asarray(hist_a, dtype=np.float64).reshape(3, -1)
    b = np.asarray(hist_b, dtype=np.float64).reshape(3, -1)
    bins = a.shape[1]
    weights = np.asarray(policy.channel_weights, dtype=np.float64)[:, None]

    squared = (weights * (a - b) ** 2).sum()
    euclidean = 1.0 - math.sqrt(float(squared))

    # min/max overlap, only where both bins are populated
    both = (a > 0) & (b > 0)
    lo = np.minimum(a, b)
    hi = np.maximum(a, b)
    ratio = np.divide(lo, hi, out=np.zeros_like(lo), where=both)
    distribution = float((weights * ratio).sum()) / bins

    raw = euclidean * policy.euclidean_blend + distribution * policy.distribution_blend
    return _sigmoid(raw, policy.sigmoid_steepness, policy.sigmoid_midpoint)


def _is_landscape(dimensions) -> bool:
    w, h = dimensions
    return w > h


def corner_agreement(a: FeatureRecord, b: FeatureRecord) -> float:
    """Fraction of the four corner flags that agree (0, 0.25, ... 1.0)."""
    matches = sum(x == y for x, y in zip(a.corner_features.flags(), b.corner_features.flags()))
    return matches / 4.0


def shape_similarity(a: FeatureRecord, b: FeatureRecord,
                     policy: ScoringPolicy = DEFAULT_POLICY) -> float:
    """
    Compare aspect ratio, size, orientation and corner shape.

    Returns:
        Similarity in (0, 1].
    """
    ratio_diff = a.aspect_ratio - b.aspect_ratio
    ratio_sim = math.exp(-(ratio_diff ** 2) / policy.ratio_gaussian_width)

    (wa, ha), (wb, hb) = a.dimensions, b.dimensions
    area_sim = math.exp(-abs(math.log(wa * ha) - math.log(wb * hb)) / policy.area_log_divisor)
    dimension_sim = math.sqrt((min(wa, wb) / max(wa, wb) + min(ha, hb) / max(ha, hb)) / 2)
    orientation = (1.0 if _is_landscape(a.dimensions) == _is_landscape(b.dimensions)
                   else policy.mismatched_orientation)
    corner_sim = corner_agreement(a, b)

    size_sim = (area_sim * policy.size_area_weight
                + dimension_sim * policy.size_dimension_weight
                + orientation * policy.size_orientation_weight
                + corner_sim * policy.size_corner_weight)

    return (ratio_sim * policy.ratio_blend + size_sim * policy.size_blend) ** policy.shape_exponent


def blend_mode(weights: SimilarityWeights, policy: ScoringPolicy = DEFAULT_POLICY) -> str:
    """Name of the blending branch these weights select."""
    if weights.color_weight >= policy.mode_threshold:
        return "color"
    if weights.shape_weight >= policy.mode_threshold:
        return "shape"
    return "balanced"


def score(a: FeatureRecord, b: FeatureRecord,
          weights: Optional[SimilarityWeights] = None,
          policy: ScoringPolicy = DEFAULT_POLICY) -> SimilarityScore:
    """
    Compute the composite similarity between two feature records.

    Identical dimensions plus a bit-identical histogram short-circuit to
    a perfect score.

    Args:
        a: First feature record.
        b: Second feature record.
        weights: Color/shape weights (defaults to SimilarityWeights()).
        policy: Scoring constants.

    Returns:
        SimilarityScore with total, color and shape components.
    """
    weights = weights or SimilarityWeights()

    if tuple(a.dimensions) == tuple(b.dimensions) and a.histogram == b.histogram:
        return SimilarityScore(total=1.0, color=1.0, shape=1.0)

    color = color_similarity(a.histogram, b.histogram, policy)
    shape = shape_similarity(a, b, policy)

    mode = blend_mode(weights, policy)
    if mode == "color":
        color_exp, shape_exp = policy.color_mode_exponents
    elif mode == "shape":
        color_exp, shape_exp = policy.shape_mode_exponents
    else:
        color_exp, shape_exp = policy.balanced_exponents

    total = (weights.color_weight * color ** color_exp
             + weights.shape_weight * shape ** shape_exp)
    total = total ** policy.final_exponent

    logger.debug(
        f"Similarity: mode={mode} color_w={weights.color_weight:.2f} "
        f"shape_w={weights.shape_weight:.2f} color={color:.4f} "
        f"shape={shape:.4f} total={total:.4f}"
    )

    return SimilarityScore(total=total, color=color, shape=shape)


def rank_results(results: List[RankedResult]) -> List[RankedResult]:
    """
    Sort results by total similarity (descending), then path (ascending).

    Args:
        results: Unordered query hits.

    Returns:
        New sorted list.
    """
    return sorted(results, key=lambda r: (-r.score.total, r.path))
