"""Pydantic models for feature records, cache rows, and query results."""

from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class CornerFeatures(BaseModel):
    """Per-corner "rounded" flags.

    A flag is True when the 16x16 sample at that corner of the resized
    image has high color variance, i.e. the corner is not flat background.
    """

    top_left: bool = False
    top_right: bool = False
    bottom_left: bool = False
    bottom_right: bool = False

    def flags(self) -> Tuple[bool, bool, bool, bool]:
        return (self.top_left, self.top_right, self.bottom_left, self.bottom_right)


class FeatureRecord(BaseModel):
    """Fixed-size visual fingerprint of one image.

    Attributes:
        dimensions: Original (pre-resize) width and height in pixels.
        aspect_ratio: Original width / height.
        histogram: 768 bins; [0:256] red, [256:512] green, [512:768] blue.
            Each channel slice sums to 1.0.
        dominant_color: Mean (R, G, B) over the resized sample.
        corner_features: Corner rounding flags.
    """

    dimensions: Tuple[int, int]
    aspect_ratio: float = Field(gt=0.0)
    histogram: List[float] = Field(min_length=768, max_length=768)
    dominant_color: Tuple[int, int, int]
    corner_features: CornerFeatures = Field(default_factory=CornerFeatures)


class CacheEntry(BaseModel):
    """One persisted row of the feature cache.

    ``size_label`` and ``dimensions_label`` are display strings derived
    once at extraction time. On disk they are stored as ``size`` and
    ``dimensions``; ``last_modified`` is stored as ``lastModified``.
    """

    model_config = ConfigDict(populate_by_name=True)

    path: str
    size_label: str = Field(alias="size")
    dimensions_label: str = Field(alias="dimensions")
    features: FeatureRecord
    last_modified: int = Field(alias="lastModified")


class CacheFile(BaseModel):
    """On-disk cache for one directory root."""

    version: str
    timestamp: int
    files: Dict[str, CacheEntry] = Field(default_factory=dict)


class SimilarityWeights(BaseModel):
    """Blend weights for color and shape similarity.

    The weights do not have to sum to 1. Which one reaches the mode
    threshold (0.7) selects the blending branch of the scorer. The
    defaults match the original desktop tool (color-leaning).
    """

    model_config = ConfigDict(frozen=True)

    color_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    shape_weight: float = Field(default=0.3, ge=0.0, le=1.0)


WEIGHT_PRESETS: Dict[str, SimilarityWeights] = {
    "color": SimilarityWeights(color_weight=0.8, shape_weight=0.2),
    "balanced": SimilarityWeights(color_weight=0.5, shape_weight=0.5),
    "shape": SimilarityWeights(color_weight=0.2, shape_weight=0.8),
}


class SimilarityScore(BaseModel):
    """Composite similarity between two feature records.

    ``color`` and ``shape`` are in [0, 1]. ``total`` can overshoot 1.0
    slightly when the weights sum above 1; callers clamp if needed.
    """

    total: float
    color: float
    shape: float


class RankedResult(BaseModel):
    """One query hit, with the display labels copied from its cache entry."""

    path: str
    score: SimilarityScore
    size_label: str
    dimensions_label: str

    @property
    def similarity(self) -> float:
        return self.score.total


class ProgressEvent(BaseModel):
    """One event on the build progress channel.

    ``start`` carries ``total``; ``progress`` carries ``current``,
    ``total`` and ``file``; ``error`` carries ``file`` and ``error``;
    ``complete`` carries ``total``.
    """

    type: Literal["start", "progress", "error", "complete"]
    total: Optional[int] = None
    current: Optional[int] = None
    file: Optional[str] = None
    error: Optional[str] = None
