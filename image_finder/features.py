"""
Feature extraction: per-channel RGB histogram, dominant color, aspect
ratio and corner rounding flags.

Every image is stretched to a 128x128 analysis sample before extraction,
so histograms are comparable regardless of source resolution. The
original width/height are kept separately for the shape signals.

The histogram is 768-dimensional:
    [0:256]    red intensity counts
    [256:512]  green intensity counts
    [512:768]  blue intensity counts
Each channel is normalized by its own pixel count and sums to 1.0.

Corner flags look at the four 16x16 squares at the corners of the
sample. A corner whose pixels sit far from their mean color (mean
Euclidean distance above 20 on the 0-255 scale) is treated as
"rounded". This is typical for icons with transparent or decorated corners,
as opposed to a flat rectangular background.

These values are baked into every cached record; changing them requires
bumping the cache format version.
"""

import logging
from typing import Optional

import numpy as np

from .decoder import DecodedImage, ImageDecoder
from .errors import DecodeError
from .models import CornerFeatures, FeatureRecord

logger = logging.getLogger(__name__)

ANALYSIS_SIZE = 128
CORNER_SIZE = 16
CORNER_VARIANCE_THRESHOLD = 20.0

HIST_BINS = 256
HIST_DIM = HIST_BINS * 3


def compute_histogram(pixels: np.ndarray) -> np.ndarray:
    """
    Compute the 768-bin per-channel histogram of an RGB sample.

    Args:
        pixels: RGB uint8 array of shape (H, W, 3).

    Returns:
        Float64 vector; each 256-bin channel slice sums to 1.0.
    """
    flat = pixels.reshape(-1, 3)
    count = flat.shape[0]
    if count == 0:
        raise ValueError("Cannot compute histogram of an empty image")

    channels = [
        np.bincount(flat[:, c], minlength=HIST_BINS).astype(np.float64) / count
        for c in range(3)
    ]
    return np.concatenate(channels)


def compute_dominant_color(pixels: np.ndarray) -> tuple:
    """Mean R, G, B over the sample, rounded to the nearest integer."""
    means = pixels.reshape(-1, 3).mean(axis=0)
    r, g, b = (int(round(float(m))) for m in means)
    return r, g, b


def corner_is_rounded(sample: np.ndarray,
                      threshold: float = CORNER_VARIANCE_THRESHOLD) -> bool:
    """
    Decide whether one corner sample has high color variance.

    Uses the mean Euclidean distance of each pixel to the sample's mean
    color. Empty samples are never flagged.
    """
    flat = sample.reshape(-1, 3).astype(np.float64)
    if flat.shape[0] == 0:
        return False
    mean_color = flat.mean(axis=0)
    distances = np.sqrt(((flat - mean_color) ** 2).sum(axis=1))
    return bool(distances.mean() > threshold)


def compute_corner_features(pixels: np.ndarray,
                            corner_size: int = CORNER_SIZE) -> CornerFeatures:
    """Flag each of the four corner squares of the sample."""
    h, w = pixels.shape[:2]
    c = min(corner_size, h, w)
    return CornerFeatures(
        top_left=corner_is_rounded(pixels[:c, :c]),
        top_right=corner_is_rounded(pixels[:c, w - c:]),
        bottom_left=corner_is_rounded(pixels[h - c:, :c]),
        bottom_right=corner_is_rounded(pixels[h - c:, w - c:]),
    )


def extract_features(decoded: DecodedImage) -> FeatureRecord:
    """
    Build a FeatureRecord from a decoded analysis sample.

    Args:
        decoded: Output of ImageDecoder.load() at ANALYSIS_SIZE.

    Returns:
        FeatureRecord with histogram, dominant color, aspect ratio and
        corner flags.

    Raises:
        DecodeError: If the decoded buffer is empty or has no size.
    """
    pixels = decoded.pixels
    if decoded.width <= 0 or decoded.height <= 0 or pixels.size == 0:
        raise DecodeError("Decoded image is empty")
    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise DecodeError(f"Expected an RGB buffer, got shape {pixels.shape}")

    histogram = compute_histogram(pixels)

    return FeatureRecord(
        dimensions=(decoded.width, decoded.height),
        aspect_ratio=decoded.width / decoded.height,
        histogram=histogram.tolist(),
        dominant_color=compute_dominant_color(pixels),
        corner_features=compute_corner_features(pixels),
    )


def extract_file_features(path: str,
                          decoder: Optional[ImageDecoder] = None) -> FeatureRecord:
    """Decode an image file and extract its features in one step."""
    decoder = decoder or ImageDecoder()
    decoded = decoder.load(path, ANALYSIS_SIZE)
    try:
        return extract_features(decoded)
    except DecodeError as e:
        raise DecodeError(f"{e} ({path})", path) from e
