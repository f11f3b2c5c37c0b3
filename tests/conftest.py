"""Shared test fixtures for image-finder tests."""

import cv2
import numpy as np
import pytest

from image_finder.cache_store import CacheStore
from image_finder.decoder import DecodedImage, ImageDecoder
from image_finder.features import ANALYSIS_SIZE, extract_features

# BGR, as written by cv2.imwrite
RED = (0, 0, 255)
BLUE = (255, 0, 0)
GREEN = (0, 200, 0)


def solid_image(width, height, bgr):
    img = np.zeros((height, width, 3), dtype=np.uint8)
    img[:, :] = bgr
    return img


def write_png(path, img):
    path.parent.mkdir(parents=True, exist_ok=True)
    assert cv2.imwrite(str(path), img)
    return str(path)


def record_for(width, height, rgb, size=ANALYSIS_SIZE):
    """Feature record for a solid-colored image of the given original size."""
    pixels = np.zeros((size, size, 3), dtype=np.uint8)
    pixels[:, :] = rgb
    return extract_features(DecodedImage(width=width, height=height, pixels=pixels))


class CountingDecoder(ImageDecoder):
    """OpenCV decoder that counts full decodes."""

    def __init__(self):
        self.loads = 0

    def load(self, path, size):
        self.loads += 1
        return super().load(path, size)


@pytest.fixture
def decoder():
    return CountingDecoder()


@pytest.fixture
def cache_dir(tmp_path):
    return str(tmp_path / "cache")


@pytest.fixture
def image_root(tmp_path):
    """Directory with five small PNGs, two of them in a subdirectory."""
    root = tmp_path / "images"
    write_png(root / "red_100.png", solid_image(100, 100, RED))
    write_png(root / "red_50.png", solid_image(50, 50, RED))
    write_png(root / "blue_100.png", solid_image(100, 100, BLUE))
    write_png(root / "nested" / "green_wide.png", solid_image(120, 60, GREEN))
    write_png(root / "nested" / "red_tall.png", solid_image(40, 80, RED))
    return root


@pytest.fixture
def store(image_root, cache_dir):
    return CacheStore(str(image_root), cache_dir=cache_dir)


@pytest.fixture
def noise_pixels():
    """128x128 random RGB sample."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (ANALYSIS_SIZE, ANALYSIS_SIZE, 3), dtype=np.uint8)
