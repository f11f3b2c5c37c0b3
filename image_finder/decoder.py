"""
Image decoding backed by OpenCV.

The rest of the engine only needs three capabilities from a decoder:
original pixel dimensions, a raw RGB buffer at a requested resolution
(alpha removed), and the raw file bytes. ImageDecoder provides them and
can be swapped for any object with the same methods (tests inject a
counting subclass).

Files are read with numpy and decoded with ``cv2.imdecode`` so that
non-ASCII paths work on every platform.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

from .errors import DecodeError

logger = logging.getLogger(__name__)

_GRAYSCALE_DIMS = 2
_BGRA_CHANNELS = 4


@dataclass
class DecodedImage:
    """A decoded image resampled for analysis.

    Attributes:
        width: Original width in pixels.
        height: Original height in pixels.
        pixels: RGB uint8 array of shape (size, size, 3).
    """

    width: int
    height: int
    pixels: np.ndarray


def to_rgb(image_np: np.ndarray) -> np.ndarray:
    """Convert an OpenCV image (gray, BGR or BGRA) to 3-channel RGB uint8."""
    if image_np.dtype != np.uint8:
        # 16-bit PNG/TIFF: scale down to 8 bits per channel
        if image_np.dtype == np.uint16:
            image_np = (image_np // 257).astype(np.uint8)
        else:
            image_np = image_np.astype(np.uint8)

    if image_np.ndim == _GRAYSCALE_DIMS:
        return cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)
    if image_np.shape[2] == _BGRA_CHANNELS:
        return cv2.cvtColor(image_np, cv2.COLOR_BGRA2RGB)
    if image_np.shape[2] == 1:
        return cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)
    return cv2.cvtColor(image_np, cv2.COLOR_BGR2RGB)


class ImageDecoder:
    """Decode image files into RGB pixel buffers."""

    def read_bytes(self, path: str) -> bytes:
        """Return the raw file contents.

        Raises:
            DecodeError: If the file cannot be read.
        """
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise DecodeError(f"Cannot read {path}: {e}", path) from e

    def _decode_rgb(self, path: str) -> np.ndarray:
        data = np.frombuffer(self.read_bytes(path), dtype=np.uint8)
        try:
            image = cv2.imdecode(data, cv2.IMREAD_UNCHANGED) if data.size else None
            if image is None:
                raise DecodeError(f"Cannot decode image: {path}", path)
            return to_rgb(image)
        except cv2.error as e:
            raise DecodeError(f"Cannot decode image {path}: {e}", path) from e

    def decode(self, path: str) -> Tuple[int, int]:
        """Return the original (width, height) of an image file."""
        image = self._decode_rgb(path)
        h, w = image.shape[:2]
        return w, h

    def decode_resized(self, path: str, width: int, height: int) -> np.ndarray:
        """Return an RGB uint8 buffer of shape (height, width, 3).

        The image is stretched to the target size; aspect ratio is not
        preserved.
        """
        return self._resize(self._decode_rgb(path), width, height)

    def load(self, path: str, size: int) -> DecodedImage:
        """Decode once and return both original dimensions and a square sample.

        Args:
            path: Image file path.
            size: Side length of the square analysis sample.

        Returns:
            DecodedImage with original dimensions and resized RGB pixels.

        Raises:
            DecodeError: If the file is unreadable or not a supported image.
        """
        image = self._decode_rgb(path)
        h, w = image.shape[:2]
        if w == 0 or h == 0:
            raise DecodeError(f"Image has zero size: {path}", path)
        return DecodedImage(width=w, height=h, pixels=self._resize(image, size, size))

    @staticmethod
    def _resize(image: np.ndarray, width: int, height: int) -> np.ndarray:
        h, w = image.shape[:2]
        if (w, h) == (width, height):
            return image
        interpolation = cv2.INTER_AREA if w > width or h > height else cv2.INTER_LINEAR
        try:
            return cv2.resize(image, (width, height), interpolation=interpolation)
        except cv2.error as e:
            raise DecodeError(f"Cannot resize {w}x{h} image: {e}") from e
