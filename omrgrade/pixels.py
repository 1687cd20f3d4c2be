"""
Pixel buffers and darkness sampling.
"""

import logging
from pathlib import Path
from typing import Tuple

import cv2
import numpy as np

from omrgrade.errors import InvalidPixelBuffer

logger = logging.getLogger(__name__)


class PixelBuffer:
    """Read-only RGB(A) image, row-major with the origin at the top-left"""

    def __init__(self, data: np.ndarray):
        if data.ndim == 2:
            data = np.repeat(data[:, :, np.newaxis], 3, axis=2)
        if data.ndim != 3 or data.shape[2] not in (3, 4):
            raise InvalidPixelBuffer(f"Expected an HxWx3 or HxWx4 array, got shape {data.shape}")
        if data.shape[0] == 0 or data.shape[1] == 0:
            raise InvalidPixelBuffer(f"Image has zero size: {data.shape[1]}x{data.shape[0]}")
        if data.dtype != np.uint8:
            raise InvalidPixelBuffer(f"Expected 8-bit samples, got {data.dtype}")

        self._data = np.array(data, dtype=np.uint8, order='C', copy=True)
        self._data.setflags(write=False)
        self._darkness = None

    @classmethod
    def from_array(cls, data: np.ndarray) -> "PixelBuffer":
        return cls(np.asarray(data))

    @property
    def width(self) -> int:
        return self._data.shape[1]

    @property
    def height(self) -> int:
        return self._data.shape[0]

    def contains(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def rgb(self, x: int, y: int) -> Tuple[int, int, int]:
        if not self.contains(x, y):
            raise IndexError(f"Pixel ({x}, {y}) outside {self.width}x{self.height} image")
        r, g, b = self._data[y, x, :3]
        return int(r), int(g), int(b)

    def darkness_map(self) -> np.ndarray:
        """Darkness of every pixel as float64, computed once"""
        if self._darkness is None:
            rgb_sum = self._data[:, :, :3].astype(np.int32).sum(axis=2)
            self._darkness = 255.0 - rgb_sum / 3.0
            self._darkness.setflags(write=False)
        return self._darkness


def darkness(r: int, g: int, b: int) -> float:
    """Inverse brightness of one pixel: 255 - mean(r, g, b)"""
    return 255 - (r + g + b) / 3


def sample(buffer: PixelBuffer, x: int, y: int) -> float:
    """Darkness at (x, y); the caller keeps coordinates in bounds"""
    return darkness(*buffer.rgb(x, y))


def load_image(path: Path) -> PixelBuffer:
    """Decode an image file into an RGB(A) pixel buffer"""
    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise InvalidPixelBuffer(f"Could not load image: {path}")

    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2RGB)
    elif img.shape[2] == 4:
        img = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    else:
        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)

    if img.dtype != np.uint8:
        # 16-bit PNGs
        img = (img // 257).astype(np.uint8)

    logger.debug(f"Loaded {path}: {img.shape[1]}x{img.shape[0]}")
    return PixelBuffer(img)
