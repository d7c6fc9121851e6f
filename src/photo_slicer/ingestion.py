"""
Image Ingestion Module

This module handles:
- The immutable RGBA pixel buffer consumed by the whole pipeline
- Loading photos from disk (any format Pillow can decode)
- Optional downscaling of very large photos before palette analysis
"""

import logging
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union
import numpy as np
from PIL import Image

from .config import OPACITY_THRESHOLD


logger = logging.getLogger(__name__)


class PixelBuffer:
    """
    Read-only RGBA8 image, row-major, row 0 at the top.

    The underlying array is flagged non-writeable so the buffer can be
    shared between pipeline stages without copying.
    """

    def __init__(self, rgba: np.ndarray, opacity_threshold: int = OPACITY_THRESHOLD):
        """
        Args:
            rgba: Array of shape (H, W, 4); RGB arrays of shape (H, W, 3)
                are accepted and treated as fully opaque
            opacity_threshold: Minimum alpha for a pixel to count as opaque
        """
        rgba = np.asarray(rgba)
        if rgba.ndim == 3 and rgba.shape[2] == 3:
            alpha = np.full(rgba.shape[:2] + (1,), 255, dtype=np.uint8)
            rgba = np.concatenate([rgba.astype(np.uint8), alpha], axis=2)
        if rgba.ndim != 3 or rgba.shape[2] != 4:
            raise ValueError(f"Pixel array must have shape (H, W, 4), got {rgba.shape}")
        if rgba.shape[0] == 0 or rgba.shape[1] == 0:
            raise ValueError("Pixel array must not be empty")

        data = np.array(rgba, dtype=np.uint8, copy=True)
        data.flags.writeable = False
        self._data = data
        self.opacity_threshold = opacity_threshold

    @property
    def rgba(self) -> np.ndarray:
        """The (H, W, 4) uint8 sample array (read-only)."""
        return self._data

    @property
    def rgb(self) -> np.ndarray:
        """The (H, W, 3) color channels."""
        return self._data[:, :, :3]

    @property
    def width(self) -> int:
        return self._data.shape[1]

    @property
    def height(self) -> int:
        return self._data.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        """Image size as (width, height)."""
        return self.width, self.height

    def opaque_mask(self) -> np.ndarray:
        """Boolean (H, W) mask of pixels with alpha >= the opacity threshold."""
        return self._data[:, :, 3] >= self.opacity_threshold

    def opaque_count(self) -> int:
        return int(np.count_nonzero(self.opaque_mask()))

    def iter_row_chunks(self, chunk_rows: int = 256) -> Iterator[np.ndarray]:
        """
        Yield consecutive row bands of the RGBA array.

        Used for map-reduce style histogram accumulation over large photos.
        """
        chunk_rows = max(1, int(chunk_rows))
        for start in range(0, self.height, chunk_rows):
            yield self._data[start:start + chunk_rows]

    def to_image(self) -> Image.Image:
        """Convert back to a PIL image (used for thumbnails)."""
        return Image.fromarray(np.ascontiguousarray(self._data))

    def __repr__(self) -> str:
        return f"PixelBuffer({self.width}x{self.height})"


class ImageLoader:
    """
    Photo loader producing PixelBuffers.

    Key features:
    - Any Pillow-readable format, converted to RGBA
    - Optional downscaling so the longest side stays under a limit
    """

    def __init__(
        self,
        opacity_threshold: int = OPACITY_THRESHOLD,
        max_dimension: Optional[int] = None
    ):
        """
        Initialize the image loader.

        Args:
            opacity_threshold: Alpha at or above which a pixel counts as opaque
            max_dimension: If set, photos whose longest side exceeds it are
                downscaled (aspect ratio preserved, Lanczos filter)
        """
        self.opacity_threshold = opacity_threshold
        self.max_dimension = max_dimension

    def load(self, image_path: Union[str, Path]) -> PixelBuffer:
        """
        Load a photo from disk.

        Args:
            image_path: Path to the image file

        Returns:
            PixelBuffer with the decoded pixels
        """
        image_path = Path(image_path)
        if not image_path.exists():
            raise FileNotFoundError(f"Image not found: {image_path}")

        with Image.open(image_path) as img:
            if img.mode != "RGBA":
                img = img.convert("RGBA")
            img = self._limit_size(img)
            pixels = np.array(img, dtype=np.uint8)

        logger.debug("Loaded %s (%dx%d)", image_path.name, pixels.shape[1], pixels.shape[0])
        return PixelBuffer(pixels, self.opacity_threshold)

    def load_from_array(self, array: np.ndarray) -> PixelBuffer:
        """
        Wrap an in-memory RGB or RGBA array.

        Args:
            array: Array of shape (H, W, 3) or (H, W, 4)

        Returns:
            PixelBuffer with a private copy of the pixels
        """
        array = np.asarray(array)
        if self.max_dimension is not None and max(array.shape[:2]) > self.max_dimension:
            img = Image.fromarray(array.astype(np.uint8))
            array = np.array(self._limit_size(img.convert("RGBA")), dtype=np.uint8)
        return PixelBuffer(array, self.opacity_threshold)

    def load_from_image(self, img: Image.Image) -> PixelBuffer:
        """Wrap an already decoded PIL image."""
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        img = self._limit_size(img)
        return PixelBuffer(np.array(img, dtype=np.uint8), self.opacity_threshold)

    def _limit_size(self, img: Image.Image) -> Image.Image:
        if self.max_dimension is None:
            return img
        width, height = img.size
        longest = max(width, height)
        if longest <= self.max_dimension:
            return img

        scale = self.max_dimension / longest
        new_size = (max(1, int(round(width * scale))), max(1, int(round(height * scale))))
        logger.debug("Downscaling image from %s to %s", img.size, new_size)
        return img.resize(new_size, Image.Resampling.LANCZOS)
