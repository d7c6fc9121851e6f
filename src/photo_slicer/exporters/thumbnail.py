"""
Thumbnail Preparation

Slicer 3MF dialects embed PNG previews. Any image-like input is fitted into
a square canvas (aspect ratio kept, transparent margins); when no thumbnail
is available a gray grid placeholder is generated instead.
"""

import io
import logging
from typing import Optional, Union
import numpy as np
from PIL import Image, ImageDraw

from ..ingestion import PixelBuffer


logger = logging.getLogger(__name__)

ThumbnailSource = Union[Image.Image, np.ndarray, PixelBuffer, None]


def to_image(source: ThumbnailSource) -> Optional[Image.Image]:
    """Convert a thumbnail source to an RGBA PIL image (None stays None)."""
    if source is None:
        return None
    if isinstance(source, PixelBuffer):
        return source.to_image()
    if isinstance(source, np.ndarray):
        return Image.fromarray(source.astype(np.uint8)).convert("RGBA")
    if isinstance(source, Image.Image):
        return source.convert("RGBA")
    raise TypeError(f"Unsupported thumbnail type: {type(source).__name__}")


def fit_square(image: Image.Image, size: int) -> Image.Image:
    """Scale an image into a size x size transparent canvas, centered."""
    scale = min(size / image.width, size / image.height)
    new_size = (max(1, int(round(image.width * scale))), max(1, int(round(image.height * scale))))
    resized = image.resize(new_size, Image.Resampling.LANCZOS)

    canvas = Image.new("RGBA", (size, size), (255, 255, 255, 0))
    offset = ((size - new_size[0]) // 2, (size - new_size[1]) // 2)
    canvas.paste(resized, offset, resized)
    return canvas


def placeholder_thumbnail(size: int) -> Image.Image:
    """Gray image with a light grid."""
    image = Image.new("RGBA", (size, size), (128, 128, 128, 255))
    draw = ImageDraw.Draw(image)
    step = max(1, size // 8)
    for i in range(0, size, step):
        draw.line([(i, 0), (i, size)], fill=(100, 100, 100, 255), width=1)
        draw.line([(0, i), (size, i)], fill=(100, 100, 100, 255), width=1)
    return image


def prepare_thumbnail(source: ThumbnailSource, size: int, context: str = "export") -> Image.Image:
    """
    Square thumbnail for a slicer container.

    Args:
        source: Image, array, pixel buffer or None
        size: Edge length in pixels
        context: Name used in the warning when falling back to a placeholder
    """
    image = to_image(source)
    if image is None:
        logger.warning("No thumbnail supplied for %s; using a placeholder image", context)
        return placeholder_thumbnail(size)
    return fit_square(image, size)


def png_bytes(image: Image.Image) -> bytes:
    """Encode an image as PNG."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
