"""
Height Mapping Module

Converts image colors into relief heights (millimetres).

Modes:
- LUMINANCE: brightness proportional height, mean(R, G, B) / 255 * max height
- PALETTE_DISTANCE: each color takes the height of its nearest entry in an
  extended palette built from the layer stack (layer colors plus blended
  in-between samples)

Optional stepped quantization snaps heights down to whole print layers.
"""

from enum import Enum
import logging
from typing import NamedTuple, Optional
import numpy as np
from scipy import ndimage

from .color import nearest_palette_index
from .config import DEFAULT_LAYER_HEIGHT, DEFAULT_MODEL_MAX_HEIGHT, TD_EPSILON
from .ingestion import PixelBuffer
from .layers import LayerStack


logger = logging.getLogger(__name__)

DEFAULT_INTERPOLATION_STEPS = 5


class HeightMode(Enum):
    """Color-to-height strategies."""
    LUMINANCE = "luminance"
    PALETTE_DISTANCE = "palette_distance"


class Sampling(Enum):
    """Pixel buffer sampling filters."""
    NEAREST = "nearest"
    BILINEAR = "bilinear"


class ExtendedPalette(NamedTuple):
    """Lookup palette: (K, 3) float64 colors and matching (K,) height fractions."""
    colors: np.ndarray
    fractions: np.ndarray


def build_extended_palette(
    stack: LayerStack,
    steps: int = DEFAULT_INTERPOLATION_STEPS
) -> ExtendedPalette:
    """
    Extend a layer stack with blended colors between neighbors.

    The layer colors come first, followed by `steps` samples for every
    adjacent pair at ratios k / (steps + 1). The color blend ratio is scaled
    by TDa / (TDa + TDb), so a more translucent lower filament shows further
    into the gap; the height fraction is interpolated with the plain ratio.

    Args:
        stack: Layer stack
        steps: Interpolated samples per adjacent pair

    Returns:
        ExtendedPalette with len(stack) + steps * (len(stack) - 1) entries
    """
    colors = [np.asarray(layer.color, dtype=np.float64) for layer in stack]
    fractions = [layer.height_fraction for layer in stack]

    for lower, upper in zip(stack.layers[:-1], stack.layers[1:]):
        td_a = max(lower.td, TD_EPSILON)
        td_b = max(upper.td, TD_EPSILON)
        td_ratio = td_a / (td_a + td_b)
        color_a = np.asarray(lower.color, dtype=np.float64)
        color_b = np.asarray(upper.color, dtype=np.float64)

        for k in range(1, steps + 1):
            ratio = k / (steps + 1)
            blend = ratio * td_ratio
            colors.append(np.floor(color_a * (1.0 - blend) + color_b * blend + 0.5))
            fractions.append(
                lower.height_fraction + (upper.height_fraction - lower.height_fraction) * ratio
            )

    return ExtendedPalette(
        np.array(colors, dtype=np.float64),
        np.array(fractions, dtype=np.float64),
    )


def quantize_to_layers(heights: np.ndarray, layer_height: float) -> np.ndarray:
    """Snap heights down to whole multiples of the layer height."""
    steps = np.floor(np.asarray(heights, dtype=np.float64) / layer_height + 1e-9)
    return steps * layer_height


def sample_buffer(
    buffer: PixelBuffer,
    u: np.ndarray,
    v: np.ndarray,
    sampling: Sampling = Sampling.BILINEAR
) -> np.ndarray:
    """
    Sample RGB colors at normalized coordinates.

    u runs left to right, v bottom to top: (0, 0) is the bottom-left pixel
    and (1, 1) the top-right one.

    Returns:
        float64 array of shape u.shape + (3,)
    """
    u = np.asarray(u, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64)
    cols = np.clip(u, 0.0, 1.0) * (buffer.width - 1)
    rows = (1.0 - np.clip(v, 0.0, 1.0)) * (buffer.height - 1)
    coords = np.array([rows.ravel(), cols.ravel()])
    order = 0 if sampling == Sampling.NEAREST else 1

    rgb = buffer.rgb.astype(np.float64)
    channels = [
        ndimage.map_coordinates(rgb[:, :, c], coords, order=order, mode="nearest")
        for c in range(3)
    ]
    return np.stack(channels, axis=-1).reshape(u.shape + (3,))


class HeightMapper:
    """
    Stateless color-to-height function.

    Attributes:
        stack: Layer stack (required for PALETTE_DISTANCE)
        mode: Height mode
        model_max_height: Height of the top layer color (mm)
        layer_height: Print layer height used for stepping (mm)
        stepped: Snap heights to whole layers
        sampling: Filter used when sampling the pixel buffer
    """

    def __init__(
        self,
        stack: Optional[LayerStack] = None,
        mode: HeightMode = HeightMode.LUMINANCE,
        model_max_height: float = DEFAULT_MODEL_MAX_HEIGHT,
        layer_height: float = DEFAULT_LAYER_HEIGHT,
        stepped: bool = False,
        sampling: Sampling = Sampling.BILINEAR,
        interpolation_steps: int = DEFAULT_INTERPOLATION_STEPS
    ):
        if mode == HeightMode.PALETTE_DISTANCE and stack is None:
            raise ValueError("Palette-distance height mode needs a layer stack")
        if layer_height <= 0:
            raise ValueError(f"layer_height must be positive, got {layer_height}")

        self.stack = stack
        self.mode = mode
        self.model_max_height = model_max_height
        self.layer_height = layer_height
        self.stepped = stepped
        self.sampling = sampling
        self.interpolation_steps = interpolation_steps

        self._palette = (
            build_extended_palette(stack, interpolation_steps)
            if mode == HeightMode.PALETTE_DISTANCE else None
        )

    @property
    def extended_palette(self) -> Optional[ExtendedPalette]:
        return self._palette

    def heights_for_colors(self, rgb: np.ndarray) -> np.ndarray:
        """
        Map RGB colors to heights.

        Args:
            rgb: Array of shape (..., 3) with values in [0, 255]

        Returns:
            Heights in millimetres with the leading shape of `rgb`
        """
        rgb = np.asarray(rgb, dtype=np.float64)

        if self.mode == HeightMode.LUMINANCE:
            fraction = rgb.mean(axis=-1) / 255.0
        else:
            index = nearest_palette_index(rgb, self._palette.colors)
            fraction = self._palette.fractions[index]

        heights = fraction * self.model_max_height
        if self.stepped:
            heights = quantize_to_layers(heights, self.layer_height)
        return heights

    def heights_at(self, buffer: PixelBuffer, u: np.ndarray, v: np.ndarray) -> np.ndarray:
        """Sample the buffer at (u, v) and map the colors to heights."""
        return self.heights_for_colors(sample_buffer(buffer, u, v, self.sampling))

    def height_field(self, buffer: PixelBuffer, cols: int, rows: int) -> np.ndarray:
        """
        Heights on a regular cols x rows grid covering the whole image.

        Returns:
            (rows, cols) array; row 0 is the bottom edge (v = 0)
        """
        u = np.linspace(0.0, 1.0, cols) if cols > 1 else np.zeros(1)
        v = np.linspace(0.0, 1.0, rows) if rows > 1 else np.zeros(1)
        uu, vv = np.meshgrid(u, v)
        heights = self.heights_at(buffer, uu, vv)
        logger.debug(
            "Height field %dx%d (%s): %.3f-%.3f mm",
            cols, rows, self.mode.value, float(heights.min()), float(heights.max())
        )
        return heights
