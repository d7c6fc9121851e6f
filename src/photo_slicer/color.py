"""
Color Utilities Module

Handles:
- Hex <-> RGB conversion for the layer wire format
- Vectorized RGB -> HSL conversion for palette analysis
- The weighted RGB/HSL perceptual distance used to cluster photo colors
- Nearest-palette lookup (Numba JIT, the per-vertex hot loop of the
  palette-distance height mode)

Color Space Background:
- Pixel data is 8-bit sRGB; no linearization is applied because all
  comparisons are relative and filament colors are specified in sRGB
- HSL components are normalized to [0, 1]; hue is circular
"""

import re
from typing import NamedTuple, Tuple
import numpy as np
from numba import njit, prange


_HEX_PATTERN = re.compile(r"^#?([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})$", re.IGNORECASE)


def hex_to_rgb(value: str) -> Tuple[int, int, int]:
    """
    Parse a "#RRGGBB" (or "RRGGBB") color string.

    Raises:
        ValueError: If the string is not a 6-digit hex color
    """
    match = _HEX_PATTERN.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid hex color: {value!r}")
    return tuple(int(part, 16) for part in match.groups())


def rgb_to_hex(r: float, g: float, b: float) -> str:
    """Format an RGB triple as lowercase "#rrggbb", rounding and clamping."""
    parts = [min(255, max(0, int(round(c)))) for c in (r, g, b)]
    return "#" + "".join(f"{c:02x}" for c in parts)


def rgb_to_hsl(colors: np.ndarray) -> np.ndarray:
    """
    Convert RGB colors to HSL.

    Args:
        colors: Array of shape (N, 3) with RGB values in [0, 255]

    Returns:
        float64 array of shape (N, 3) with (hue, saturation, lightness) in [0, 1]
    """
    rgb = np.asarray(colors, dtype=np.float64).reshape(-1, 3) / 255.0
    r, g, b = rgb[:, 0], rgb[:, 1], rgb[:, 2]

    c_max = rgb.max(axis=1)
    c_min = rgb.min(axis=1)
    delta = c_max - c_min
    lightness = (c_max + c_min) / 2.0

    chromatic = delta > 0
    safe_delta = np.where(chromatic, delta, 1.0)

    saturation = np.zeros_like(lightness)
    denom = 1.0 - np.abs(2.0 * lightness - 1.0)
    np.divide(delta, denom, out=saturation, where=chromatic & (denom > 0))

    # Hue sextant depends on which channel is the maximum
    hue = np.where(
        c_max == r,
        (g - b) / safe_delta + np.where(g < b, 6.0, 0.0),
        np.where(
            c_max == g,
            (b - r) / safe_delta + 2.0,
            (r - g) / safe_delta + 4.0,
        ),
    ) / 6.0
    hue = np.where(chromatic, hue, 0.0)

    return np.column_stack([hue, saturation, lightness])


def luminance(colors: np.ndarray) -> np.ndarray:
    """
    Perceived brightness (BT.601 weights) of RGB colors.

    Args:
        colors: Array of shape (..., 3) with values in [0, 255]

    Returns:
        Luminance in [0, 255]
    """
    colors = np.asarray(colors, dtype=np.float64)
    return 0.299 * colors[..., 0] + 0.587 * colors[..., 1] + 0.114 * colors[..., 2]


def brightness_transmissivity(value: float) -> float:
    """
    Heuristic transmission distance for a filament of the given brightness.

    Darker filaments let less light through, so color transitions above
    them look sharper.

    Args:
        value: Brightness normalized to [0, 1]
    """
    if value < 0.25:
        return 0.6
    if value < 0.5:
        return 1.4
    if value < 0.75:
        return 2.8
    return 5.0


class DistanceWeights(NamedTuple):
    """Weights of the combined RGB/HSL color distance."""
    rgb: float = 0.3
    hsl: float = 0.7
    hue: float = 15.0
    saturation: float = 5.0
    lightness: float = 4.0


def color_distance_matrix(
    rgb_a: np.ndarray,
    hsl_a: np.ndarray,
    rgb_b: np.ndarray,
    hsl_b: np.ndarray,
    weights: DistanceWeights = DistanceWeights()
) -> np.ndarray:
    """
    Pairwise perceptual distance between two sets of colors.

    distance = w_rgb * |drgb / 255| + w_hsl * sqrt(
        w_hue * dhue^2 * max_sat + w_sat * dsat^2 + w_light * dlight^2)

    Hue difference is circular, and it is scaled by the larger saturation so
    that hue shifts between near-grays barely count.

    Args:
        rgb_a, hsl_a: (N, 3) RGB [0, 255] and HSL [0, 1] of the first set
        rgb_b, hsl_b: (M, 3) RGB and HSL of the second set
        weights: Distance weights

    Returns:
        (N, M) float64 distance matrix
    """
    rgb_a = np.asarray(rgb_a, dtype=np.float64).reshape(-1, 1, 3)
    rgb_b = np.asarray(rgb_b, dtype=np.float64).reshape(1, -1, 3)
    hsl_a = np.asarray(hsl_a, dtype=np.float64).reshape(-1, 1, 3)
    hsl_b = np.asarray(hsl_b, dtype=np.float64).reshape(1, -1, 3)

    rgb_dist = np.sqrt(np.sum(((rgb_a - rgb_b) / 255.0) ** 2, axis=2))

    hue_diff = np.abs(hsl_a[..., 0] - hsl_b[..., 0])
    hue_diff = np.minimum(hue_diff, 1.0 - hue_diff)
    sat_diff = np.abs(hsl_a[..., 1] - hsl_b[..., 1])
    light_diff = np.abs(hsl_a[..., 2] - hsl_b[..., 2])
    max_sat = np.maximum(hsl_a[..., 1], hsl_b[..., 1])

    hsl_dist = np.sqrt(
        hue_diff ** 2 * weights.hue * max_sat
        + sat_diff ** 2 * weights.saturation
        + light_diff ** 2 * weights.lightness
    )

    return rgb_dist * weights.rgb + hsl_dist * weights.hsl


@njit(cache=True, parallel=True)
def _nearest_palette_indices(colors: np.ndarray, palette: np.ndarray) -> np.ndarray:
    """
    Index of the nearest palette entry (Euclidean RGB) for every color.

    Ties resolve to the lowest palette index.

    Args:
        colors: float64 array of shape (N, 3)
        palette: float64 array of shape (M, 3)

    Returns:
        int64 array of shape (N,)
    """
    n = colors.shape[0]
    m = palette.shape[0]
    result = np.empty(n, dtype=np.int64)

    for i in prange(n):
        best = 0
        best_dist = np.inf
        for j in range(m):
            dist = 0.0
            for c in range(3):
                diff = colors[i, c] - palette[j, c]
                dist += diff * diff
            if dist < best_dist:
                best_dist = dist
                best = j
        result[i] = best

    return result


def nearest_palette_index(colors: np.ndarray, palette: np.ndarray) -> np.ndarray:
    """
    Find the nearest palette color for each input color.

    Args:
        colors: Array of shape (N, 3) (or (..., 3)) with RGB values
        palette: Array of shape (M, 3) with RGB values, M >= 1

    Returns:
        int64 index array with the leading shape of `colors`
    """
    colors = np.asarray(colors, dtype=np.float64)
    lead_shape = colors.shape[:-1]
    flat = np.ascontiguousarray(colors.reshape(-1, 3))
    palette = np.ascontiguousarray(np.asarray(palette, dtype=np.float64).reshape(-1, 3))

    if palette.shape[0] == 0:
        raise ValueError("Palette must contain at least one color")

    return _nearest_palette_indices(flat, palette).reshape(lead_shape)
