"""
Unit tests for height mapping.
"""

import sys
from pathlib import Path
import numpy as np
import unittest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from photo_slicer.heightmap import (
    HeightMapper,
    HeightMode,
    Sampling,
    build_extended_palette,
    quantize_to_layers,
    sample_buffer,
)
from photo_slicer.ingestion import PixelBuffer
from photo_slicer.layers import LayerStack


def black_white_stack(tds=(1.5, 1.5)):
    return LayerStack.from_colors(["#000000", "#ffffff"], [0.5, 1.0], list(tds))


class TestExtendedPalette(unittest.TestCase):
    """Tests for the interpolated lookup palette."""

    def test_size_and_order(self):
        """Test layer colors come first, then the blends."""
        palette = build_extended_palette(black_white_stack(), steps=5)
        assert len(palette.colors) == 2 + 5
        np.testing.assert_array_equal(palette.colors[0], [0, 0, 0])
        np.testing.assert_array_equal(palette.colors[1], [255, 255, 255])
        np.testing.assert_allclose(palette.fractions[:2], [0.5, 1.0])

    def test_equal_td_blend(self):
        """Test equal TDs halve the blend ratio."""
        palette = build_extended_palette(black_white_stack(), steps=1)
        # ratio 1/2, td ratio 1/2 -> blend 1/4 of white
        np.testing.assert_array_equal(palette.colors[2], [64, 64, 64])
        assert abs(palette.fractions[2] - 0.75) < 1e-12

    def test_zero_td_does_not_divide_by_zero(self):
        """Test clamped TDs still give finite colors."""
        stack = LayerStack.from_colors(["#000000", "#ffffff"], tds=[0.0, 0.0])
        palette = build_extended_palette(stack, steps=3)
        assert np.all(np.isfinite(palette.colors))

    def test_fractions_between_neighbors(self):
        """Test interpolated fractions stay within their pair."""
        stack = LayerStack.from_colors(["#000000", "#808080", "#ffffff"], [0.2, 0.6, 1.0])
        palette = build_extended_palette(stack, steps=4)
        blends = palette.fractions[3:]
        assert np.all(blends[:4] > 0.2) and np.all(blends[:4] < 0.6)
        assert np.all(blends[4:] > 0.6) and np.all(blends[4:] < 1.0)


class TestHeightMapper(unittest.TestCase):
    """Tests for the color-to-height function."""

    def test_luminance(self):
        """Test luminance mode uses the channel mean."""
        mapper = HeightMapper(mode=HeightMode.LUMINANCE, model_max_height=2.0)
        heights = mapper.heights_for_colors(np.array([[0, 0, 0], [255, 255, 255], [255, 0, 0]]))
        np.testing.assert_allclose(heights, [0.0, 2.0, 2.0 / 3.0])

    def test_palette_distance(self):
        """Test palette mode snaps to the nearest palette fraction."""
        mapper = HeightMapper(black_white_stack(), HeightMode.PALETTE_DISTANCE, model_max_height=2.0)
        heights = mapper.heights_for_colors(np.array([[0, 0, 0], [255, 255, 255]]))
        np.testing.assert_allclose(heights, [1.0, 2.0])

    def test_palette_mode_requires_stack(self):
        """Test palette mode without layers."""
        with self.assertRaises(ValueError):
            HeightMapper(mode=HeightMode.PALETTE_DISTANCE)

    def test_stepped(self):
        """Test stepped heights are whole layer multiples."""
        mapper = HeightMapper(model_max_height=2.0, layer_height=0.08, stepped=True)
        heights = mapper.heights_for_colors(np.array([[100, 100, 100], [255, 255, 255]]))
        np.testing.assert_allclose(heights / 0.08, np.round(heights / 0.08), atol=1e-9)
        assert heights[0] <= 100 / 255 * 2.0

    def test_quantize_exact_multiples(self):
        """Test exact multiples are not pushed down a layer."""
        np.testing.assert_allclose(quantize_to_layers(np.array([0.24, 0.25]), 0.08), [0.24, 0.24])

    def test_height_field_orientation(self):
        """Test row 0 of the height field is the bottom of the image."""
        image = np.zeros((4, 4, 3), dtype=np.uint8)
        image[0, :, :] = 255  # top row white
        mapper = HeightMapper(model_max_height=1.0)
        field = mapper.height_field(PixelBuffer(image), cols=4, rows=4)
        assert field.shape == (4, 4)
        np.testing.assert_allclose(field[-1], 1.0)
        np.testing.assert_allclose(field[0], 0.0)


class TestSampling(unittest.TestCase):
    """Tests for buffer sampling."""

    def test_corners(self):
        """Test (0, 0) is bottom-left and (1, 1) top-right."""
        image = np.zeros((2, 2, 3), dtype=np.uint8)
        image[1, 0] = (10, 10, 10)   # bottom-left
        image[0, 1] = (200, 200, 200)  # top-right
        buffer = PixelBuffer(image)
        rgb = sample_buffer(buffer, np.array([0.0, 1.0]), np.array([0.0, 1.0]), Sampling.NEAREST)
        np.testing.assert_allclose(rgb[:, 0], [10, 200])

    def test_bilinear_midpoint(self):
        """Test bilinear sampling interpolates."""
        image = np.zeros((1, 2, 3), dtype=np.uint8)
        image[0, 1] = (100, 100, 100)
        rgb = sample_buffer(PixelBuffer(image), np.array([0.5]), np.array([0.5]), Sampling.BILINEAR)
        np.testing.assert_allclose(rgb[0], [50, 50, 50])


if __name__ == "__main__":
    unittest.main(verbosity=2)
