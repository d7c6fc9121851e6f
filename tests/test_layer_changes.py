"""
Unit tests for print settings and the layer-change calculator.
"""

import sys
from pathlib import Path
import unittest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from photo_slicer.config import ExportTarget, PrintSettings, total_layer_count
from photo_slicer.layer_changes import LayerChangeCalculator
from photo_slicer.layers import LayerStack


class TestPrintSettings(unittest.TestCase):
    """Tests for physical parameters."""

    def test_first_layer_default(self):
        """Test the first layer defaults to twice the layer height."""
        assert PrintSettings(layer_height=0.08).first_layer_height == 0.16
        assert PrintSettings(layer_height=0.12).first_layer_height == 0.24

    def test_total_layers(self):
        """Test the total layer count formula."""
        assert total_layer_count(2.08, 0.08, 0.16) == 25
        assert total_layer_count(0.1, 0.08, 0.16) == 1

    def test_settings_total(self):
        """Test derived values on the dataclass."""
        settings = PrintSettings(layer_height=0.08, base_thickness=0.08, model_max_height=2.0)
        assert abs(settings.total_height - 2.08) < 1e-12
        assert settings.total_layer_count == 25
        assert settings.base_layer_count == 1

    def test_validation(self):
        """Test invalid parameters."""
        with self.assertRaises(ValueError):
            PrintSettings(layer_height=0)
        with self.assertRaises(ValueError):
            PrintSettings(base_thickness=-1)
        with self.assertRaises(ValueError):
            PrintSettings(resolution=0)

    def test_target_suffixes(self):
        """Test export suffixes."""
        assert ExportTarget.STL.suffix == ".stl"
        assert ExportTarget.PRUSA_3MF.suffix == ".prusa.3mf"
        assert ExportTarget.BAMBU_3MF.needs_thumbnail
        assert not ExportTarget.GENERIC_3MF.needs_thumbnail


class TestLayerChangeCalculator(unittest.TestCase):
    """Tests for tool change scheduling."""

    def setUp(self):
        self.calculator = LayerChangeCalculator(
            layer_height=0.08,
            first_layer_height=0.16,
            base_thickness=0.08,
            total_height=2.08,
        )

    def test_half_way_change(self):
        """Test a change at 50 % of 25 layers lands on layer 13 at 1.12 mm."""
        stack = LayerStack.from_colors(["#000000", "#808080", "#ffffff"], [0.25, 0.5, 1.0])
        events = self.calculator.events(stack)
        assert len(events) == 2
        assert events[0].layer_index == 13
        assert abs(events[0].z_mm - 1.12) < 1e-9
        assert events[0].color == (128, 128, 128)
        assert events[0].extruder == 2
        assert events[1].layer_index == 25
        assert abs(events[1].z_mm - 2.08) < 1e-9

    def test_round_half_up(self):
        """Test layer indices round half up."""
        assert self.calculator.layer_index(0.5) == 13      # 12.5 -> 13
        assert self.calculator.layer_index(0.49) == 12     # 12.25 -> 12

    def test_clamped(self):
        """Test indices stay within the printed layers."""
        assert self.calculator.layer_index(0.001) == 1
        assert self.calculator.layer_index(1.0) == 25

    def test_one_event_per_transition(self):
        """Test N layers give N - 1 ordered events."""
        stack = LayerStack.from_colors(["#000000", "#444444", "#888888", "#cccccc", "#ffffff"])
        events = self.calculator.events(stack)
        assert len(events) == 4
        assert [e.extruder for e in events] == [2, 3, 4, 5]
        z = [e.z_mm for e in events]
        assert z == sorted(z)
        assert events[0].hex == "#444444"

    def test_layer_ranges(self):
        """Test every layer is assigned to exactly one color."""
        stack = LayerStack.from_colors(["#000000", "#808080", "#ffffff"], [0.25, 0.5, 1.0])
        ranges = self.calculator.layer_ranges(stack)
        assert (ranges[0].first_layer, ranges[0].last_layer) == (1, 12)
        assert (ranges[1].first_layer, ranges[1].last_layer) == (13, 24)
        assert (ranges[2].first_layer, ranges[2].last_layer) == (25, 25)
        assert sum(r.layer_count for r in ranges) == 25

    def test_from_settings(self):
        """Test construction from print settings."""
        settings = PrintSettings(layer_height=0.08, base_thickness=0.08, model_max_height=2.0)
        calculator = LayerChangeCalculator.from_settings(settings)
        assert calculator.total_layers == 25

    def test_requires_height(self):
        """Test a total height or relief height is required."""
        with self.assertRaises(ValueError):
            LayerChangeCalculator(0.08, 0.16, 0.16)


if __name__ == "__main__":
    unittest.main(verbosity=2)
