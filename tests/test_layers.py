"""
Unit tests for layer specs, layer stacks and stack edits.
"""

import sys
import tempfile
from pathlib import Path
import numpy as np
import unittest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from photo_slicer.exceptions import LayerStackError, PhotoSlicerError
from photo_slicer.layers import LayerSpec, LayerStack


def four_colors():
    return LayerStack.from_colors(["#000000", "#555555", "#aaaaaa", "#ffffff"])


class TestLayerSpec(unittest.TestCase):
    """Tests for the wire form of a single layer."""

    def test_from_wire(self):
        """Test parsing the wire form."""
        spec = LayerSpec.from_wire({"color": "#FF0000", "heightPercentage": 40, "td": 2.5})
        assert spec.color == (255, 0, 0)
        assert abs(spec.height_fraction - 0.4) < 1e-12
        assert spec.td == 2.5

    def test_to_wire(self):
        """Test serializing to the wire form."""
        wire = LayerSpec((0, 128, 255), 0.25, 1.5).to_wire()
        assert wire == {"color": "#0080ff", "heightPercentage": 25.0, "td": 1.5}

    def test_missing_field(self):
        """Test missing fields are reported as stack errors."""
        with self.assertRaises(LayerStackError):
            LayerSpec.from_wire({"color": "#000000"})

    def test_bad_td(self):
        """Test a non-numeric TD is reported with the entry."""
        with self.assertRaises(LayerStackError) as ctx:
            LayerSpec.from_wire({"color": "#000000", "heightPercentage": 50, "td": "thick"})
        assert "thick" in str(ctx.exception)

    def test_bad_color(self):
        """Test bad color strings."""
        with self.assertRaises(LayerStackError):
            LayerSpec.from_wire({"color": "red", "heightPercentage": 50})


class TestLayerStack(unittest.TestCase):
    """Tests for stack validation."""

    def test_even_fractions(self):
        """Test default fractions are evenly spaced."""
        np.testing.assert_allclose(four_colors().fractions, [0.25, 0.5, 0.75, 1.0])

    def test_too_few_layers(self):
        """Test a single layer is rejected."""
        with self.assertRaises(LayerStackError):
            LayerStack.from_colors(["#000000"])

    def test_too_many_layers(self):
        """Test more than 15 layers are rejected."""
        with self.assertRaises(LayerStackError):
            LayerStack.from_colors(["#000000"] * 16)

    def test_non_increasing(self):
        """Test fractions must be strictly increasing."""
        with self.assertRaises(LayerStackError):
            LayerStack.from_colors(["#000000", "#111111", "#ffffff"], [0.5, 0.5, 1.0])

    def test_top_must_be_one(self):
        """Test the top fraction must be 1.0."""
        with self.assertRaises(LayerStackError):
            LayerStack.from_colors(["#000000", "#ffffff"], [0.4, 0.9])

    def test_top_snapped_to_one(self):
        """Test a top fraction within epsilon is snapped to 1.0."""
        stack = LayerStack.from_colors(["#000000", "#ffffff"], [0.5, 1.0 - 1e-8])
        assert stack[-1].height_fraction == 1.0

    def test_errors_are_value_errors(self):
        """Test stack errors belong to both hierarchies."""
        assert issubclass(LayerStackError, ValueError)
        assert issubclass(LayerStackError, PhotoSlicerError)

    def test_td_clamped(self):
        """Test non-positive TDs are clamped."""
        stack = LayerStack.from_colors(["#000000", "#ffffff"], tds=[0.0, -1.0])
        assert np.all(stack.tds > 0)

    def test_wire_round_trip(self):
        """Test wire form survives a JSON round trip."""
        stack = LayerStack.from_colors(["#102030", "#a0b0c0"], [0.3, 1.0], [0.6, 5.0])
        assert LayerStack.from_json(stack.to_json()) == stack

    def test_json_object_form(self):
        """Test {"layers": [...]} JSON is accepted."""
        text = '{"layers": [{"color": "#000000", "heightPercentage": 50, "td": 1}, ' \
               '{"color": "#ffffff", "heightPercentage": 100, "td": 2}]}'
        assert LayerStack.from_json(text).hex_colors == ["#000000", "#ffffff"]

    def test_invalid_json(self):
        """Test malformed JSON."""
        with self.assertRaises(LayerStackError):
            LayerStack.from_json("{not json")

    def test_save_and_load(self):
        """Test file save and load."""
        stack = four_colors()
        with tempfile.TemporaryDirectory() as tmp:
            path = stack.save(Path(tmp) / "layers.json")
            assert LayerStack.load(path) == stack

    def test_immutable(self):
        """Test stacks are hashable values."""
        assert hash(four_colors()) == hash(four_colors())
        assert isinstance(four_colors().layers, tuple)


class TestLayerEdits(unittest.TestCase):
    """Tests for add, remove and divider edits."""

    def test_add_on_top(self):
        """Test adding a top layer halves the previous top band."""
        stack = four_colors().add_layer("#ff0000")
        assert len(stack) == 5
        assert stack[-1].hex == "#ff0000"
        np.testing.assert_allclose(stack.fractions, [0.25, 0.5, 0.75, 0.875, 1.0])

    def test_add_inside(self):
        """Test inserting takes the lower half of a band."""
        stack = four_colors().add_layer("#ff0000", index=1)
        assert stack[1].hex == "#ff0000"
        np.testing.assert_allclose(stack.fractions, [0.25, 0.375, 0.5, 0.75, 1.0])

    def test_add_beyond_limit(self):
        """Test a full stack refuses new layers."""
        stack = LayerStack.from_colors(["#000000"] * 15)
        with self.assertRaises(LayerStackError):
            stack.add_layer("#ffffff")

    def test_add_returns_new_stack(self):
        """Test edits return new stacks."""
        stack = four_colors()
        stack.add_layer("#ff0000")
        assert len(stack) == 4

    def test_remove_top(self):
        """Test removing the top extends the new top to 1.0."""
        stack = four_colors().remove_layer(3)
        assert len(stack) == 3
        np.testing.assert_allclose(stack.fractions, [0.25, 0.5, 1.0])

    def test_remove_below_minimum(self):
        """Test at least two layers must remain."""
        stack = LayerStack.from_colors(["#000000", "#ffffff"])
        with self.assertRaises(LayerStackError):
            stack.remove_layer(0)

    def test_move_divider(self):
        """Test moving a divider."""
        stack = four_colors().move_divider(1, 0.6)
        np.testing.assert_allclose(stack.fractions, [0.25, 0.6, 0.75, 1.0])

    def test_move_divider_clamped(self):
        """Test dividers cannot cross their neighbors."""
        stack = four_colors().move_divider(1, 0.95)
        assert stack[1].height_fraction < stack[2].height_fraction
        assert abs(stack[1].height_fraction - 0.749) < 1e-9

    def test_top_divider_fixed(self):
        """Test the top layer cannot be moved."""
        with self.assertRaises(LayerStackError):
            four_colors().move_divider(3, 0.5)

    def test_set_color(self):
        """Test recoloring a layer."""
        stack = four_colors().set_color(0, (1, 2, 3))
        assert stack[0].color == (1, 2, 3)
        with self.assertRaises(LayerStackError):
            four_colors().set_color(9, "#000000")


if __name__ == "__main__":
    unittest.main(verbosity=2)
