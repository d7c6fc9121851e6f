"""
Unit tests for STL and 3MF exporters.
"""

import io
import json
import struct
import sys
import tempfile
import zipfile
from datetime import datetime
from pathlib import Path
import numpy as np
import unittest
from PIL import Image

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from photo_slicer.config import ExportTarget, PrintSettings
from photo_slicer.exceptions import DegenerateGeometryError
from photo_slicer.exporters import (
    BambuExporter,
    PrusaExporter,
    STLExporter,
    ThreeMFExporter,
    exporter_for,
)
from photo_slicer.exporters.prusa_exporter import place_on_bed
from photo_slicer.exporters.serialization import entry_names, format_float
from photo_slicer.extrusion import ExtrusionBuilder
from photo_slicer.heightmap import HeightMapper
from photo_slicer.ingestion import PixelBuffer
from photo_slicer.layers import LayerStack
from photo_slicer.surface import MeshData, SurfaceBuilder


FIXED_DATE = datetime(2024, 5, 17)


def small_solid():
    ramp = np.linspace(0, 255, 12).astype(np.uint8)
    image = np.repeat(ramp[None, :], 8, axis=0)
    buffer = PixelBuffer(np.stack([image, image, image], axis=2))
    surface = SurfaceBuilder(6, 60.0).build(buffer, HeightMapper(model_max_height=2.0))
    return ExtrusionBuilder(0.16).build(surface)


def two_color_stack():
    return LayerStack.from_colors(["#202020", "#f0e0d0"], [0.5, 1.0])


def settings():
    return PrintSettings(layer_height=0.08, base_thickness=0.08, model_max_height=2.0, name="relief")


def read_entry(data: bytes, name: str) -> bytes:
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        return archive.read(name)


class TestSTLExporter(unittest.TestCase):
    """Tests for STL output."""

    def test_binary_size(self):
        """Test binary STL is 84 + 50 bytes per triangle."""
        mesh = small_solid()
        data = STLExporter().render(mesh)
        assert len(data) == 84 + 50 * mesh.triangle_count
        assert struct.unpack("<I", data[80:84])[0] == mesh.triangle_count

    def test_ascii(self):
        """Test ASCII STL structure."""
        mesh = small_solid()
        text = STLExporter(binary=False).render(mesh, settings=settings()).decode("ascii")
        assert text.startswith("solid relief")
        assert text.rstrip().endswith("endsolid relief")
        assert text.count("facet normal") == mesh.triangle_count

    def test_empty_mesh(self):
        """Test empty meshes are rejected."""
        empty = MeshData(np.zeros((0, 3)), np.zeros((0, 3), dtype=np.int64))
        with self.assertRaises(DegenerateGeometryError):
            STLExporter().render(empty)

    def test_export_writes_file(self):
        """Test export writes the rendered bytes."""
        mesh = small_solid()
        with tempfile.TemporaryDirectory() as tmp:
            path = STLExporter().export(mesh, Path(tmp) / "out" / "model.stl")
            assert path.exists()
            assert path.stat().st_size == 84 + 50 * mesh.triangle_count


class TestThreeMFExporter(unittest.TestCase):
    """Tests for the generic 3MF package."""

    def test_entries(self):
        """Test the core package parts."""
        data = ThreeMFExporter(FIXED_DATE).render(small_solid(), two_color_stack(), settings())
        assert sorted(entry_names(data)) == ["3D/3dmodel.model", "[Content_Types].xml", "_rels/.rels"]

    def test_model_counts(self):
        """Test every vertex and triangle is written."""
        mesh = small_solid()
        data = ThreeMFExporter(FIXED_DATE).render(mesh, two_color_stack(), settings())
        model = read_entry(data, "3D/3dmodel.model").decode("utf-8")
        assert model.count("<vertex ") == mesh.vertex_count
        assert model.count("<triangle ") == mesh.triangle_count
        assert 'unit="millimeter"' in model

    def test_color_changes_as_description(self):
        """Test the layer changes are described in metadata."""
        data = ThreeMFExporter(FIXED_DATE).render(small_solid(), two_color_stack(), settings())
        model = read_entry(data, "3D/3dmodel.model").decode("utf-8")
        assert "Change to #f0e0d0 at layer 25" in model
        assert "2024-05-17" in model

    def test_deterministic(self):
        """Test identical input gives identical bytes."""
        mesh = small_solid()
        a = ThreeMFExporter(FIXED_DATE).render(mesh, two_color_stack(), settings())
        b = ThreeMFExporter(FIXED_DATE).render(mesh, two_color_stack(), settings())
        assert a == b

    def test_format_float(self):
        """Test negative zero is normalized."""
        assert format_float(-0.0000001) == "0.000000"
        assert format_float(1.5) == "1.500000"


class TestPrusaExporter(unittest.TestCase):
    """Tests for the PrusaSlicer project."""

    def test_entries(self):
        """Test the PrusaSlicer parts are present."""
        data = PrusaExporter(FIXED_DATE).render(small_solid(), two_color_stack(), settings())
        names = entry_names(data)
        for name in (
            "3D/3dmodel.model",
            "Metadata/thumbnail.png",
            "Metadata/Slic3r_PE.config",
            "Metadata/Slic3r_PE_model.config",
            "Metadata/Prusa_Slicer_custom_gcode_per_print_z.xml",
        ):
            assert name in names, name

    def test_color_change(self):
        """Test one M600 at the computed height."""
        data = PrusaExporter(FIXED_DATE).render(small_solid(), two_color_stack(), settings())
        xml = read_entry(data, "Metadata/Prusa_Slicer_custom_gcode_per_print_z.xml").decode("utf-8")
        assert xml.count('gcode="M600"') == 1
        assert 'print_z="2.080000"' in xml
        assert 'color="#f0e0d0"' in xml

    def test_config(self):
        """Test layer heights in the slicer config."""
        data = PrusaExporter(FIXED_DATE).render(small_solid(), two_color_stack(), settings())
        config = read_entry(data, "Metadata/Slic3r_PE.config").decode("utf-8")
        assert "; layer_height = 0.08" in config
        assert "; first_layer_height = 0.16" in config

    def test_thumbnail(self):
        """Test the thumbnail is a square PNG."""
        photo = Image.new("RGB", (40, 20), (200, 10, 10))
        data = PrusaExporter(FIXED_DATE).render(small_solid(), two_color_stack(), settings(), photo)
        with Image.open(io.BytesIO(read_entry(data, "Metadata/thumbnail.png"))) as thumb:
            assert thumb.size == (256, 256)

    def test_placeholder_thumbnail(self):
        """Test a missing thumbnail falls back to a placeholder with a warning."""
        with self.assertLogs("photo_slicer.exporters.thumbnail", level="WARNING"):
            data = PrusaExporter(FIXED_DATE).render(small_solid(), two_color_stack(), settings())
        assert "Metadata/thumbnail.png" in entry_names(data)

    def test_place_on_bed(self):
        """Test the model is centered on the bed and rests on z = 0."""
        placed = place_on_bed(small_solid())
        lo, hi = placed.bounds()
        np.testing.assert_allclose((lo[:2] + hi[:2]) / 2, [125.0, 105.0])
        assert abs(lo[2]) < 1e-12

    def test_oversized_warning(self):
        """Test a model larger than the bed logs a warning."""
        mesh = small_solid()
        big = mesh._replace(vertices=mesh.vertices * 10)
        with self.assertLogs("photo_slicer.exporters.prusa_exporter", level="WARNING"):
            place_on_bed(big)


class TestBambuExporter(unittest.TestCase):
    """Tests for the Bambu Studio project."""

    def render(self, stack=None):
        return BambuExporter(FIXED_DATE).render(
            small_solid(), stack or two_color_stack(), settings(), np.zeros((16, 16, 3), dtype=np.uint8)
        )

    def test_entries(self):
        """Test the Bambu parts are present."""
        names = entry_names(self.render())
        for name in (
            "Metadata/project_settings.config",
            "Metadata/model_settings.config",
            "Metadata/slice_info.config",
            "Metadata/plate_1.json",
            "Metadata/custom_gcode_per_layer.xml",
            "Metadata/plate_1.png",
            "Metadata/plate_1_small.png",
            "Metadata/plate_no_light_1.png",
            "Metadata/top_1.png",
            "Metadata/pick_1.png",
        ):
            assert name in names, name

    def test_tool_changes(self):
        """Test tool changes list extruder, color and height."""
        stack = LayerStack.from_colors(["#000000", "#808080", "#ffffff"])
        xml = read_entry(self.render(stack), "Metadata/custom_gcode_per_layer.xml").decode("utf-8")
        assert xml.count('type="2"') == 2
        assert 'extruder="2"' in xml and 'extruder="3"' in xml
        assert 'color="#808080"' in xml.lower()

    def test_project_settings(self):
        """Test filament list and layer heights."""
        config = json.loads(read_entry(self.render(), "Metadata/project_settings.config"))
        assert config["filament_colour"] == ["#202020", "#F0E0D0"]
        assert config["layer_height"] == "0.08"
        assert config["initial_layer_print_height"] == "0.16"
        assert len(config["filament_type"]) == 2

    def test_profile_unchanged(self):
        """Test rendering does not modify the static profile."""
        from photo_slicer.exporters.bambu_profile import A1_PROFILE
        before = dict(A1_PROFILE)
        self.render(LayerStack.from_colors(["#000000", "#111111", "#ffffff"]))
        assert dict(A1_PROFILE) == before

    def test_plate_json(self):
        """Test the plate summary."""
        plate = json.loads(read_entry(self.render(), "Metadata/plate_1.json"))
        assert plate["filament_ids"] == [0, 1]
        x0, y0, x1, y1 = plate["bbox_all"]
        assert abs((x0 + x1) / 2 - 128.0) < 1e-3
        assert abs((y0 + y1) / 2 - 128.0) < 1e-3

    def test_requires_stack(self):
        """Test Bambu export needs filaments."""
        with self.assertRaises(ValueError):
            BambuExporter(FIXED_DATE).render(small_solid(), None, settings())

    def test_deterministic(self):
        """Test identical input gives identical bytes."""
        assert self.render() == self.render()


class TestExporterFactory(unittest.TestCase):
    """Tests for exporter_for."""

    def test_mapping(self):
        """Test each target maps to its exporter."""
        assert isinstance(exporter_for(ExportTarget.STL), STLExporter)
        assert isinstance(exporter_for(ExportTarget.GENERIC_3MF), ThreeMFExporter)
        assert isinstance(exporter_for(ExportTarget.PRUSA_3MF), PrusaExporter)
        assert isinstance(exporter_for(ExportTarget.BAMBU_3MF), BambuExporter)
        assert exporter_for(ExportTarget.BAMBU_3MF).suffix == ExportTarget.BAMBU_3MF.suffix


if __name__ == "__main__":
    unittest.main(verbosity=2)
