"""
End-to-end tests for the PhotoSlicer orchestrator, batch processing and CLI.
"""

import io
import logging
import sys
import tempfile
import zipfile
from contextlib import redirect_stderr, redirect_stdout
from datetime import datetime
from pathlib import Path
import numpy as np
import unittest
from PIL import Image

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from photo_slicer import BatchProcessor, PhotoSlicer, PrintSettings
from photo_slicer.cli import create_parser, log_level, main, strip_target_suffix
from photo_slicer.config import ExportTarget
from photo_slicer.generator import parse_target, target_from_path
from photo_slicer.layers import LayerStack
from photo_slicer.logging_config import setup_logging


FIXED_DATE = datetime(2024, 5, 17)


def create_test_photo(width=48, height=32):
    """Photo with a dark left half, a red band and a light right half."""
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, : width // 2] = (30, 30, 30)
    image[:, width // 2:] = (230, 230, 220)
    image[height // 3: 2 * height // 3, :] = (200, 40, 40)
    return image


def small_settings(resolution=24):
    return PrintSettings(resolution=resolution, model_size=60.0)


class TestPhotoSlicer(unittest.TestCase):
    """Tests for the orchestrator."""

    def setUp(self):
        self.slicer = PhotoSlicer(small_settings())
        self.slicer.load_array(create_test_photo())

    def test_luminance_solid(self):
        """Test a luminance relief builds a closed solid."""
        stats = self.slicer.get_mesh_stats()
        assert stats["watertight"]
        assert abs(stats["size_x"] - 60.0) < 1e-9
        assert abs(stats["size_y"] - 40.0) < 1e-9

    def test_palette_distance_solid(self):
        """Test the palette distance mode with extracted colors."""
        self.slicer.extract_palette(3).set_height_mode("palette_distance", stepped=True)
        solid = self.slicer.build_solid()
        top = solid.vertices[:, 2].max()
        assert top <= self.slicer.settings.model_max_height + 1e-9
        layers = solid.vertices[solid.vertices[:, 2] > 0, 2] / self.slicer.settings.layer_height
        np.testing.assert_allclose(layers, np.round(layers), atol=1e-6)

    def test_resolution_independent_bounds(self):
        """Test the bounding box does not depend on the resolution."""
        sizes = []
        for resolution in (10, 24, 50):
            slicer = PhotoSlicer(small_settings(resolution)).load_array(create_test_photo())
            sizes.append(slicer.build_solid().size())
        np.testing.assert_allclose(sizes[0], sizes[1])
        np.testing.assert_allclose(sizes[1], sizes[2])

    def test_fresh_mesh_per_build(self):
        """Test every build returns a new mesh."""
        a = self.slicer.build_solid()
        b = self.slicer.build_solid()
        assert a.vertices is not b.vertices
        np.testing.assert_array_equal(a.vertices, b.vertices)

    def test_layer_changes(self):
        """Test tool changes come from the current stack."""
        self.slicer.set_layers([
            {"color": "#000000", "heightPercentage": 50, "td": 1.5},
            {"color": "#ffffff", "heightPercentage": 100, "td": 1.5},
        ])
        events = self.slicer.layer_changes()
        assert len(events) == 1
        assert events[0].extruder == 2

    def test_configure(self):
        """Test changing the layer height recomputes the first layer."""
        self.slicer.configure(layer_height=0.12)
        assert self.slicer.settings.first_layer_height == 0.24

    def test_render_all_formats(self):
        """Test every format renders."""
        self.slicer.extract_palette(3)
        for target in ExportTarget:
            data = self.slicer.render(target, creation_date=FIXED_DATE)
            assert len(data) > 84

    def test_render_deterministic(self):
        """Test Bambu output is byte identical for a fixed date."""
        self.slicer.extract_palette(3)
        a = self.slicer.render("bambu", creation_date=FIXED_DATE)
        b = self.slicer.render("bambu", creation_date=FIXED_DATE)
        assert a == b

    def test_export_infers_format(self):
        """Test the format is inferred from the file name."""
        self.slicer.extract_palette(3)
        with tempfile.TemporaryDirectory() as tmp:
            path = self.slicer.export(Path(tmp) / "photo.prusa.3mf", creation_date=FIXED_DATE)
            with zipfile.ZipFile(path) as archive:
                assert "Metadata/Slic3r_PE.config" in archive.namelist()

    def test_export_all(self):
        """Test exporting several formats."""
        self.slicer.extract_palette(3)
        with tempfile.TemporaryDirectory() as tmp:
            paths = self.slicer.export_all(Path(tmp) / "relief", ["stl", "3mf"])
            assert [p.name for p in paths] == ["relief.stl", "relief.3mf"]

    def test_requires_image(self):
        """Test building without an image."""
        with self.assertRaises(RuntimeError):
            PhotoSlicer().build_solid()

    def test_bambu_requires_layers(self):
        """Test layer-dependent operations without a stack."""
        with self.assertRaises(RuntimeError):
            self.slicer.layer_changes()

    def test_save_and_load_layers(self):
        """Test layer stack JSON files."""
        self.slicer.extract_palette(3)
        with tempfile.TemporaryDirectory() as tmp:
            path = self.slicer.save_layers(Path(tmp) / "layers.json")
            other = PhotoSlicer().load_layers(path)
            assert other.layers == self.slicer.layers

    def test_preview(self):
        """Test the configuration summary."""
        info = self.slicer.preview()
        assert info["image_loaded"]
        assert info["image_size"] == (48, 32)


class TestTargets(unittest.TestCase):
    """Tests for target parsing."""

    def test_parse_target(self):
        """Test format names."""
        assert parse_target("STL") == ExportTarget.STL
        assert parse_target("bambu") == ExportTarget.BAMBU_3MF
        with self.assertRaises(ValueError):
            parse_target("obj")

    def test_target_from_path(self):
        """Test suffix inference prefers slicer dialects."""
        assert target_from_path("a.prusa.3mf") == ExportTarget.PRUSA_3MF
        assert target_from_path("a.bambu.3mf") == ExportTarget.BAMBU_3MF
        assert target_from_path("a.3mf") == ExportTarget.GENERIC_3MF
        assert target_from_path("a.STL") == ExportTarget.STL
        with self.assertRaises(ValueError):
            target_from_path("a.obj")


class TestBatchProcessor(unittest.TestCase):
    """Tests for directory processing."""

    def test_process_directory(self):
        """Test every matching image is exported."""
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            for name in ("a.png", "b.png"):
                Image.fromarray(create_test_photo()).save(tmp / name)
            processor = BatchProcessor(settings=small_settings(12))
            outputs = processor.process_directory(tmp, tmp / "out", targets=["stl", "3mf"], num_colors=3)
            assert sorted(p.name for p in outputs) == ["a.3mf", "a.stl", "b.3mf", "b.stl"]


class TestCLI(unittest.TestCase):
    """Tests for the command line interface."""

    def run_cli(self, argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(argv)
        return code, out.getvalue(), err.getvalue()

    def test_parser_defaults(self):
        """Test default arguments."""
        args = create_parser().parse_args(["photo.png"])
        assert args.format == ["stl"]
        assert args.height_mode == "luminance"

    def test_log_levels(self):
        """Test --verbose and --quiet map to logging levels."""
        parser = create_parser()
        assert log_level(parser.parse_args(["photo.png"])) == logging.INFO
        assert log_level(parser.parse_args(["photo.png", "-q"])) == logging.WARNING
        assert log_level(parser.parse_args(["photo.png", "-v", "-q"])) == logging.DEBUG

    def test_log_file(self):
        """Test the log file keeps timestamps and debug records."""
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "run.log"
            logger = setup_logging(logging.WARNING, str(path))
            logging.getLogger("photo_slicer.generator").debug("building relief")
            assert logger.handlers[0].level == logging.WARNING
            assert logger.handlers[0].formatter._fmt == "%(levelname)s: %(message)s"
            setup_logging(logging.WARNING)
            text = path.read_text(encoding="utf-8")
        assert "photo_slicer.generator - DEBUG - building relief" in text

    def test_strip_target_suffix(self):
        """Test output suffix handling."""
        assert strip_target_suffix(Path("out/model.bambu.3mf")) == Path("out/model")
        assert strip_target_suffix(Path("model.stl")) == Path("model")
        assert strip_target_suffix(Path("model")) == Path("model")

    def test_single_file(self):
        """Test converting one photo to STL and Bambu 3MF."""
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            photo = tmp / "photo.png"
            Image.fromarray(create_test_photo()).save(photo)
            code, out, _ = self.run_cli([
                str(photo), "-o", str(tmp / "relief.stl"),
                "--format", "stl", "bambu", "--colors", "3", "-r", "16", "--stats",
            ])
            assert code == 0
            assert (tmp / "relief.stl").exists()
            assert (tmp / "relief.bambu.3mf").exists()
            assert "Watertight: True" in out

    def test_layers_file(self):
        """Test using and saving a layer stack file."""
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            photo = tmp / "photo.png"
            Image.fromarray(create_test_photo()).save(photo)
            LayerStack.from_colors(["#000000", "#ff0000", "#ffffff"]).save(tmp / "layers.json")
            code, _, _ = self.run_cli([
                str(photo), "--layers", str(tmp / "layers.json"),
                "--height-mode", "palette_distance", "--format", "prusa", "-r", "16",
            ])
            assert code == 0
            assert (tmp / "photo.prusa.3mf").exists()

    def test_missing_input(self):
        """Test a missing input file fails with exit code 1."""
        code, _, err = self.run_cli(["does_not_exist.png"])
        assert code == 1
        assert err.startswith("Error:")

    def test_bad_layers_file(self):
        """Test invalid layer JSON is reported."""
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            photo = tmp / "photo.png"
            Image.fromarray(create_test_photo()).save(photo)
            (tmp / "layers.json").write_text("[]")
            code, _, err = self.run_cli([str(photo), "--layers", str(tmp / "layers.json")])
            assert code == 1
            assert "Error:" in err

    def test_batch(self):
        """Test batch mode."""
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            Image.fromarray(create_test_photo()).save(tmp / "one.png")
            code, out, _ = self.run_cli([
                "--batch", str(tmp), "--output-dir", str(tmp / "models"), "-r", "12",
            ])
            assert code == 0
            assert (tmp / "models" / "one.stl").exists()
            assert "Processed 1 files" in out


if __name__ == "__main__":
    unittest.main(verbosity=2)
