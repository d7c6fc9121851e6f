"""
Main PhotoSlicer Class

This is the primary interface for the photo-to-print pipeline.
It orchestrates:
1. Image loading
2. Palette extraction (or a user supplied layer stack)
3. Height mapping and surface meshing
4. Extrusion into a closed solid
5. Export to STL / 3MF / PrusaSlicer 3MF / Bambu Studio 3MF

Example Usage:
    slicer = PhotoSlicer()
    slicer.load_image("photo.jpg")
    slicer.extract_palette(num_colors=5)
    slicer.set_height_mode("palette_distance")
    slicer.export("photo.bambu.3mf")
"""

from dataclasses import replace
from datetime import datetime
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
import numpy as np

from .config import DEFAULT_COLORS, DEFAULT_MERGE_TOLERANCE, OPACITY_THRESHOLD, ExportTarget, PrintSettings
from .exporters import exporter_for
from .exporters.thumbnail import ThumbnailSource
from .extrusion import ExtrusionBuilder, edge_manifold_report
from .heightmap import HeightMapper, HeightMode, Sampling
from .ingestion import ImageLoader, PixelBuffer
from .layer_changes import LayerChangeCalculator, LayerRange, ToolChangeEvent
from .layers import LayerStack
from .palette import ExtractorOptions, PaletteMode, extract_palette
from .surface import MeshData, SurfaceBuilder, mesh_stats


logger = logging.getLogger(__name__)


def parse_target(value: Union[str, ExportTarget]) -> ExportTarget:
    """Accept an ExportTarget or its string value ("stl", "3mf", "prusa", "bambu")."""
    if isinstance(value, ExportTarget):
        return value
    try:
        return ExportTarget(str(value).lower())
    except ValueError:
        valid = ", ".join(t.value for t in ExportTarget)
        raise ValueError(f"Unknown export format {value!r} (expected one of: {valid})") from None


def target_from_path(path: Union[str, Path]) -> ExportTarget:
    """Guess the export target from a file name suffix."""
    name = Path(path).name.lower()
    for target in (ExportTarget.PRUSA_3MF, ExportTarget.BAMBU_3MF,
                   ExportTarget.GENERIC_3MF, ExportTarget.STL):
        if name.endswith(target.suffix):
            return target
    raise ValueError(f"Cannot infer export format from file name: {path}")


class PhotoSlicer:
    """
    High-level interface for photo relief generation.

    Every export rebuilds the surface and the solid from the current image,
    layer stack and settings; meshes are never shared between exports.

    Attributes:
        settings: Physical print parameters
        layers: Current layer stack
        buffer: Loaded image
    """

    def __init__(
        self,
        settings: Optional[PrintSettings] = None,
        opacity_threshold: int = OPACITY_THRESHOLD,
        max_dimension: Optional[int] = None,
        merge_tolerance: float = DEFAULT_MERGE_TOLERANCE
    ):
        """
        Initialize the PhotoSlicer.

        Args:
            settings: Print settings (defaults used when omitted)
            opacity_threshold: Alpha at or above which a pixel counts as opaque
            max_dimension: Downscale photos whose longest side exceeds this
            merge_tolerance: Bottom cap corner merge distance (mm)
        """
        self.settings = settings or PrintSettings()
        self.merge_tolerance = merge_tolerance
        self._loader = ImageLoader(opacity_threshold, max_dimension)

        self._buffer: Optional[PixelBuffer] = None
        self._layers: Optional[LayerStack] = None
        self._height_mode: HeightMode = HeightMode.LUMINANCE
        self._stepped: bool = False
        self._sampling: Sampling = Sampling.BILINEAR
        self._source_name: Optional[str] = None

    # --- inputs ---

    def load_image(self, image_path: Union[str, Path]) -> "PhotoSlicer":
        """
        Load a photo.

        Returns:
            self for method chaining
        """
        self._buffer = self._loader.load(image_path)
        self._source_name = Path(image_path).stem
        return self

    def load_array(self, array: np.ndarray) -> "PhotoSlicer":
        """
        Load image data from a numpy array of shape (H, W, 3) or (H, W, 4).

        Returns:
            self for method chaining
        """
        self._buffer = self._loader.load_from_array(array)
        return self

    def load_buffer(self, buffer: PixelBuffer) -> "PhotoSlicer":
        self._buffer = buffer
        return self

    def configure(self, **overrides: Any) -> "PhotoSlicer":
        """
        Replace individual print settings (layer_height, base_thickness, ...).

        Returns:
            self for method chaining
        """
        if "layer_height" in overrides and "first_layer_height" not in overrides:
            overrides["first_layer_height"] = None
        self.settings = replace(self.settings, **overrides)
        return self

    def extract_palette(
        self,
        num_colors: int = DEFAULT_COLORS,
        mode: Union[str, PaletteMode] = PaletteMode.DOMINANT,
        options: Optional[ExtractorOptions] = None
    ) -> "PhotoSlicer":
        """
        Derive the layer stack from the loaded image.

        Args:
            num_colors: Desired color count (2-15)
            mode: Palette strategy name or PaletteMode
            options: Dominant extractor tunables

        Returns:
            self for method chaining
        """
        self._require_image()
        if isinstance(mode, str):
            mode = PaletteMode(mode.lower())
        self._layers = extract_palette(self._buffer, num_colors, mode, options)
        logger.info("Palette (%s): %s", mode.value, " ".join(self._layers.hex_colors))
        return self

    def set_layers(
        self,
        layers: Union[LayerStack, Sequence[Dict[str, Any]]]
    ) -> "PhotoSlicer":
        """
        Use an explicit layer stack (LayerStack or wire-form dicts).

        Returns:
            self for method chaining
        """
        if not isinstance(layers, LayerStack):
            layers = LayerStack.from_wire(layers)
        self._layers = layers
        return self

    def load_layers(self, path: Union[str, Path]) -> "PhotoSlicer":
        """Load the layer stack from a JSON file."""
        self._layers = LayerStack.load(path)
        return self

    def save_layers(self, path: Union[str, Path]) -> Path:
        """Write the current layer stack to a JSON file."""
        return self._require_layers().save(path)

    def set_height_mode(
        self,
        mode: Union[str, HeightMode],
        stepped: bool = False,
        sampling: Union[str, Sampling] = Sampling.BILINEAR
    ) -> "PhotoSlicer":
        """
        Configure how colors become heights.

        Args:
            mode: "luminance" or "palette_distance"
            stepped: Snap heights to whole print layers
            sampling: "nearest" or "bilinear" image sampling

        Returns:
            self for method chaining
        """
        if isinstance(mode, str):
            mode = HeightMode(mode.lower())
        if isinstance(sampling, str):
            sampling = Sampling(sampling.lower())
        self._height_mode = mode
        self._stepped = stepped
        self._sampling = sampling
        return self

    # --- pipeline ---

    def height_mapper(self) -> HeightMapper:
        """Height mapper for the current mode, layers and settings."""
        stack = self._layers
        if self._height_mode == HeightMode.PALETTE_DISTANCE:
            stack = self._require_layers()
        return HeightMapper(
            stack=stack,
            mode=self._height_mode,
            model_max_height=self.settings.model_max_height,
            layer_height=self.settings.layer_height,
            stepped=self._stepped,
            sampling=self._sampling,
        )

    def build_surface(self) -> MeshData:
        """Build the open relief surface."""
        self._require_image()
        builder = SurfaceBuilder(self.settings.resolution, self.settings.model_size)
        return builder.build(self._buffer, self.height_mapper())

    def build_solid(self) -> MeshData:
        """Build a fresh closed solid (surface + walls + base)."""
        surface = self.build_surface()
        extruder = ExtrusionBuilder(self.settings.base_thickness, self.merge_tolerance)
        return extruder.build(surface)

    def layer_changes(self) -> List[ToolChangeEvent]:
        """Filament changes of the current layer stack."""
        calculator = LayerChangeCalculator.from_settings(self.settings)
        return calculator.events(self._require_layers())

    def layer_ranges(self) -> List[LayerRange]:
        calculator = LayerChangeCalculator.from_settings(self.settings)
        return calculator.layer_ranges(self._require_layers())

    # --- export ---

    def render(
        self,
        target: Union[str, ExportTarget] = ExportTarget.STL,
        thumbnail: ThumbnailSource = None,
        creation_date: Optional[datetime] = None,
        binary: bool = True
    ) -> bytes:
        """
        Build a solid and serialize it.

        Args:
            target: Output format
            thumbnail: Preview image for slicer formats (defaults to the photo)
            creation_date: Fixed date for 3MF metadata
            binary: Binary STL (STL only)

        Returns:
            File contents
        """
        target = parse_target(target)
        solid = self.build_solid()
        exporter = self._exporter(target, creation_date, binary)
        if thumbnail is None and target.needs_thumbnail:
            thumbnail = self._buffer
        settings = self._export_settings()
        return exporter.render(solid, self._layers, settings, thumbnail)

    def export(
        self,
        output_path: Union[str, Path],
        target: Optional[Union[str, ExportTarget]] = None,
        thumbnail: ThumbnailSource = None,
        creation_date: Optional[datetime] = None,
        binary: bool = True
    ) -> Path:
        """
        Export to a file; the format is inferred from the suffix when omitted.

        Returns:
            The written path
        """
        target = parse_target(target) if target is not None else target_from_path(output_path)
        data = self.render(target, thumbnail, creation_date, binary)
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(data)
        logger.info("Exported %s (%d bytes)", output_path, len(data))
        return output_path

    def export_all(
        self,
        base_path: Union[str, Path],
        targets: Iterable[Union[str, ExportTarget]] = ("stl", "3mf")
    ) -> List[Path]:
        """
        Export to several formats next to each other.

        Args:
            base_path: Output path without suffix
            targets: Formats to write

        Returns:
            Written paths
        """
        base_path = Path(base_path)
        outputs = []
        for target in targets:
            target = parse_target(target)
            outputs.append(self.export(str(base_path) + target.suffix, target))
        return outputs

    # --- inspection ---

    @property
    def buffer(self) -> Optional[PixelBuffer]:
        return self._buffer

    @property
    def layers(self) -> Optional[LayerStack]:
        return self._layers

    @property
    def height_mode(self) -> HeightMode:
        return self._height_mode

    def get_mesh_stats(self) -> dict:
        """
        Build a solid and report its size and topology.

        Returns:
            Dictionary with counts, bounding box and manifold report
        """
        solid = self.build_solid()
        stats = mesh_stats(solid)
        stats.update(edge_manifold_report(solid))
        stats["total_layers"] = self.settings.total_layer_count
        return stats

    def preview(self) -> dict:
        """Summary of the current configuration (no mesh is built)."""
        info = {
            "image_loaded": self._buffer is not None,
            "height_mode": self._height_mode.value,
            "stepped": self._stepped,
            "layer_height": self.settings.layer_height,
            "first_layer_height": self.settings.first_layer_height,
            "base_thickness": self.settings.base_thickness,
            "model_max_height": self.settings.model_max_height,
            "resolution": self.settings.resolution,
        }
        if self._buffer is not None:
            info["image_size"] = self._buffer.size
        if self._layers is not None:
            info["colors"] = self._layers.hex_colors
        return info

    # --- helpers ---

    def _exporter(self, target: ExportTarget, creation_date: Optional[datetime], binary: bool):
        if target == ExportTarget.STL:
            return exporter_for(target, binary=binary)
        return exporter_for(target, creation_date=creation_date)

    def _export_settings(self) -> PrintSettings:
        if self._source_name and self.settings.name == PrintSettings().name:
            return replace(self.settings, name=self._source_name)
        return self.settings

    def _require_image(self):
        if self._buffer is None:
            raise RuntimeError("No image loaded. Call load_image() first.")

    def _require_layers(self) -> LayerStack:
        if self._layers is None:
            raise RuntimeError("No layer stack. Call extract_palette() or set_layers() first.")
        return self._layers


class BatchProcessor:
    """
    Batch processing for a directory of photos with consistent settings.
    """

    def __init__(self, **slicer_kwargs):
        """
        Initialize the batch processor.

        Args:
            **slicer_kwargs: Arguments passed to PhotoSlicer
        """
        self.slicer_kwargs = slicer_kwargs

    def process_directory(
        self,
        input_dir: Union[str, Path],
        output_dir: Union[str, Path],
        pattern: str = "*.png",
        targets: Iterable[Union[str, ExportTarget]] = ("stl",),
        num_colors: int = DEFAULT_COLORS,
        palette_mode: Union[str, PaletteMode] = PaletteMode.DOMINANT,
        height_mode: Union[str, HeightMode] = HeightMode.LUMINANCE,
        stepped: bool = False
    ) -> List[Path]:
        """
        Process all images in a directory.

        Args:
            input_dir: Input directory
            output_dir: Output directory
            pattern: Glob pattern for input files
            targets: Formats written for every image
            num_colors: Palette size
            palette_mode: Palette strategy
            height_mode: Height mode
            stepped: Snap heights to whole layers

        Returns:
            List of written paths
        """
        input_dir = Path(input_dir)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        targets = [parse_target(t) for t in targets]

        outputs: List[Path] = []
        for image_path in sorted(input_dir.glob(pattern)):
            slicer = PhotoSlicer(**self.slicer_kwargs)
            slicer.load_image(image_path)
            slicer.extract_palette(num_colors, palette_mode)
            slicer.set_height_mode(height_mode, stepped=stepped)
            outputs.extend(slicer.export_all(output_dir / image_path.stem, targets))
            logger.info("Processed %s", image_path.name)

        return outputs
