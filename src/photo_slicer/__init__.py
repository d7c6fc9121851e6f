"""
Photo Slicer
============

Turn photos into multi-color 3D printable reliefs.

A photo is reduced to a small stack of filament colors, every pixel is mapped
to a height, and the resulting grid surface is closed into a watertight solid
that prints one color band after another. The solid is written as STL, as a
generic 3MF, or as a slicer project (PrusaSlicer or Bambu Studio) that carries
the filament changes at the right layers.

Key Features:
- Dominant color, posterized and grayscale palette extraction
- Luminance and palette distance height mapping with optional layer snapping
- Numba accelerated nearest color lookup
- Watertight extrusion with side walls and a flat base
- Layer change calculation shared by all slicer exporters

Example Usage:
    from photo_slicer import PhotoSlicer

    slicer = PhotoSlicer()
    slicer.load_image("photo.jpg")
    slicer.extract_palette(num_colors=4)
    slicer.set_height_mode("palette_distance", stepped=True)
    slicer.export("photo.bambu.3mf")
"""

__version__ = "1.0.0"
__author__ = "Photo Slicer Team"

from .config import ExportTarget, PrintSettings
from .exceptions import DegenerateGeometryError, LayerStackError, PhotoSlicerError
from .generator import BatchProcessor, PhotoSlicer
from .heightmap import HeightMapper, HeightMode
from .ingestion import ImageLoader, PixelBuffer
from .layer_changes import LayerChangeCalculator, ToolChangeEvent
from .layers import LayerSpec, LayerStack
from .palette import PaletteExtractor, PaletteMode, extract_palette
from .surface import MeshData, SurfaceBuilder
from .extrusion import ExtrusionBuilder

__all__ = [
    "PhotoSlicer",
    "BatchProcessor",
    "PrintSettings",
    "ExportTarget",
    "PixelBuffer",
    "ImageLoader",
    "LayerSpec",
    "LayerStack",
    "PaletteExtractor",
    "PaletteMode",
    "extract_palette",
    "HeightMapper",
    "HeightMode",
    "MeshData",
    "SurfaceBuilder",
    "ExtrusionBuilder",
    "LayerChangeCalculator",
    "ToolChangeEvent",
    "PhotoSlicerError",
    "LayerStackError",
    "DegenerateGeometryError",
]
