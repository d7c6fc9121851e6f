#!/usr/bin/env python3
"""
Photo Slicer Demo Script

This script demonstrates the full photo-to-print pipeline by:
1. Creating synthetic test photos (no external images needed)
2. Extracting palettes and building reliefs in both height modes
3. Exporting to all supported formats
4. Printing mesh statistics and the filament change schedule

Run with: python examples/demo.py
"""

import sys
from pathlib import Path
import numpy as np
import time

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from photo_slicer import PhotoSlicer, PrintSettings
from photo_slicer.config import ExportTarget
from photo_slicer.heightmap import HeightMode
from photo_slicer.palette import PaletteMode


def create_test_photo_sunset(width: int = 160, height: int = 120) -> np.ndarray:
    """
    Sky gradient from deep blue to orange with a dark horizon.

    Returns:
        (H, W, 3) uint8 array
    """
    t = np.linspace(0.0, 1.0, height)[:, None]
    top = np.array([20, 30, 90], dtype=np.float64)
    bottom = np.array([250, 150, 60], dtype=np.float64)
    sky = top * (1 - t[..., None]) + bottom * t[..., None]
    photo = np.repeat(sky, width, axis=1)

    horizon = int(height * 0.8)
    photo[horizon:] = (25, 20, 20)
    return photo.astype(np.uint8)


def create_test_photo_portrait(size: int = 128) -> np.ndarray:
    """
    Light face disc on a dark background.

    Returns:
        (H, W, 3) uint8 array
    """
    yy, xx = np.mgrid[0:size, 0:size]
    center = size / 2
    dist = np.sqrt((xx - center) ** 2 + (yy - center) ** 2) / (size / 2)

    photo = np.zeros((size, size, 3), dtype=np.float64)
    photo[:] = (30, 35, 45)
    face = dist < 0.7
    shade = np.clip(1.0 - dist, 0.0, 1.0)[..., None]
    photo[face] = (np.array([150, 110, 90]) + np.array([90, 80, 70]) * shade)[face]
    return photo.astype(np.uint8)


def create_test_photo_stripes(width: int = 120, height: int = 80) -> np.ndarray:
    """
    Saturated vertical color stripes.

    Returns:
        (H, W, 3) uint8 array
    """
    colors = [(230, 40, 40), (240, 200, 30), (40, 170, 60), (40, 80, 200), (20, 20, 20)]
    photo = np.zeros((height, width, 3), dtype=np.uint8)
    stripe = width // len(colors)
    for i, color in enumerate(colors):
        photo[:, i * stripe:(i + 1) * stripe] = color
    photo[:, len(colors) * stripe:] = colors[-1]
    return photo


def run_demo():
    """Run the demonstration."""
    print("=" * 60)
    print("Photo Slicer - Demo")
    print("=" * 60)
    print()

    # Create output directory
    output_dir = Path(__file__).parent / "output"
    output_dir.mkdir(exist_ok=True)

    test_photos = [
        ("sunset", create_test_photo_sunset()),
        ("portrait", create_test_photo_portrait()),
        ("stripes", create_test_photo_stripes()),
    ]

    settings = PrintSettings(resolution=120, model_size=80.0, name="demo")
    total_start = time.time()

    for name, photo in test_photos:
        print(f"\n--- Processing: {name} ---")
        print(f"Input size: {photo.shape[1]}x{photo.shape[0]} pixels")

        photo_start = time.time()

        slicer = PhotoSlicer(settings)
        slicer.load_array(photo)
        slicer.extract_palette(num_colors=5, mode=PaletteMode.DOMINANT)
        print(f"  Palette: {' '.join(slicer.layers.hex_colors)}")

        # Test both height modes
        print("\nTesting height modes:")

        for mode in [HeightMode.LUMINANCE, HeightMode.PALETTE_DISTANCE]:
            slicer.set_height_mode(mode, stepped=True)

            mesh_start = time.time()
            stats = slicer.get_mesh_stats()
            mesh_time = time.time() - mesh_start

            print(f"  {mode.value}:")
            print(f"    Mesh generation: {mesh_time*1000:.1f}ms")
            print(f"    Vertices: {stats['vertices']}")
            print(f"    Triangles: {stats['triangles']}")
            print(f"    Watertight: {stats['watertight']}")

        print("\n  Filament changes:")
        for event in slicer.layer_changes():
            print(f"    layer {event.layer_index:3d}  Z {event.z_mm:5.2f} mm  "
                  f"extruder {event.extruder}  {event.hex}")

        # Export to all formats
        print(f"\n  Exporting...")
        export_start = time.time()
        for target in ExportTarget:
            try:
                path = slicer.export(Path(str(output_dir / name) + target.suffix), target)
                print(f"    Saved: {path}")
            except Exception as e:
                print(f"    {target.value} export failed: {e}")

        export_time = time.time() - export_start
        photo_time = time.time() - photo_start

        print(f"    Export time: {export_time*1000:.1f}ms")
        print(f"    Total time: {photo_time*1000:.1f}ms")

    total_time = time.time() - total_start

    print("\n" + "=" * 60)
    print(f"Demo complete! Total time: {total_time:.2f}s")
    print(f"Output files in: {output_dir}")
    print("=" * 60)

    return 0


def benchmark_resolution():
    """Benchmark solid generation at increasing grid resolutions."""
    print("\n--- Resolution Benchmark ---\n")

    photo = create_test_photo_portrait(256)

    for resolution in [50, 100, 200, 400, 800]:
        slicer = PhotoSlicer(PrintSettings(resolution=resolution))
        slicer.load_array(photo).extract_palette(5)
        slicer.set_height_mode(HeightMode.PALETTE_DISTANCE)

        start = time.time()
        solid = slicer.build_solid()
        elapsed = time.time() - start

        print(f"Resolution: {resolution}")
        print(f"  {elapsed*1000:.1f}ms, {solid.vertex_count} verts, {solid.triangle_count} tris")
        print()


if __name__ == "__main__":
    run_demo()

    # Uncomment to run benchmark
    # benchmark_resolution()
