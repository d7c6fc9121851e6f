"""
Command-Line Interface for Photo Slicer

Usage:
    photoslice photo.jpg -o relief --format stl 3mf
    photoslice photo.jpg --colors 4 --height-mode palette_distance --format bambu
    photoslice photo.jpg --layers layers.json --format prusa

"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional
import time

from . import __version__
from .config import (
    DEFAULT_BASE_THICKNESS,
    DEFAULT_COLORS,
    DEFAULT_LAYER_HEIGHT,
    DEFAULT_MODEL_MAX_HEIGHT,
    DEFAULT_MODEL_SIZE,
    DEFAULT_RESOLUTION,
    MAX_UI_RESOLUTION,
    MIN_UI_RESOLUTION,
    OPACITY_THRESHOLD,
    ExportTarget,
    PrintSettings,
)
from .generator import BatchProcessor, PhotoSlicer
from .heightmap import HeightMode
from .logging_config import setup_logging
from .palette import PaletteMode


logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="photoslice",
        description="Photo Slicer - Turn photos into multi-color 3D printable reliefs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  photoslice photo.jpg -o relief.stl
      Luminance relief as binary STL

  photoslice photo.jpg --colors 4 --height-mode palette_distance --format bambu
      Four extracted colors, Bambu Studio project with tool changes

  photoslice photo.jpg --layers layers.json --format prusa 3mf
      Use a saved layer stack, write PrusaSlicer and generic 3MF

  photoslice --batch photos/ --output-dir models/ --format stl
      Batch process all PNGs in a directory

Formats:
  stl     - Binary STL (geometry only)
  3mf     - Generic 3MF (color changes as notes)
  prusa   - PrusaSlicer 3MF with M600 color changes
  bambu   - Bambu Studio 3MF with per-layer tool changes
        """
    )

    # Input
    parser.add_argument(
        "input",
        nargs="?",
        help="Input photo"
    )

    # Output
    parser.add_argument(
        "-o", "--output",
        help="Output path; the format suffix is added per format"
    )

    parser.add_argument(
        "-f", "--format",
        nargs="+",
        choices=[t.value for t in ExportTarget],
        default=["stl"],
        help="Output format(s) (default: stl)"
    )

    parser.add_argument(
        "--ascii-stl",
        action="store_true",
        help="Write ASCII instead of binary STL"
    )

    # Palette
    parser.add_argument(
        "-c", "--colors",
        type=int,
        default=DEFAULT_COLORS,
        help=f"Number of filament colors, 2-15 (default: {DEFAULT_COLORS})"
    )

    parser.add_argument(
        "--palette-mode",
        choices=[m.value for m in PaletteMode],
        default=PaletteMode.DOMINANT.value,
        help="Palette strategy (default: dominant)"
    )

    parser.add_argument(
        "--layers",
        help="Load the layer stack from a JSON file instead of extracting it"
    )

    parser.add_argument(
        "--save-layers",
        help="Write the layer stack used for the export to a JSON file"
    )

    # Height mapping
    parser.add_argument(
        "--height-mode",
        choices=[m.value for m in HeightMode],
        default=HeightMode.LUMINANCE.value,
        help="Color to height mapping (default: luminance)"
    )

    parser.add_argument(
        "--stepped",
        action="store_true",
        help="Snap heights to whole print layers"
    )

    parser.add_argument(
        "--sampling",
        choices=["nearest", "bilinear"],
        default="bilinear",
        help="Image sampling filter (default: bilinear)"
    )

    # Physical parameters
    parser.add_argument(
        "--max-height",
        type=float,
        default=DEFAULT_MODEL_MAX_HEIGHT,
        help=f"Relief height in mm (default: {DEFAULT_MODEL_MAX_HEIGHT})"
    )

    parser.add_argument(
        "--layer-height",
        type=float,
        default=DEFAULT_LAYER_HEIGHT,
        help=f"Print layer height in mm (default: {DEFAULT_LAYER_HEIGHT})"
    )

    parser.add_argument(
        "--first-layer-height",
        type=float,
        help="First layer height in mm (default: 2 x layer height)"
    )

    parser.add_argument(
        "--base-thickness",
        type=float,
        default=DEFAULT_BASE_THICKNESS,
        help=f"Flat base below the relief in mm (default: {DEFAULT_BASE_THICKNESS})"
    )

    parser.add_argument(
        "-r", "--resolution",
        type=int,
        default=DEFAULT_RESOLUTION,
        help=f"Grid vertices along the longer side (default: {DEFAULT_RESOLUTION})"
    )

    parser.add_argument(
        "--size",
        type=float,
        default=DEFAULT_MODEL_SIZE,
        help=f"Length of the longer side in mm (default: {DEFAULT_MODEL_SIZE})"
    )

    parser.add_argument(
        "--opacity-threshold",
        type=int,
        default=OPACITY_THRESHOLD,
        help=f"Minimum alpha of pixels used for the palette (default: {OPACITY_THRESHOLD})"
    )

    parser.add_argument(
        "--max-dimension",
        type=int,
        help="Downscale photos whose longest side exceeds this many pixels"
    )

    # Batch processing
    parser.add_argument(
        "--batch",
        help="Batch process directory of images"
    )

    parser.add_argument(
        "--output-dir",
        help="Output directory for batch processing"
    )

    parser.add_argument(
        "--pattern",
        default="*.png",
        help="File pattern for batch processing (default: *.png)"
    )

    # Misc
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output with debug logging"
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only log warnings and errors"
    )

    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print mesh and layer statistics"
    )

    parser.add_argument(
        "--log-file",
        help="Also write log messages to this file"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def settings_from_args(args, name: str = "photo_slicer_model") -> PrintSettings:
    """Build PrintSettings from parsed arguments."""
    if not MIN_UI_RESOLUTION <= args.resolution <= MAX_UI_RESOLUTION:
        logger.warning(
            "Resolution %d is outside the usual range %d-%d",
            args.resolution, MIN_UI_RESOLUTION, MAX_UI_RESOLUTION
        )
    return PrintSettings(
        layer_height=args.layer_height,
        first_layer_height=args.first_layer_height,
        base_thickness=args.base_thickness,
        model_max_height=args.max_height,
        resolution=args.resolution,
        model_size=args.size,
        name=name,
    )


def strip_target_suffix(path: Path) -> Path:
    """Remove a known export suffix so per-format suffixes can be appended."""
    name = path.name
    for target in (ExportTarget.PRUSA_3MF, ExportTarget.BAMBU_3MF,
                   ExportTarget.GENERIC_3MF, ExportTarget.STL):
        if name.lower().endswith(target.suffix):
            return path.with_name(name[: -len(target.suffix)])
    return path


def print_stats(slicer: PhotoSlicer):
    stats = slicer.get_mesh_stats()
    print("\nMesh Statistics:")
    print(f"  Vertices: {stats['vertices']}")
    print(f"  Triangles: {stats['triangles']}")
    print(f"  Size: {stats['size_x']:.2f} x {stats['size_y']:.2f} x {stats['size_z']:.2f} mm")
    print(f"  Watertight: {stats['watertight']}")
    print(f"  Boundary edges: {stats['boundary_edges']}")
    print(f"  Total layers: {stats['total_layers']}")

    if slicer.layers is not None:
        print("\nPrint Sequence:")
        for layer_range in slicer.layer_ranges():
            hex_color = "#{:02x}{:02x}{:02x}".format(*layer_range.color)
            print(f"  {layer_range.extruder:2d}. {hex_color}  layers "
                  f"{layer_range.first_layer}-{layer_range.last_layer}")
        for event in slicer.layer_changes():
            print(f"  change to {event.hex} at layer {event.layer_index} (Z {event.z_mm:.2f} mm)")


def process_single(args) -> int:
    """Process a single image file."""
    if not args.input:
        print("Error: No input file specified", file=sys.stderr)
        return 1

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: Input file not found: {input_path}", file=sys.stderr)
        return 1

    # Determine output path
    if args.output:
        output_base = strip_target_suffix(Path(args.output))
    else:
        output_base = input_path.with_suffix("")

    start_time = time.time()

    try:
        slicer = PhotoSlicer(
            settings=settings_from_args(args, name=input_path.stem),
            opacity_threshold=args.opacity_threshold,
            max_dimension=args.max_dimension,
        )

        if args.verbose:
            print(f"Loading: {input_path}")
        slicer.load_image(input_path)

        if args.layers:
            slicer.load_layers(args.layers)
        elif args.height_mode == HeightMode.PALETTE_DISTANCE.value or any(
            fmt != ExportTarget.STL.value for fmt in args.format
        ) or args.save_layers:
            slicer.extract_palette(args.colors, args.palette_mode)

        if args.save_layers and slicer.layers is not None:
            slicer.save_layers(args.save_layers)
            if args.verbose:
                print(f"Saved layers: {args.save_layers}")

        slicer.set_height_mode(args.height_mode, stepped=args.stepped, sampling=args.sampling)

        if args.stats or args.verbose:
            print_stats(slicer)

        for fmt in args.format:
            target = ExportTarget(fmt)
            output_path = Path(str(output_base) + target.suffix)
            slicer.export(output_path, target, binary=not args.ascii_stl)
            if args.verbose:
                print(f"Exported: {output_path}")

        elapsed = time.time() - start_time
        if args.verbose:
            print(f"\nCompleted in {elapsed:.2f}s")

        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def process_batch(args) -> int:
    """Process a batch of images."""
    if not args.batch:
        print("Error: No batch directory specified", file=sys.stderr)
        return 1

    batch_dir = Path(args.batch)
    if not batch_dir.is_dir():
        print(f"Error: Batch directory not found: {batch_dir}", file=sys.stderr)
        return 1

    output_dir = Path(args.output_dir) if args.output_dir else batch_dir / "output"
    output_dir.mkdir(parents=True, exist_ok=True)

    start_time = time.time()

    try:
        processor = BatchProcessor(
            settings=settings_from_args(args),
            opacity_threshold=args.opacity_threshold,
            max_dimension=args.max_dimension,
        )

        outputs = processor.process_directory(
            batch_dir,
            output_dir,
            pattern=args.pattern,
            targets=args.format,
            num_colors=args.colors,
            palette_mode=args.palette_mode,
            height_mode=args.height_mode,
            stepped=args.stepped,
        )

        elapsed = time.time() - start_time
        print(f"Processed {len(outputs)} files in {elapsed:.2f}s")
        print(f"Output directory: {output_dir}")

        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def log_level(args: argparse.Namespace) -> int:
    """Logging level from --verbose / --quiet; verbose wins."""
    if args.verbose:
        return logging.DEBUG
    if args.quiet:
        return logging.WARNING
    return logging.INFO


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(log_level(args), args.log_file)

    if args.batch:
        return process_batch(args)
    return process_single(args)


if __name__ == "__main__":
    sys.exit(main())
