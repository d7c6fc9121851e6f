"""
Print Settings and Pipeline Defaults

Physical parameters shared by the mesh builders, the layer-change calculator
and every exporter. Values are millimetres unless noted otherwise.

Conventions:
- The first printed layer is twice the regular layer height
- The relief sits on top of a flat base of `base_thickness`
- Total print height = base thickness + maximum relief height
"""

from dataclasses import dataclass, field
from enum import Enum
import math
from typing import Optional


# Layer defaults
DEFAULT_LAYER_HEIGHT = 0.08
DEFAULT_BASE_THICKNESS = 0.16
DEFAULT_MODEL_MAX_HEIGHT = 2.0

# Mesh defaults
DEFAULT_RESOLUTION = 200
MIN_UI_RESOLUTION = 50
MAX_UI_RESOLUTION = 800
DEFAULT_MODEL_SIZE = 100.0

# Palette limits
MIN_COLORS = 2
MAX_COLORS = 15
DEFAULT_COLORS = 5

# Pixels below this alpha are ignored by the palette extractor (~98% opaque)
OPACITY_THRESHOLD = 250

# Transmission distances at or below zero are clamped to this before blending
TD_EPSILON = 1e-6

# Corner deduplication distance for the base cap (scale-sensitive)
DEFAULT_MERGE_TOLERANCE = 1e-3


class ExportTarget(Enum):
    """Output container formats."""
    STL = "stl"
    GENERIC_3MF = "3mf"
    PRUSA_3MF = "prusa"
    BAMBU_3MF = "bambu"

    @property
    def suffix(self) -> str:
        """File name suffix used when writing this target."""
        return {
            ExportTarget.STL: ".stl",
            ExportTarget.GENERIC_3MF: ".3mf",
            ExportTarget.PRUSA_3MF: ".prusa.3mf",
            ExportTarget.BAMBU_3MF: ".bambu.3mf",
        }[self]

    @property
    def needs_thumbnail(self) -> bool:
        """Slicer-specific containers embed preview images."""
        return self in (ExportTarget.PRUSA_3MF, ExportTarget.BAMBU_3MF)


def round_to_hundredths(value: float) -> float:
    """Round to two decimals (layer heights are shown and stored this way)."""
    return round(value * 100) / 100


@dataclass(frozen=True)
class PrintSettings:
    """
    Physical parameters for one export.

    Attributes:
        layer_height: Regular layer height
        first_layer_height: First layer height (defaults to 2 x layer_height)
        base_thickness: Flat base below the relief (0 = walls only)
        model_max_height: Relief height reached by the top layer color
        resolution: Grid vertices along the longer image axis
        model_size: Physical length of the longer image axis
    """

    layer_height: float = DEFAULT_LAYER_HEIGHT
    first_layer_height: Optional[float] = None
    base_thickness: float = DEFAULT_BASE_THICKNESS
    model_max_height: float = DEFAULT_MODEL_MAX_HEIGHT
    resolution: int = DEFAULT_RESOLUTION
    model_size: float = DEFAULT_MODEL_SIZE
    name: str = field(default="photo_slicer_model")

    def __post_init__(self):
        if self.layer_height <= 0:
            raise ValueError(f"layer_height must be positive, got {self.layer_height}")
        if self.base_thickness < 0:
            raise ValueError(f"base_thickness must be >= 0, got {self.base_thickness}")
        if self.model_max_height < 0:
            raise ValueError(f"model_max_height must be >= 0, got {self.model_max_height}")
        if self.resolution < 1:
            raise ValueError(f"resolution must be >= 1, got {self.resolution}")
        if self.model_size <= 0:
            raise ValueError(f"model_size must be positive, got {self.model_size}")

        if self.first_layer_height is None:
            object.__setattr__(
                self, "first_layer_height", round_to_hundredths(self.layer_height * 2)
            )
        elif self.first_layer_height <= 0:
            raise ValueError(
                f"first_layer_height must be positive, got {self.first_layer_height}"
            )

    @property
    def total_height(self) -> float:
        """Height of the printed solid from the bed to the tallest point."""
        return self.base_thickness + self.model_max_height

    @property
    def base_layer_count(self) -> int:
        """Number of regular layers that fit in the base."""
        return int(math.floor(self.base_thickness / self.layer_height + 1e-9))

    @property
    def total_layer_count(self) -> int:
        """First layer plus the regular layers needed to reach total_height."""
        return total_layer_count(self.total_height, self.layer_height, self.first_layer_height)


def total_layer_count(
    total_print_height: float,
    layer_height: float,
    first_layer_height: float
) -> int:
    """
    Count the printed layers of a solid.

    total = floor((total_print_height - first_layer_height) / layer_height) + 1

    A small epsilon absorbs binary rounding (2.08 - 0.16 = 1.9199999...).
    """
    if total_print_height <= first_layer_height:
        return 1
    regular = (total_print_height - first_layer_height) / layer_height
    return int(math.floor(regular + 1e-9)) + 1
