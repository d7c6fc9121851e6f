"""
Layer-Change Calculator

Converts the height fractions of a layer stack into the printed layer and Z
height at which the printer has to switch filament. Every exporter uses this
one calculation.

Formula:
    total_layers = floor((total_height - first_layer_height) / layer_height) + 1
    layer_index  = floor(fraction * total_layers + 0.5)      (round half up)
    z            = first_layer_height + layer_height * (layer_index - 1)

The layer count includes the base, so fractions are fractions of the whole
print, not only of the relief above the base.
"""

import logging
import math
from typing import List, NamedTuple, Optional, Tuple

from .config import PrintSettings, total_layer_count
from .layers import LayerStack


logger = logging.getLogger(__name__)


class ToolChangeEvent(NamedTuple):
    """A filament switch at the start of a printed layer."""
    z_mm: float
    layer_index: int
    color: Tuple[int, int, int]
    extruder: int

    @property
    def hex(self) -> str:
        return "#{:02x}{:02x}{:02x}".format(*self.color)


class LayerRange(NamedTuple):
    """First and last printed layer (1-based, inclusive) of one color."""
    color: Tuple[int, int, int]
    first_layer: int
    last_layer: int
    extruder: int

    @property
    def layer_count(self) -> int:
        return max(0, self.last_layer - self.first_layer + 1)


class LayerChangeCalculator:
    """
    Tool-change schedule of a layer stack.

    Attributes:
        layer_height: Regular layer height (mm)
        first_layer_height: First layer height (mm)
        base_thickness: Flat base height (mm)
        total_height: Height of the printed solid (mm)
    """

    def __init__(
        self,
        layer_height: float,
        first_layer_height: float,
        base_thickness: float,
        total_height: Optional[float] = None,
        model_max_height: Optional[float] = None
    ):
        if layer_height <= 0:
            raise ValueError(f"layer_height must be positive, got {layer_height}")
        if first_layer_height <= 0:
            raise ValueError(f"first_layer_height must be positive, got {first_layer_height}")

        if total_height is None:
            if model_max_height is None:
                raise ValueError("Either total_height or model_max_height is required")
            total_height = base_thickness + model_max_height

        self.layer_height = layer_height
        self.first_layer_height = first_layer_height
        self.base_thickness = base_thickness
        self.total_height = total_height

    @classmethod
    def from_settings(cls, settings: PrintSettings) -> "LayerChangeCalculator":
        return cls(
            layer_height=settings.layer_height,
            first_layer_height=settings.first_layer_height,
            base_thickness=settings.base_thickness,
            total_height=settings.total_height,
        )

    @property
    def total_layers(self) -> int:
        return total_layer_count(self.total_height, self.layer_height, self.first_layer_height)

    def layer_index(self, fraction: float) -> int:
        """Printed layer (1-based) at which the color with `fraction` starts."""
        total = self.total_layers
        index = int(math.floor(fraction * total + 0.5))
        return min(max(index, 1), total)

    def z_for_layer(self, layer_index: int) -> float:
        """Bottom Z of a printed layer, rounded to 6 decimals."""
        return round(self.first_layer_height + self.layer_height * (layer_index - 1), 6)

    def events(self, stack: LayerStack) -> List[ToolChangeEvent]:
        """
        Filament changes for every layer above the bottom one.

        Each color starts at the layer its own height fraction rounds to.

        Returns:
            Events ordered bottom to top; extruder is the 1-based position of
            the incoming color in the stack
        """
        events = []
        for position in range(1, len(stack)):
            index = self.layer_index(stack[position].height_fraction)
            events.append(ToolChangeEvent(
                z_mm=self.z_for_layer(index),
                layer_index=index,
                color=stack[position].color,
                extruder=position + 1,
            ))

        logger.debug(
            "%d tool changes over %d layers", len(events), self.total_layers
        )
        return events

    def layer_ranges(self, stack: LayerStack) -> List[LayerRange]:
        """
        Printed layer range of every color, bottom to top.

        A color squeezed between two changes on the same layer gets an empty
        range (last_layer < first_layer).
        """
        total = self.total_layers
        starts = [1] + [event.layer_index for event in self.events(stack)]
        for position in range(1, len(starts)):
            starts[position] = max(starts[position], starts[position - 1])

        ranges = []
        for position, layer in enumerate(stack):
            end = total if position == len(stack) - 1 else starts[position + 1] - 1
            ranges.append(LayerRange(layer.color, starts[position], end, position + 1))
        return ranges
