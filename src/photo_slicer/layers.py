"""
Layer Stack Module

A layer stack is the ordered list of filament colors of a print, bottom
first. Each entry owns the band of heights up to its `height_fraction` of
the relief, so the last entry always ends at 1.0.

Stacks are immutable values: the edit operations used by an interactive
editor (add a color, remove a color, drag a divider) return new, validated
stacks.
"""

from dataclasses import dataclass, replace
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union
import numpy as np

from .color import hex_to_rgb, rgb_to_hex
from .config import MAX_COLORS, MIN_COLORS, TD_EPSILON
from .exceptions import LayerStackError


logger = logging.getLogger(__name__)

DEFAULT_TD = 1.5

# Tolerance for accepting a top fraction as 1.0 and minimum gap kept by edits
FRACTION_EPSILON = 1e-6
MIN_DIVIDER_GAP = 1e-3


@dataclass(frozen=True)
class LayerSpec:
    """
    One filament color of the stack.

    Attributes:
        color: RGB color (0-255 per channel)
        height_fraction: Top of this color's band, in (0, 1]
        td: Transmission distance of the filament (mm)
    """

    color: Tuple[int, int, int]
    height_fraction: float
    td: float = DEFAULT_TD

    @property
    def hex(self) -> str:
        return rgb_to_hex(*self.color)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "LayerSpec":
        """
        Build from the wire form {"color": "#RRGGBB", "heightPercentage": 0..100, "td": float}.
        """
        try:
            color = data["color"]
            percentage = float(data["heightPercentage"])
            td = float(data.get("td", DEFAULT_TD))
        except KeyError as e:
            raise LayerStackError(f"Layer entry missing field {e}") from None
        except (TypeError, ValueError) as e:
            raise LayerStackError(f"Invalid layer entry {data!r}: {e}") from None

        try:
            rgb = hex_to_rgb(color)
        except (AttributeError, ValueError) as e:
            raise LayerStackError(str(e)) from None

        return cls(rgb, percentage / 100.0, td)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "color": self.hex,
            "heightPercentage": round(self.height_fraction * 100.0, 6),
            "td": self.td,
        }


def _as_rgb(color: Union[str, Sequence[int]]) -> Tuple[int, int, int]:
    if isinstance(color, str):
        try:
            return hex_to_rgb(color)
        except ValueError as e:
            raise LayerStackError(str(e)) from None
    rgb = tuple(int(c) for c in color)
    if len(rgb) != 3 or any(c < 0 or c > 255 for c in rgb):
        raise LayerStackError(f"Invalid RGB color: {color!r}")
    return rgb


class LayerStack:
    """
    Immutable, validated sequence of LayerSpecs.

    Invariants:
    - between 2 and 15 layers
    - height fractions strictly increasing, all in (0, 1]
    - the last fraction is exactly 1.0
    - every transmission distance is positive
    """

    def __init__(self, layers: Iterable[LayerSpec]):
        layers = [
            replace(layer, color=_as_rgb(layer.color), height_fraction=float(layer.height_fraction))
            for layer in layers
        ]

        if not MIN_COLORS <= len(layers) <= MAX_COLORS:
            raise LayerStackError(
                f"A layer stack needs {MIN_COLORS} to {MAX_COLORS} layers, got {len(layers)}"
            )

        previous = 0.0
        for i, layer in enumerate(layers):
            if not layer.height_fraction > previous:
                raise LayerStackError(
                    f"Height fractions must be strictly increasing "
                    f"(layer {i}: {layer.height_fraction} after {previous})"
                )
            previous = layer.height_fraction

        top = layers[-1].height_fraction
        if abs(top - 1.0) > FRACTION_EPSILON:
            raise LayerStackError(f"The top layer must end at 1.0, got {top}")
        layers[-1] = replace(layers[-1], height_fraction=1.0)

        for i, layer in enumerate(layers):
            if layer.td <= 0:
                logger.warning(
                    "Layer %d has non-positive transmission distance %s; clamping to %g",
                    i, layer.td, TD_EPSILON
                )
                layers[i] = replace(layer, td=TD_EPSILON)

        self._layers = tuple(layers)

    # --- sequence protocol ---

    def __len__(self) -> int:
        return len(self._layers)

    def __iter__(self) -> Iterator[LayerSpec]:
        return iter(self._layers)

    def __getitem__(self, index: int) -> LayerSpec:
        return self._layers[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LayerStack):
            return NotImplemented
        return self._layers == other._layers

    def __hash__(self) -> int:
        return hash(self._layers)

    def __repr__(self) -> str:
        entries = ", ".join(
            f"{layer.hex}@{layer.height_fraction:.3f}" for layer in self._layers
        )
        return f"LayerStack([{entries}])"

    @property
    def layers(self) -> Tuple[LayerSpec, ...]:
        return self._layers

    @property
    def colors(self) -> np.ndarray:
        """(N, 3) float64 array of layer colors."""
        return np.array([layer.color for layer in self._layers], dtype=np.float64)

    @property
    def fractions(self) -> np.ndarray:
        return np.array([layer.height_fraction for layer in self._layers], dtype=np.float64)

    @property
    def tds(self) -> np.ndarray:
        return np.array([layer.td for layer in self._layers], dtype=np.float64)

    @property
    def hex_colors(self) -> List[str]:
        return [layer.hex for layer in self._layers]

    # --- construction helpers ---

    @classmethod
    def from_colors(
        cls,
        colors: Sequence[Union[str, Sequence[int]]],
        fractions: Optional[Sequence[float]] = None,
        tds: Optional[Sequence[float]] = None
    ) -> "LayerStack":
        """
        Build a stack from colors, with evenly spaced fractions by default.

        Args:
            colors: Hex strings or RGB triples, bottom first
            fractions: Optional explicit height fractions
            tds: Optional transmission distances (default 1.5 each)
        """
        n = len(colors)
        if fractions is None:
            fractions = [(i + 1) / n for i in range(n)] if n else []
        if tds is None:
            tds = [DEFAULT_TD] * n
        if not (len(fractions) == n and len(tds) == n):
            raise LayerStackError("colors, fractions and tds must have equal length")
        return cls(
            LayerSpec(_as_rgb(c), float(f), float(t))
            for c, f, t in zip(colors, fractions, tds)
        )

    @classmethod
    def from_wire(cls, entries: Iterable[Dict[str, Any]]) -> "LayerStack":
        """Build a stack from a list of wire-form dicts."""
        return cls(LayerSpec.from_wire(entry) for entry in entries)

    def to_wire(self) -> List[Dict[str, Any]]:
        return [layer.to_wire() for layer in self._layers]

    @classmethod
    def from_json(cls, text: str) -> "LayerStack":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise LayerStackError(f"Invalid layer JSON: {e}") from None
        if isinstance(data, dict):
            data = data.get("layers")
        if not isinstance(data, list):
            raise LayerStackError("Layer JSON must be a list of layer entries")
        return cls.from_wire(data)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_wire(), indent=indent)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "LayerStack":
        """Read a stack from a JSON file."""
        return cls.from_json(Path(path).read_text(encoding="utf-8"))

    def save(self, path: Union[str, Path]) -> Path:
        """Write the stack as JSON and return the path."""
        path = Path(path)
        path.write_text(self.to_json() + "\n", encoding="utf-8")
        return path

    # --- edits ---

    def add_layer(
        self,
        color: Union[str, Sequence[int]],
        td: float = DEFAULT_TD,
        index: Optional[int] = None
    ) -> "LayerStack":
        """
        Insert a new color and return the new stack.

        Args:
            color: Hex string or RGB triple
            td: Transmission distance of the new filament
            index: Position of the new layer. None (or len) puts it on top:
                it ends at 1.0 and the previous top is shortened to the
                midpoint of its band. Otherwise the new layer takes the lower
                half of the band of the layer currently at `index`.
        """
        n = len(self._layers)
        if n >= MAX_COLORS:
            raise LayerStackError(f"A layer stack holds at most {MAX_COLORS} layers")

        rgb = _as_rgb(color)
        layers = list(self._layers)

        if index is None or index == n:
            below = layers[-2].height_fraction if n >= 2 else 0.0
            layers[-1] = replace(layers[-1], height_fraction=(below + 1.0) / 2.0)
            layers.append(LayerSpec(rgb, 1.0, td))
        else:
            if not 0 <= index < n:
                raise LayerStackError(f"Layer index {index} out of range [0, {n}]")
            below = layers[index - 1].height_fraction if index > 0 else 0.0
            top = layers[index].height_fraction
            layers.insert(index, LayerSpec(rgb, (below + top) / 2.0, td))

        return LayerStack(layers)

    def remove_layer(self, index: int) -> "LayerStack":
        """
        Remove a layer; the remaining top layer is extended to 1.0.

        Raises:
            LayerStackError: If fewer than 2 layers would remain
        """
        n = len(self._layers)
        if not -n <= index < n:
            raise LayerStackError(f"Layer index {index} out of range [0, {n})")
        if n - 1 < MIN_COLORS:
            raise LayerStackError(f"A layer stack needs at least {MIN_COLORS} layers")

        layers = [layer for i, layer in enumerate(self._layers) if i != index % n]
        layers[-1] = replace(layers[-1], height_fraction=1.0)
        return LayerStack(layers)

    def move_divider(self, index: int, fraction: float) -> "LayerStack":
        """
        Move the top edge of layer `index` to `fraction`.

        The new value is clamped between the neighboring dividers (keeping a
        small gap so fractions stay strictly increasing). The top layer
        always ends at 1.0 and cannot be moved.
        """
        n = len(self._layers)
        if not 0 <= index < n - 1:
            raise LayerStackError(f"Divider index {index} out of range [0, {n - 1})")

        low = self._layers[index - 1].height_fraction if index > 0 else 0.0
        high = self._layers[index + 1].height_fraction
        clamped = min(max(float(fraction), low + MIN_DIVIDER_GAP), high - MIN_DIVIDER_GAP)
        if clamped <= low or clamped >= high:
            raise LayerStackError(
                f"No room to move divider {index} between {low} and {high}"
            )

        layers = list(self._layers)
        layers[index] = replace(layers[index], height_fraction=clamped)
        return LayerStack(layers)

    def set_color(self, index: int, color: Union[str, Sequence[int]]) -> "LayerStack":
        """Return a stack with layer `index` recolored."""
        layers = list(self._layers)
        try:
            layers[index] = replace(layers[index], color=_as_rgb(color))
        except IndexError:
            raise LayerStackError(f"Layer index {index} out of range") from None
        return LayerStack(layers)
