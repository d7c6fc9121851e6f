"""
Bambu Studio default project profile (Bambu Lab A1, 0.4 mm nozzle, PLA).

The profile is a read-only mapping loaded once at import; exporters copy it
and overlay the values computed for each print.
"""

from types import MappingProxyType
from typing import Any, Dict, List, Mapping

from ..config import PrintSettings
from ..layers import LayerStack


BAMBU_BED_SIZE = (256.0, 256.0)

A1_PROFILE: Mapping[str, Any] = MappingProxyType({
    # Printer
    "printer_model": "Bambu Lab A1",
    "printer_settings_id": "Bambu Lab A1 0.4 nozzle",
    "print_settings_id": "0.08mm Extra Fine @BBL A1",
    "printable_area": ("0x0", "256x0", "256x256", "0x256"),
    "printable_height": "256",
    "nozzle_diameter": ("0.4",),

    # Layers
    "layer_height": "0.08",
    "initial_layer_print_height": "0.16",

    # Walls and infill
    "wall_loops": "2",
    "outer_wall_line_width": "0.42",
    "inner_wall_line_width": "0.45",
    "sparse_infill_density": "100%",
    "sparse_infill_pattern": "zig-zag",
    "sparse_infill_line_width": "0.45",

    # Filament
    "filament_settings_id": ("Generic PLA @BBL A1",),
    "filament_colour": ("#181c20", "#534d47", "#8d7b70", "#b7b2a9", "#e3e4de"),
    "filament_type": ("PLA",),
    "filament_diameter": ("1.75",),

    # Temperatures and cooling
    "nozzle_temperature": ("220",),
    "nozzle_temperature_initial_layer": ("220",),
    "bed_temperature": ("65",),
    "bed_temperature_initial_layer": ("65",),
    "fan_speed": ("70",),
    "min_fan_speed": ("60",),
    "max_fan_speed": ("80",),

    "enable_support": "0",
    "print_sequence": "by layer",
    "gcode_flavor": "marlin",
    "version": "01.10.02.76",
    "different_settings_to_system": (
        "initial_layer_print_height;layer_height", "", "", "", "", "",
    ),
    "default_print_profile": "0.20mm Standard @BBL A1",
})

# Per-filament settings repeated once per loaded filament
PER_FILAMENT_KEYS = (
    "filament_settings_id",
    "filament_type",
    "filament_diameter",
    "nozzle_temperature",
    "nozzle_temperature_initial_layer",
    "bed_temperature",
    "bed_temperature_initial_layer",
    "fan_speed",
    "min_fan_speed",
    "max_fan_speed",
)


def _plain(value: Any) -> Any:
    return list(value) if isinstance(value, tuple) else value


def project_settings(settings: PrintSettings, stack: LayerStack) -> Dict[str, Any]:
    """
    Project settings for one print: the A1 profile with the layer heights
    and the filament list of the stack.
    """
    merged: Dict[str, Any] = {key: _plain(value) for key, value in A1_PROFILE.items()}
    filament_count = len(stack)

    merged["layer_height"] = f"{settings.layer_height:g}"
    merged["initial_layer_print_height"] = f"{settings.first_layer_height:g}"
    merged["filament_colour"] = filament_colors(stack)
    for key in PER_FILAMENT_KEYS:
        merged[key] = [A1_PROFILE[key][0]] * filament_count
    return merged


def filament_colors(stack: LayerStack) -> List[str]:
    return [color.upper() for color in stack.hex_colors]
