"""
PrusaSlicer 3MF Exporter

Adds the PrusaSlicer project parts to a 3MF package:
- slic3rpe model metadata
- Metadata/Slic3r_PE.config with print, filament and printer settings
- Metadata/Slic3r_PE_model.config with the object/volume description
- Metadata/thumbnail.png
- Metadata/Prusa_Slicer_custom_gcode_per_print_z.xml with one M600 color
  change per filament change

The solid is moved so its footprint is centered on the printer bed and it
rests on z = 0.
"""

from datetime import datetime
import logging
from typing import Dict, List, Optional, Tuple
from xml.sax.saxutils import quoteattr
import numpy as np

from ..config import PrintSettings
from ..layer_changes import LayerChangeCalculator, ToolChangeEvent
from ..layers import LayerStack
from ..surface import MeshData
from .base import ModelExporter
from .serialization import (
    IDENTITY_TRANSFORM,
    build_zip,
    content_types_xml,
    format_date,
    model_document,
    relationships_xml,
)
from .thumbnail import ThumbnailSource, png_bytes, prepare_thumbnail


logger = logging.getLogger(__name__)

SLIC3RPE_NAMESPACE = "http://schemas.slic3r.org/3mf/2017/06"

PRUSA_BED_SIZE = (250.0, 210.0)
PRUSA_BED_PADDING = 10.0
PRUSA_THUMBNAIL_SIZE = 256

PRUSA_PRINTER_DEFAULTS: Dict[str, str] = {
    "printer_model": "MK3S",
    "printer_settings_id": "Original Prusa i3 MK3S",
    "bed_shape": "0x0,250x0,250x210,0x210",
    "nozzle_diameter": "0.4",
    "gcode_flavor": "marlin",
    "filament_type": "PLA",
    "temperature": "210",
    "first_layer_temperature": "210",
    "bed_temperature": "60",
    "first_layer_bed_temperature": "60",
    "perimeters": "3",
    "fill_density": "20%",
    "support_material": "0",
    "color_change_gcode": "M600",
}


def place_on_bed(
    mesh: MeshData,
    bed_size: Tuple[float, float] = PRUSA_BED_SIZE,
    padding: float = PRUSA_BED_PADDING
) -> MeshData:
    """
    Translate a mesh so its footprint is centered on the bed and its lowest
    point touches z = 0.

    Logs a warning when the footprint plus padding does not fit the bed.
    """
    lo, hi = mesh.bounds()
    size = hi - lo
    if size[0] + 2 * padding > bed_size[0] or size[1] + 2 * padding > bed_size[1]:
        logger.warning(
            "Model footprint %.1f x %.1f mm exceeds the %.0f x %.0f mm bed with %.0f mm padding",
            size[0], size[1], bed_size[0], bed_size[1], padding
        )

    center = (lo[:2] + hi[:2]) / 2.0
    offset = np.array([bed_size[0] / 2.0 - center[0], bed_size[1] / 2.0 - center[1], -lo[2]])
    return mesh._replace(vertices=np.asarray(mesh.vertices, dtype=np.float64) + offset)


def custom_gcode_xml(events: List[ToolChangeEvent]) -> str:
    """Prusa_Slicer_custom_gcode_per_print_z.xml with one M600 per event."""
    lines = ['<?xml version="1.0" encoding="utf-8"?>', "<custom_gcodes_per_print_z>"]
    for event in events:
        lines.append(
            f'<code print_z="{event.z_mm:.6f}" type="0" extruder="1" '
            f'color="{event.hex}" extra="" gcode="M600"/>'
        )
    lines.append('<mode value="SingleExtruder"/>')
    lines.append("</custom_gcodes_per_print_z>")
    return "\n".join(lines) + "\n"


def slic3r_config(settings: PrintSettings, stack: Optional[LayerStack]) -> str:
    """Metadata/Slic3r_PE.config in PrusaSlicer's `; key = value` form."""
    values = dict(PRUSA_PRINTER_DEFAULTS)
    values["layer_height"] = f"{settings.layer_height:g}"
    values["first_layer_height"] = f"{settings.first_layer_height:g}"
    if stack is not None:
        values["filament_colour"] = stack[0].hex
        values["extruder_colour"] = stack[0].hex

    lines = ["; generated by photo_slicer", ""]
    lines.extend(f"; {key} = {values[key]}" for key in sorted(values))
    return "\n".join(lines) + "\n"


def model_config_xml(name: str, triangle_count: int) -> str:
    """Metadata/Slic3r_PE_model.config describing the single object volume."""
    return "\n".join([
        '<?xml version="1.0" encoding="UTF-8"?>',
        "<config>",
        ' <object id="1" instances_count="1">',
        f'  <metadata type="object" key="name" value={quoteattr(name)}/>',
        f'  <volume firstid="0" lastid="{max(triangle_count - 1, 0)}">',
        f'   <metadata type="volume" key="name" value={quoteattr(name)}/>',
        '   <metadata type="volume" key="volume_type" value="ModelPart"/>',
        '   <metadata type="volume" key="matrix" value="1 0 0 0 0 1 0 0 0 0 1 0 0 0 0 1"/>',
        '   <mesh edges_fixed="0" degenerate_facets="0" facets_removed="0" facets_reversed="0" backwards_edges="0"/>',
        "  </volume>",
        " </object>",
        "</config>",
    ]) + "\n"


class PrusaExporter(ModelExporter):
    """
    Export a solid as a PrusaSlicer project 3MF.
    """

    suffix = ".prusa.3mf"

    def __init__(
        self,
        creation_date: Optional[datetime] = None,
        bed_size: Tuple[float, float] = PRUSA_BED_SIZE,
        padding: float = PRUSA_BED_PADDING
    ):
        self.creation_date = creation_date
        self.bed_size = bed_size
        self.padding = padding

    def render(
        self,
        mesh: MeshData,
        stack: Optional[LayerStack] = None,
        settings: Optional[PrintSettings] = None,
        thumbnail: ThumbnailSource = None
    ) -> bytes:
        self._check_mesh(mesh)
        settings = settings or PrintSettings()
        placed = place_on_bed(mesh, self.bed_size, self.padding)

        events = (
            LayerChangeCalculator.from_settings(settings).events(stack)
            if stack is not None else []
        )

        metadata = {
            "Application": "photo_slicer",
            "slic3rpe:Version3mf": "1",
            "Title": settings.name,
            "CreationDate": format_date(self.creation_date),
        }
        model = model_document(
            placed,
            metadata=metadata,
            extra_namespaces={"slic3rpe": SLIC3RPE_NAMESPACE},
            object_name=settings.name,
            transform=IDENTITY_TRANSFORM,
        )
        image = prepare_thumbnail(thumbnail, PRUSA_THUMBNAIL_SIZE, context="PrusaSlicer export")

        logger.debug("Prusa 3MF: %d color changes", len(events))
        return build_zip([
            ("[Content_Types].xml", content_types_xml(include_png=True)),
            ("_rels/.rels", relationships_xml("Metadata/thumbnail.png")),
            ("3D/3dmodel.model", model),
            ("Metadata/thumbnail.png", png_bytes(image)),
            ("Metadata/Slic3r_PE.config", slic3r_config(settings, stack)),
            ("Metadata/Slic3r_PE_model.config", model_config_xml(settings.name, len(placed.indices))),
            ("Metadata/Prusa_Slicer_custom_gcode_per_print_z.xml", custom_gcode_xml(events)),
        ])
