"""
Bambu Studio 3MF Exporter

Package layout:
- 3D/3dmodel.model with a build transform centering the solid on the bed
- Metadata/project_settings.config: A1 profile merged with this print's
  layer heights and filament colors (JSON)
- Metadata/model_settings.config: object, plate and assembly description
- Metadata/slice_info.config: client header
- Metadata/plate_1.json: plate summary
- Metadata/custom_gcode_per_layer.xml: one tool change per filament change
- Thumbnails: plate_1.png, plate_1_small.png, plate_no_light_1.png,
  top_1.png, pick_1.png

Each layer of the stack is loaded as its own filament; the tool changes
switch between them at the heights computed by LayerChangeCalculator.
"""

from datetime import datetime
import json
import logging
from typing import Dict, List, Optional
from xml.sax.saxutils import quoteattr
import numpy as np
from PIL import Image

from ..config import PrintSettings
from ..layer_changes import LayerChangeCalculator, ToolChangeEvent
from ..layers import LayerStack
from ..surface import MeshData
from .base import ModelExporter
from .bambu_profile import A1_PROFILE, BAMBU_BED_SIZE, filament_colors, project_settings
from .serialization import MODEL_RELATIONSHIP, THUMBNAIL_RELATIONSHIP, build_zip, format_date, model_document
from .thumbnail import ThumbnailSource, fit_square, png_bytes, prepare_thumbnail


logger = logging.getLogger(__name__)

BAMBU_NAMESPACE = "http://schemas.bambulab.com/package/2021"
COVER_MIDDLE_RELATIONSHIP = "http://schemas.bambulab.com/package/2021/cover-thumbnail-middle"
COVER_SMALL_RELATIONSHIP = "http://schemas.bambulab.com/package/2021/cover-thumbnail-small"

THUMBNAIL_SIZE = 512
SMALL_THUMBNAIL_SIZE = 128
CLIENT_VERSION = A1_PROFILE["version"]


def custom_gcode_per_layer_xml(events: List[ToolChangeEvent]) -> str:
    """custom_gcode_per_layer.xml with one tool_change entry per event."""
    lines = [
        '<?xml version="1.0" encoding="utf-8"?>',
        "<custom_gcodes_per_layer>",
        "<plate>",
        '<plate_info id="1"/>',
    ]
    for event in events:
        lines.append(
            f'<layer top_z="{event.z_mm:.6f}" type="2" extruder="{event.extruder}" '
            f'color="{event.hex.upper()}" extra="" gcode="tool_change"/>'
        )
    lines.append('<mode value="MultiAsSingle"/>')
    lines.append("</plate>")
    lines.append("</custom_gcodes_per_layer>")
    return "\n".join(lines) + "\n"


def model_settings_xml(name: str, triangle_count: int, transform: str) -> str:
    """Metadata/model_settings.config for a single-part object on plate 1."""
    quoted = quoteattr(name)
    return "\n".join([
        '<?xml version="1.0" encoding="UTF-8"?>',
        "<config>",
        '  <object id="1">',
        f'    <metadata key="name" value={quoted}/>',
        '    <metadata key="extruder" value="1"/>',
        f'    <metadata face_count="{triangle_count}"/>',
        '    <part id="1" subtype="normal_part">',
        f'      <metadata key="name" value={quoted}/>',
        '      <metadata key="matrix" value="1 0 0 0 0 1 0 0 0 0 1 0 0 0 0 1"/>',
        '      <metadata key="source_object_id" value="0"/>',
        '      <metadata key="source_volume_id" value="0"/>',
        f'      <mesh_stat face_count="{triangle_count}" edges_fixed="0" degenerate_facets="0" '
        'facets_removed="0" facets_reversed="0" backwards_edges="0"/>',
        "    </part>",
        "  </object>",
        "  <plate>",
        '    <metadata key="plater_id" value="1"/>',
        '    <metadata key="plater_name" value=""/>',
        '    <metadata key="locked" value="false"/>',
        '    <metadata key="thumbnail_file" value="Metadata/plate_1.png"/>',
        '    <metadata key="thumbnail_no_light_file" value="Metadata/plate_no_light_1.png"/>',
        '    <metadata key="top_file" value="Metadata/top_1.png"/>',
        '    <metadata key="pick_file" value="Metadata/pick_1.png"/>',
        "    <model_instance>",
        '      <metadata key="object_id" value="1"/>',
        '      <metadata key="instance_id" value="0"/>',
        '      <metadata key="identify_id" value="1"/>',
        "    </model_instance>",
        "  </plate>",
        "  <assemble>",
        f'   <assemble_item object_id="1" instance_id="0" transform="{transform}" offset="0 0 0"/>',
        "  </assemble>",
        "</config>",
    ]) + "\n"


def slice_info_xml() -> str:
    return "\n".join([
        '<?xml version="1.0" encoding="UTF-8"?>',
        "<config>",
        "  <header>",
        '    <header_item key="X-BBL-Client-Type" value="slicer"/>',
        f'    <header_item key="X-BBL-Client-Version" value="{CLIENT_VERSION}"/>',
        "  </header>",
        "</config>",
    ]) + "\n"


def plate_json(mesh: MeshData, offset: np.ndarray, stack: LayerStack) -> str:
    """Metadata/plate_1.json with the bed-space bounding box and filaments."""
    lo, hi = mesh.bounds()
    lo = lo + offset
    hi = hi + offset
    plate = {
        "bbox_all": [round(float(lo[0]), 4), round(float(lo[1]), 4),
                     round(float(hi[0]), 4), round(float(hi[1]), 4)],
        "bed_type": "textured_plate",
        "filament_colors": filament_colors(stack),
        "filament_ids": list(range(len(stack))),
        "first_extruder": 1,
        "is_seq_print": False,
        "nozzle_diameter": 0.4,
        "version": 2,
    }
    return json.dumps(plate, indent=4)


def relationships_xml() -> str:
    return "\n".join([
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">',
        f'  <Relationship Target="/3D/3dmodel.model" Id="rel-1" Type="{MODEL_RELATIONSHIP}"/>',
        f'  <Relationship Target="/Metadata/plate_1.png" Id="rel-2" Type="{THUMBNAIL_RELATIONSHIP}"/>',
        f'  <Relationship Target="/Metadata/plate_1.png" Id="rel-4" Type="{COVER_MIDDLE_RELATIONSHIP}"/>',
        f'  <Relationship Target="/Metadata/plate_1_small.png" Id="rel-5" Type="{COVER_SMALL_RELATIONSHIP}"/>',
        "</Relationships>",
    ]) + "\n"


def content_types_xml() -> str:
    return "\n".join([
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">',
        '  <Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>',
        '  <Default Extension="model" ContentType="application/vnd.ms-package.3dmanufacturing-3dmodel+xml"/>',
        '  <Default Extension="png" ContentType="image/png"/>',
        '  <Default Extension="gcode" ContentType="text/x.gcode"/>',
        "</Types>",
    ]) + "\n"


def thumbnail_variants(base: Image.Image) -> Dict[str, bytes]:
    """
    Encode the thumbnail set Bambu Studio shows for plate 1.

    Args:
        base: Square RGBA thumbnail of THUMBNAIL_SIZE
    """
    dark = Image.new("RGBA", base.size, (40, 40, 40, 255))
    dark.paste(base, (0, 0), base)

    # Object picking mask: a flat silhouette of the opaque area
    alpha = base.getchannel("A")
    pick = Image.new("RGBA", base.size, (0, 0, 0, 0))
    pick.paste(Image.new("RGBA", base.size, (255, 0, 0, 255)), (0, 0), alpha)

    return {
        "Metadata/plate_1.png": png_bytes(base),
        "Metadata/plate_1_small.png": png_bytes(fit_square(base, SMALL_THUMBNAIL_SIZE)),
        "Metadata/plate_no_light_1.png": png_bytes(dark),
        "Metadata/top_1.png": png_bytes(base),
        "Metadata/pick_1.png": png_bytes(pick),
    }


class BambuExporter(ModelExporter):
    """
    Export a solid as a Bambu Studio project 3MF.
    """

    suffix = ".bambu.3mf"

    def __init__(self, creation_date: Optional[datetime] = None):
        self.creation_date = creation_date

    def render(
        self,
        mesh: MeshData,
        stack: Optional[LayerStack] = None,
        settings: Optional[PrintSettings] = None,
        thumbnail: ThumbnailSource = None
    ) -> bytes:
        self._check_mesh(mesh)
        if stack is None:
            raise ValueError("Bambu export needs a layer stack for the filament list")
        settings = settings or PrintSettings()

        lo, hi = mesh.bounds()
        center = (lo + hi) / 2.0
        offset = np.array([BAMBU_BED_SIZE[0] / 2.0 - center[0],
                           BAMBU_BED_SIZE[1] / 2.0 - center[1],
                           -lo[2]])
        transform = "1 0 0 0 1 0 0 0 1 {:.6f} {:.6f} {:.6f}".format(*offset)

        events = LayerChangeCalculator.from_settings(settings).events(stack)
        date = format_date(self.creation_date)
        metadata = {
            "Application": "photo_slicer",
            "BambuStudio:3mfVersion": "1",
            "Title": settings.name,
            "CreationDate": date,
            "ModificationDate": date,
        }
        model = model_document(
            mesh,
            metadata=metadata,
            extra_namespaces={"BambuStudio": BAMBU_NAMESPACE},
            object_name=settings.name,
            transform=transform,
        )

        base = prepare_thumbnail(thumbnail, THUMBNAIL_SIZE, context="Bambu Studio export")
        thumbnails = thumbnail_variants(base)

        entries = [
            ("[Content_Types].xml", content_types_xml()),
            ("_rels/.rels", relationships_xml()),
            ("3D/3dmodel.model", model),
            ("Metadata/project_settings.config",
             json.dumps(project_settings(settings, stack), indent=4)),
            ("Metadata/model_settings.config",
             model_settings_xml(settings.name, len(mesh.indices), transform)),
            ("Metadata/slice_info.config", slice_info_xml()),
            ("Metadata/plate_1.json", plate_json(mesh, offset, stack)),
            ("Metadata/custom_gcode_per_layer.xml", custom_gcode_per_layer_xml(events)),
        ]
        entries.extend(thumbnails.items())

        logger.debug("Bambu 3MF: %d filaments, %d tool changes", len(stack), len(events))
        return build_zip(entries)
