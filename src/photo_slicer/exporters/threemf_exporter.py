"""
Generic 3MF Exporter

A minimal 3MF core package: the model, its relationship file and the
content types. Filament changes are only described in human readable
model metadata; no slicer reads them.
"""

from datetime import datetime
from typing import List, Optional

from ..config import PrintSettings
from ..layer_changes import LayerChangeCalculator
from ..layers import LayerStack
from ..surface import MeshData
from .base import ModelExporter
from .serialization import build_zip, content_types_xml, format_date, model_document, relationships_xml
from .thumbnail import ThumbnailSource


def describe_layer_changes(stack: LayerStack, settings: PrintSettings) -> str:
    """
    Plain text print sequence: layer range of every color and the filament
    change heights.
    """
    calculator = LayerChangeCalculator.from_settings(settings)
    lines: List[str] = [
        f"Layer height {settings.layer_height:g} mm, first layer {settings.first_layer_height:g} mm, "
        f"{calculator.total_layers} layers total.",
    ]
    for layer_range in calculator.layer_ranges(stack):
        hex_color = "#{:02x}{:02x}{:02x}".format(*layer_range.color)
        lines.append(
            f"Color {layer_range.extruder} {hex_color}: layers "
            f"{layer_range.first_layer}-{layer_range.last_layer}"
        )
    for event in calculator.events(stack):
        lines.append(
            f"Change to {event.hex} at layer {event.layer_index} (Z {event.z_mm:.2f} mm)"
        )
    return "\n".join(lines)


class ThreeMFExporter(ModelExporter):
    """
    Export a solid as a generic 3MF package.
    """

    suffix = ".3mf"

    def __init__(self, creation_date: Optional[datetime] = None, designer: str = "photo_slicer"):
        """
        Args:
            creation_date: Fixed CreationDate metadata (defaults to now)
            designer: Designer metadata value
        """
        self.creation_date = creation_date
        self.designer = designer

    def render(
        self,
        mesh: MeshData,
        stack: Optional[LayerStack] = None,
        settings: Optional[PrintSettings] = None,
        thumbnail: ThumbnailSource = None
    ) -> bytes:
        self._check_mesh(mesh)
        settings = settings or PrintSettings()

        metadata = {
            "Title": settings.name,
            "Designer": self.designer,
            "CreationDate": format_date(self.creation_date),
        }
        if stack is not None:
            metadata["Description"] = describe_layer_changes(stack, settings)

        model = model_document(mesh, metadata=metadata, object_name=settings.name)
        return build_zip([
            ("[Content_Types].xml", content_types_xml()),
            ("_rels/.rels", relationships_xml()),
            ("3D/3dmodel.model", model),
        ])
