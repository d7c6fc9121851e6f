"""
STL Exporter

Triangle soup with one normal per facet, in millimetres. STL has no notion
of color, so the layer stack is ignored.
"""

from typing import Optional

from ..config import PrintSettings
from ..layers import LayerStack
from ..surface import MeshData
from .base import ModelExporter
from .serialization import stl_ascii, stl_binary
from .thumbnail import ThumbnailSource


class STLExporter(ModelExporter):
    """
    Export a solid to binary (default) or ASCII STL.
    """

    suffix = ".stl"

    def __init__(self, binary: bool = True):
        self.binary = binary

    def render(
        self,
        mesh: MeshData,
        stack: Optional[LayerStack] = None,
        settings: Optional[PrintSettings] = None,
        thumbnail: ThumbnailSource = None
    ) -> bytes:
        self._check_mesh(mesh)
        name = settings.name if settings is not None else "photo_slicer"
        if self.binary:
            return stl_binary(mesh, header=f"{name} binary STL")
        return stl_ascii(mesh, name=name)
