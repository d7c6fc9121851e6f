"""
Common exporter interface.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from ..config import PrintSettings
from ..exceptions import DegenerateGeometryError
from ..layers import LayerStack
from ..surface import MeshData
from .thumbnail import ThumbnailSource


logger = logging.getLogger(__name__)


class ModelExporter:
    """
    Base class of all exporters.

    Subclasses implement `render`, which turns a closed mesh plus print
    metadata into the bytes of one output file.
    """

    suffix = ".bin"

    def render(
        self,
        mesh: MeshData,
        stack: Optional[LayerStack] = None,
        settings: Optional[PrintSettings] = None,
        thumbnail: ThumbnailSource = None
    ) -> bytes:
        raise NotImplementedError

    def export(
        self,
        mesh: MeshData,
        output_path: Union[str, Path],
        stack: Optional[LayerStack] = None,
        settings: Optional[PrintSettings] = None,
        thumbnail: ThumbnailSource = None
    ) -> Path:
        """
        Render and write to a file.

        Args:
            mesh: Closed solid mesh
            output_path: Destination file
            stack: Layer stack (color-change metadata)
            settings: Print settings
            thumbnail: Preview image for slicer formats

        Returns:
            The written path
        """
        output_path = Path(output_path)
        data = self.render(mesh, stack, settings, thumbnail)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(data)
        logger.info("Wrote %s (%d bytes)", output_path, len(data))
        return output_path

    @staticmethod
    def _check_mesh(mesh: MeshData):
        if len(mesh.vertices) == 0 or len(mesh.indices) == 0:
            raise DegenerateGeometryError("Cannot export an empty mesh")
