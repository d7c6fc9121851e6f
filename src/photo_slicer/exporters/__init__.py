"""
Export modules for 3D printing formats.

Supported formats:
- STL (.stl) - Geometry only, binary or ASCII
- Generic 3MF (.3mf) - 3MF core package, color changes as notes
- PrusaSlicer 3MF (.prusa.3mf) - M600 color changes by print height
- Bambu Studio 3MF (.bambu.3mf) - Multi-filament tool changes by layer
"""

from ..config import ExportTarget
from .base import ModelExporter
from .stl_exporter import STLExporter
from .threemf_exporter import ThreeMFExporter
from .prusa_exporter import PrusaExporter
from .bambu_exporter import BambuExporter


def exporter_for(target: ExportTarget, **kwargs) -> ModelExporter:
    """
    Create the exporter for a target.

    Args:
        target: Output format
        **kwargs: Passed to the exporter constructor
    """
    classes = {
        ExportTarget.STL: STLExporter,
        ExportTarget.GENERIC_3MF: ThreeMFExporter,
        ExportTarget.PRUSA_3MF: PrusaExporter,
        ExportTarget.BAMBU_3MF: BambuExporter,
    }
    return classes[target](**kwargs)


__all__ = [
    "ModelExporter",
    "STLExporter",
    "ThreeMFExporter",
    "PrusaExporter",
    "BambuExporter",
    "exporter_for",
]
