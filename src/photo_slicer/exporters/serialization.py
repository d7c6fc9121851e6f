"""
Shared Serialization Helpers

Text and binary encodings used by every exporter:
- 3MF <vertex>/<triangle> element text and the core model document
- ASCII and binary STL facets
- Deterministic ZIP packaging (fixed entry timestamps)
"""

from datetime import datetime
import io
import struct
from typing import Dict, Iterable, List, Optional, Tuple
from xml.sax.saxutils import escape, quoteattr
import zipfile
import numpy as np

from ..surface import MeshData, face_normals


CORE_NAMESPACE = "http://schemas.microsoft.com/3dmanufacturing/core/2015/02"
MODEL_RELATIONSHIP = "http://schemas.microsoft.com/3dmanufacturing/2013/01/3dmodel"
THUMBNAIL_RELATIONSHIP = "http://schemas.openxmlformats.org/package/2006/relationships/metadata/thumbnail"

# ZIP timestamps cannot predate 1980
FIXED_ZIP_DATE = (1980, 1, 1, 0, 0, 0)

IDENTITY_TRANSFORM = "1 0 0 0 1 0 0 0 1 0 0 0"


def format_float(value: float) -> str:
    """Fixed 6-decimal text, with negative zero normalized."""
    text = f"{value:.6f}"
    return "0.000000" if text == "-0.000000" else text


def vertices_xml(vertices: np.ndarray, indent: str = "          ") -> str:
    """One <vertex x=".." y=".." z=".."/> line per vertex."""
    return "\n".join(
        f'{indent}<vertex x="{format_float(x)}" y="{format_float(y)}" z="{format_float(z)}"/>'
        for x, y, z in np.asarray(vertices, dtype=np.float64).tolist()
    )


def triangles_xml(indices: np.ndarray, indent: str = "          ") -> str:
    """One <triangle v1=".." v2=".." v3=".."/> line per triangle."""
    return "\n".join(
        f'{indent}<triangle v1="{a}" v2="{b}" v3="{c}"/>'
        for a, b, c in np.asarray(indices, dtype=np.int64).reshape(-1, 3).tolist()
    )


def metadata_xml(metadata: Dict[str, str], indent: str = "  ") -> str:
    """3MF <metadata name="..">value</metadata> elements, in insertion order."""
    return "\n".join(
        f"{indent}<metadata name={quoteattr(name)}>{escape(str(value))}</metadata>"
        for name, value in metadata.items()
    )


def model_document(
    mesh: MeshData,
    metadata: Optional[Dict[str, str]] = None,
    extra_namespaces: Optional[Dict[str, str]] = None,
    object_name: str = "model",
    transform: Optional[str] = None,
    object_id: int = 1
) -> str:
    """
    Build a 3MF core `3D/3dmodel.model` document with a single object.

    Args:
        mesh: Closed mesh to embed
        metadata: Model-level metadata entries
        extra_namespaces: Additional xmlns prefixes (e.g. slicer extensions)
        object_name: Name attribute of the object
        transform: Build item transform (3x4 row-major affine), omitted if None
        object_id: Resource id of the object
    """
    namespaces = "".join(
        f" xmlns:{prefix}={quoteattr(uri)}" for prefix, uri in (extra_namespaces or {}).items()
    )
    transform_attr = f" transform={quoteattr(transform)}" if transform else ""
    metadata_block = metadata_xml(metadata) + "\n" if metadata else ""

    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<model unit="millimeter" xml:lang="en-US" xmlns="{CORE_NAMESPACE}"{namespaces}>\n'
        f"{metadata_block}"
        "  <resources>\n"
        f'    <object id="{object_id}" name={quoteattr(object_name)} type="model">\n'
        "      <mesh>\n"
        "        <vertices>\n"
        f"{vertices_xml(mesh.vertices)}\n"
        "        </vertices>\n"
        "        <triangles>\n"
        f"{triangles_xml(mesh.indices)}\n"
        "        </triangles>\n"
        "      </mesh>\n"
        "    </object>\n"
        "  </resources>\n"
        "  <build>\n"
        f'    <item objectid="{object_id}"{transform_attr}/>\n'
        "  </build>\n"
        "</model>\n"
    )


def relationships_xml(thumbnail_path: Optional[str] = None) -> str:
    """Package `_rels/.rels` pointing at the model (and optional thumbnail)."""
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">',
        f'  <Relationship Target="/3D/3dmodel.model" Id="rel-1" Type="{MODEL_RELATIONSHIP}"/>',
    ]
    if thumbnail_path:
        lines.append(
            f'  <Relationship Target="/{thumbnail_path}" Id="rel-2" Type="{THUMBNAIL_RELATIONSHIP}"/>'
        )
    lines.append("</Relationships>")
    return "\n".join(lines) + "\n"


def content_types_xml(include_png: bool = False) -> str:
    """`[Content_Types].xml` for model, rels and optional PNG parts."""
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">',
        '  <Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>',
        '  <Default Extension="model" ContentType="application/vnd.ms-package.3dmanufacturing-3dmodel+xml"/>',
    ]
    if include_png:
        lines.append('  <Default Extension="png" ContentType="image/png"/>')
    lines.append("</Types>")
    return "\n".join(lines) + "\n"


def triangle_corners(mesh: MeshData) -> Tuple[np.ndarray, np.ndarray]:
    """
    Triangle soup of a mesh.

    Returns:
        Tuple of ((M, 3) unit face normals, (M, 3, 3) corner positions)
    """
    vertices = np.asarray(mesh.vertices, dtype=np.float64)
    indices = np.asarray(mesh.indices, dtype=np.int64).reshape(-1, 3)
    return face_normals(vertices, indices), vertices[indices]


def stl_binary(mesh: MeshData, header: str = "photo_slicer binary STL") -> bytes:
    """
    Binary STL: 80-byte header, uint32 count, 50 bytes per facet.
    """
    normals, corners = triangle_corners(mesh)
    stl_dtype = np.dtype(
        [
            ("normal", "<f4", (3,)),
            ("v1", "<f4", (3,)),
            ("v2", "<f4", (3,)),
            ("v3", "<f4", (3,)),
            ("attr", "<u2"),
        ]
    )
    facets = np.zeros(len(corners), dtype=stl_dtype)
    facets["normal"] = normals
    facets["v1"] = corners[:, 0, :]
    facets["v2"] = corners[:, 1, :]
    facets["v3"] = corners[:, 2, :]

    buffer = io.BytesIO()
    buffer.write(header.encode("ascii", "replace")[:80].ljust(80, b" "))
    buffer.write(struct.pack("<I", len(facets)))
    buffer.write(facets.tobytes())
    return buffer.getvalue()


def stl_ascii(mesh: MeshData, name: str = "photo_slicer") -> bytes:
    """ASCII STL with one `facet normal` block per triangle."""
    normals, corners = triangle_corners(mesh)
    lines = [f"solid {name}"]
    for normal, triangle in zip(normals.tolist(), corners.tolist()):
        lines.append("  facet normal {} {} {}".format(*(f"{c:e}" for c in normal)))
        lines.append("    outer loop")
        for vertex in triangle:
            lines.append("      vertex {} {} {}".format(*(f"{c:e}" for c in vertex)))
        lines.append("    endloop")
        lines.append("  endfacet")
    lines.append(f"endsolid {name}")
    return ("\n".join(lines) + "\n").encode("ascii")


def build_zip(
    entries: Iterable[Tuple[str, bytes]],
    compression: int = zipfile.ZIP_DEFLATED
) -> bytes:
    """
    Pack entries into an in-memory ZIP archive.

    Every entry gets the same fixed timestamp, so identical inputs produce
    identical archives.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression) as archive:
        for name, data in entries:
            info = zipfile.ZipInfo(name, date_time=FIXED_ZIP_DATE)
            info.compress_type = compression
            info.external_attr = 0o644 << 16
            if isinstance(data, str):
                data = data.encode("utf-8")
            archive.writestr(info, data)
    return buffer.getvalue()


def format_date(creation_date: Optional[datetime] = None) -> str:
    """ISO date (YYYY-MM-DD) for 3MF metadata; today when not given."""
    return (creation_date or datetime.now()).strftime("%Y-%m-%d")


def entry_names(archive_bytes: bytes) -> List[str]:
    """Names of the entries of an in-memory ZIP archive, in stored order."""
    with zipfile.ZipFile(io.BytesIO(archive_bytes)) as archive:
        return archive.namelist()
