"""
Surface Mesh Builder

Builds the open relief surface: a regular grid in the XY plane, centered on
the origin, with one vertex per grid sample lifted to the mapped height.

Grid Layout:
- The longer image axis gets `resolution` vertices, the shorter axis is
  scaled to keep the aspect ratio (at least 2 vertices)
- Vertex (row, col) has index row * cols + col; row 0 is the bottom edge
  (minimum Y), col 0 the left edge (minimum X)
- Each cell becomes (i, i+1, i+cols) and (i+1, i+cols+1, i+cols), both
  counter-clockwise seen from above, so surface normals point up
"""

import logging
import math
from typing import NamedTuple, Optional, Tuple
import numpy as np

from .config import DEFAULT_MODEL_SIZE, DEFAULT_RESOLUTION
from .heightmap import HeightMapper
from .ingestion import PixelBuffer


logger = logging.getLogger(__name__)


class MeshData(NamedTuple):
    """Container for mesh geometry data."""
    vertices: np.ndarray                  # (N, 3) float64 positions, mm
    indices: np.ndarray                   # (M, 3) int64 triangle vertex indices
    normals: Optional[np.ndarray] = None  # (N, 3) float64 unit vertex normals

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def triangle_count(self) -> int:
        return len(self.indices)

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Axis-aligned bounding box as (min_xyz, max_xyz)."""
        if len(self.vertices) == 0:
            zero = np.zeros(3)
            return zero, zero
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    def size(self) -> np.ndarray:
        """Bounding box extents (dx, dy, dz)."""
        lo, hi = self.bounds()
        return hi - lo


def face_normals(vertices: np.ndarray, indices: np.ndarray, normalize: bool = True) -> np.ndarray:
    """
    Triangle normals from the right-hand rule (v1 - v0) x (v2 - v0).

    With normalize=False the vectors keep a length of twice the triangle area.
    """
    v0 = vertices[indices[:, 0]]
    v1 = vertices[indices[:, 1]]
    v2 = vertices[indices[:, 2]]
    normals = np.cross(v1 - v0, v2 - v0)
    if normalize:
        lengths = np.linalg.norm(normals, axis=1, keepdims=True)
        normals = np.divide(normals, lengths, out=np.zeros_like(normals), where=lengths > 0)
    return normals


def compute_vertex_normals(vertices: np.ndarray, indices: np.ndarray) -> np.ndarray:
    """
    Area-weighted vertex normals.

    Returns:
        (N, 3) float64 unit normals; vertices without faces get zero vectors
    """
    normals = np.zeros((len(vertices), 3), dtype=np.float64)
    if len(indices) == 0:
        return normals

    weighted = face_normals(vertices, indices, normalize=False)
    for corner in range(3):
        np.add.at(normals, indices[:, corner], weighted)

    lengths = np.linalg.norm(normals, axis=1, keepdims=True)
    return np.divide(normals, lengths, out=np.zeros_like(normals), where=lengths > 0)


def grid_shape(width: int, height: int, resolution: int) -> Tuple[int, int]:
    """
    Grid size for an image.

    Args:
        width, height: Image size in pixels
        resolution: Vertices along the longer axis

    Returns:
        Tuple of (cols, rows)
    """
    longer = max(width, height)
    shorter = min(width, height)
    short_count = int(math.floor(resolution * shorter / longer + 0.5))
    short_count = min(resolution, max(2, short_count))

    if width >= height:
        return resolution, short_count
    return short_count, resolution


def grid_triangles(cols: int, rows: int) -> np.ndarray:
    """Triangle indices of a cols x rows vertex grid, 2 per cell."""
    if cols < 2 or rows < 2:
        return np.zeros((0, 3), dtype=np.int64)

    row, col = np.meshgrid(np.arange(rows - 1), np.arange(cols - 1), indexing="ij")
    i = (row * cols + col).ravel().astype(np.int64)

    tris = np.empty((len(i) * 2, 3), dtype=np.int64)
    tris[0::2] = np.column_stack([i, i + 1, i + cols])
    tris[1::2] = np.column_stack([i + 1, i + cols + 1, i + cols])
    return tris


class SurfaceBuilder:
    """
    Open height-field mesh builder.

    The physical footprint keeps the image aspect ratio; its longer side
    measures `model_size` millimetres.
    """

    def __init__(
        self,
        resolution: int = DEFAULT_RESOLUTION,
        model_size: float = DEFAULT_MODEL_SIZE
    ):
        """
        Args:
            resolution: Vertices along the longer image axis (>= 1)
            model_size: Length of the longer side in mm
        """
        if resolution < 1:
            raise ValueError(f"resolution must be >= 1, got {resolution}")
        if model_size <= 0:
            raise ValueError(f"model_size must be positive, got {model_size}")
        self.resolution = int(resolution)
        self.model_size = float(model_size)

    def footprint(self, width: int, height: int) -> Tuple[float, float]:
        """Physical (x, y) size of the model in mm."""
        if width >= height:
            return self.model_size, self.model_size * height / width
        return self.model_size * width / height, self.model_size

    def build(self, buffer: PixelBuffer, mapper: HeightMapper) -> MeshData:
        """
        Build the open surface mesh of an image.

        Args:
            buffer: Source image
            mapper: Color-to-height function

        Returns:
            MeshData with cols * rows vertices and 2 (cols-1)(rows-1) triangles
        """
        cols, rows = grid_shape(buffer.width, buffer.height, self.resolution)
        size_x, size_y = self.footprint(buffer.width, buffer.height)

        heights = mapper.height_field(buffer, cols, rows)
        return self.build_from_heights(heights, size_x, size_y)

    def build_from_heights(self, heights: np.ndarray, size_x: float, size_y: float) -> MeshData:
        """
        Build a surface from a precomputed (rows, cols) height grid.

        Row 0 of `heights` is the bottom edge (minimum Y).
        """
        heights = np.asarray(heights, dtype=np.float64)
        rows, cols = heights.shape

        xs = np.linspace(-size_x / 2.0, size_x / 2.0, cols) if cols > 1 else np.zeros(1)
        ys = np.linspace(-size_y / 2.0, size_y / 2.0, rows) if rows > 1 else np.zeros(1)
        grid_x, grid_y = np.meshgrid(xs, ys)

        vertices = np.column_stack([grid_x.ravel(), grid_y.ravel(), heights.ravel()])
        indices = grid_triangles(cols, rows)

        logger.debug("Surface grid %dx%d: %d triangles", cols, rows, len(indices))
        return MeshData(
            vertices=vertices,
            indices=indices,
            normals=compute_vertex_normals(vertices, indices),
        )


def mesh_stats(mesh: MeshData) -> dict:
    """
    Summary statistics of a mesh.

    Returns:
        Dictionary with vertex/triangle counts and bounding box size
    """
    size = mesh.size()
    return {
        "vertices": mesh.vertex_count,
        "triangles": mesh.triangle_count,
        "size_x": float(size[0]),
        "size_y": float(size[1]),
        "size_z": float(size[2]),
    }
