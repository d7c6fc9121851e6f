"""
Solid Extrusion Builder

Closes an open height-field surface into a watertight solid.

Construction:
1. Find the four boundary chains of the rectangular grid (vertices lying on
   the min/max X and Y lines), each sorted along its edge
2. Drop every chain vertex to a skirt vertex at z = -base_thickness; corner
   skirts are shared by the two chains meeting there
3. Stitch each pair of neighboring chain vertices to their skirts with two
   triangles, wound so every wall faces outward
4. Close the bottom with one triangle fan around a centroid vertex

The result is a closed, consistently oriented 2-manifold: every edge is used
exactly twice, once in each direction.
"""

import logging
from typing import Dict, List, NamedTuple
import numpy as np

from .config import DEFAULT_BASE_THICKNESS, DEFAULT_MERGE_TOLERANCE
from .exceptions import DegenerateGeometryError
from .surface import MeshData, compute_vertex_normals, face_normals


logger = logging.getLogger(__name__)

# Perimeter walk order of the bottom cap; True = chain traversed forward
PERIMETER_ORDER = (
    ("min_y", True),
    ("max_x", True),
    ("max_y", False),
    ("min_x", False),
)

# Chains whose ascending order runs counter-clockwise around the footprint
_FORWARD_WINDING = ("min_y", "max_x")


class BoundaryChain(NamedTuple):
    """Vertex indices along one rectangular edge, sorted by the running coordinate."""
    side: str
    indices: np.ndarray


def find_boundary_chains(vertices: np.ndarray) -> Dict[str, BoundaryChain]:
    """
    Locate the four boundary chains of a grid surface.

    Returns:
        Mapping of side name ("min_x", "max_x", "min_y", "max_y") to chain

    Raises:
        DegenerateGeometryError: If the surface has no XY extent on either
            axis or any chain has fewer than 2 vertices
    """
    if len(vertices) == 0:
        raise DegenerateGeometryError("Cannot extrude an empty surface")

    x = vertices[:, 0]
    y = vertices[:, 1]
    if x.min() == x.max() or y.min() == y.max():
        raise DegenerateGeometryError(
            "Surface has no area; a grid needs at least 2x2 vertices"
        )

    def chain(side: str, mask: np.ndarray, running: np.ndarray) -> BoundaryChain:
        members = np.flatnonzero(mask)
        order = np.argsort(running[members], kind="stable")
        indices = members[order].astype(np.int64)
        if len(indices) < 2:
            raise DegenerateGeometryError(f"Boundary chain {side} has {len(indices)} vertices")
        return BoundaryChain(side, indices)

    return {
        "min_x": chain("min_x", x == x.min(), y),
        "max_x": chain("max_x", x == x.max(), y),
        "min_y": chain("min_y", y == y.min(), x),
        "max_y": chain("max_y", y == y.max(), x),
    }


class ExtrusionBuilder:
    """
    Adds side walls and a flat base to an open surface.

    Attributes:
        base_thickness: Depth of the skirt below z = 0 (0 = walls down to z = 0)
        merge_tolerance: Distance under which consecutive perimeter points of
            the bottom cap are treated as one (mm)
    """

    def __init__(
        self,
        base_thickness: float = DEFAULT_BASE_THICKNESS,
        merge_tolerance: float = DEFAULT_MERGE_TOLERANCE
    ):
        if base_thickness < 0:
            raise ValueError(f"base_thickness must be >= 0, got {base_thickness}")
        self.base_thickness = float(base_thickness)
        self.merge_tolerance = float(merge_tolerance)

    def build(self, surface: MeshData) -> MeshData:
        """
        Extrude a surface into a closed solid.

        Args:
            surface: Open grid surface (see SurfaceBuilder)

        Returns:
            Closed MeshData with recomputed vertex normals
        """
        vertices = np.asarray(surface.vertices, dtype=np.float64)
        chains = find_boundary_chains(vertices)
        self._check_spacing(vertices, chains)
        base_z = -self.base_thickness

        new_vertices: List[np.ndarray] = []
        skirt_of: Dict[int, int] = {}

        def skirt(top_index: int) -> int:
            if top_index not in skirt_of:
                skirt_of[top_index] = len(vertices) + len(new_vertices)
                x, y, _ = vertices[top_index]
                new_vertices.append(np.array([x, y, base_z]))
            return skirt_of[top_index]

        walls: List[List[int]] = []
        for side in ("min_y", "max_x", "max_y", "min_x"):
            indices = chains[side].indices.tolist()
            for a, b in zip(indices[:-1], indices[1:]):
                sa, sb = skirt(a), skirt(b)
                if side in _FORWARD_WINDING:
                    walls.append([a, sa, sb])
                    walls.append([a, sb, b])
                else:
                    walls.append([a, sb, sa])
                    walls.append([a, b, sb])

        all_vertices = np.vstack([vertices] + new_vertices) if new_vertices else vertices
        cap, centroid = self._bottom_cap(all_vertices, chains, skirt_of, base_z)
        all_vertices = np.vstack([all_vertices, centroid[None, :]])

        indices = np.vstack([
            np.asarray(surface.indices, dtype=np.int64).reshape(-1, 3),
            np.array(walls, dtype=np.int64).reshape(-1, 3),
            cap,
        ])

        logger.debug(
            "Extruded solid: %d wall triangles, %d cap triangles, base %.3f mm",
            len(walls), len(cap), self.base_thickness
        )
        return MeshData(
            vertices=all_vertices,
            indices=indices,
            normals=compute_vertex_normals(all_vertices, indices),
        )

    def _check_spacing(self, vertices: np.ndarray, chains: Dict[str, BoundaryChain]):
        """
        Reject grids whose boundary points are closer than merge_tolerance.

        Such points would be merged in the bottom cap while the walls still
        use them, leaving the solid open.

        Raises:
            DegenerateGeometryError: If any neighboring chain vertices are too close
        """
        for side, chain in chains.items():
            points = vertices[chain.indices, :2]
            spacing = float(np.linalg.norm(np.diff(points, axis=0), axis=1).min())
            if spacing <= self.merge_tolerance:
                raise DegenerateGeometryError(
                    f"Boundary {side} vertex spacing {spacing:.6g} mm is within the "
                    f"merge tolerance {self.merge_tolerance:g} mm; lower the resolution "
                    f"or increase the model size"
                )

    def _bottom_cap(
        self,
        vertices: np.ndarray,
        chains: Dict[str, BoundaryChain],
        skirt_of: Dict[int, int],
        base_z: float
    ):
        """
        Fan-triangulate the skirt perimeter around its centroid.

        Returns:
            Tuple of ((P, 3) cap triangles, centroid position); the centroid
            gets index len(vertices)
        """
        loop: List[int] = []
        for side, forward in PERIMETER_ORDER:
            indices = chains[side].indices.tolist()
            if not forward:
                indices = indices[::-1]
            for top_index in indices:
                index = skirt_of[top_index]
                if loop and self._close(vertices, loop[-1], index):
                    continue
                loop.append(index)

        while len(loop) > 1 and self._close(vertices, loop[-1], loop[0]):
            loop.pop()

        if len(loop) < 3:
            raise DegenerateGeometryError(
                f"Bottom cap perimeter collapsed to {len(loop)} points"
            )

        centroid = vertices[loop, :2].mean(axis=0)
        centroid = np.array([centroid[0], centroid[1], base_z])
        center = len(vertices)

        # Walk is counter-clockwise from above; (center, next, current) faces down
        current = np.array(loop, dtype=np.int64)
        following = np.roll(current, -1)
        cap = np.column_stack([np.full(len(loop), center, dtype=np.int64), following, current])
        return cap, centroid

    def _close(self, vertices: np.ndarray, i: int, j: int) -> bool:
        if i == j:
            return True
        return float(np.linalg.norm(vertices[i] - vertices[j])) <= self.merge_tolerance


def edge_manifold_report(mesh: MeshData) -> dict:
    """
    Edge topology check.

    Returns:
        Dictionary with the number of distinct edges, boundary edges (used
        once), non-manifold edges (used 3+ times), edges used twice in the
        same direction, and a `watertight` flag that is True only when every
        edge is used exactly twice with opposite orientation
    """
    indices = np.asarray(mesh.indices, dtype=np.int64).reshape(-1, 3)
    if len(indices) == 0:
        return {
            "edges": 0,
            "boundary_edges": 0,
            "non_manifold_edges": 0,
            "misoriented_edges": 0,
            "watertight": False,
        }

    directed = indices[:, [0, 1, 1, 2, 2, 0]].reshape(-1, 2)
    undirected = np.sort(directed, axis=1)

    _, undirected_counts = np.unique(undirected, axis=0, return_counts=True)
    _, directed_counts = np.unique(directed, axis=0, return_counts=True)

    boundary = int(np.count_nonzero(undirected_counts == 1))
    non_manifold = int(np.count_nonzero(undirected_counts > 2))
    misoriented = int(np.count_nonzero(directed_counts > 1))

    return {
        "edges": len(undirected_counts),
        "boundary_edges": boundary,
        "non_manifold_edges": non_manifold,
        "misoriented_edges": misoriented,
        "watertight": boundary == 0 and non_manifold == 0 and misoriented == 0,
    }


def signed_volume(mesh: MeshData) -> float:
    """
    Enclosed volume by the divergence theorem.

    Positive for a closed mesh whose faces point outward.
    """
    vertices = np.asarray(mesh.vertices, dtype=np.float64)
    indices = np.asarray(mesh.indices, dtype=np.int64).reshape(-1, 3)
    if len(indices) == 0:
        return 0.0
    v0 = vertices[indices[:, 0]]
    cross = face_normals(vertices, indices, normalize=False)
    return float(np.einsum("ij,ij->", v0, cross) / 6.0)
