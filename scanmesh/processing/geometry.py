"""
Core mesh data types.

A Mesh is a world-space vertex array plus an (M, 3) triangle index array.
Meshes handed across threads are frozen: their arrays are read-only and
every transformation returns a new Mesh.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from scanmesh.errors import GeometryError

logger = logging.getLogger(__name__)

PRIMITIVE_TRIANGLE = 0
PRIMITIVE_LINE = 1

SUPPORTED_INDEX_WIDTHS = {1: np.uint8, 2: np.uint16, 4: np.uint32}


def _readonly(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class Mesh:
    """Immutable triangle mesh"""
    vertices: np.ndarray  # (N, 3) float32
    triangles: np.ndarray  # (M, 3) uint32

    def __post_init__(self):
        raw_triangles = np.asarray(self.triangles)
        if raw_triangles.size and raw_triangles.dtype.kind == 'i' and raw_triangles.min() < 0:
            raise GeometryError("Triangle indices must be non-negative")

        vertices = np.ascontiguousarray(self.vertices, dtype=np.float32)
        triangles = np.ascontiguousarray(raw_triangles, dtype=np.uint32)

        if vertices.size == 0:
            vertices = vertices.reshape(0, 3)
        if triangles.size == 0:
            triangles = triangles.reshape(0, 3)

        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise GeometryError(f"Vertices must have shape (N, 3), got {vertices.shape}")
        if triangles.ndim == 1:
            if len(triangles) % 3 != 0:
                raise GeometryError(
                    f"Flat index buffer length {len(triangles)} is not divisible by 3"
                )
            triangles = triangles.reshape(-1, 3)
        if triangles.ndim != 2 or triangles.shape[1] != 3:
            raise GeometryError(f"Triangles must have shape (M, 3), got {triangles.shape}")
        if len(triangles) and int(triangles.max()) >= len(vertices):
            raise GeometryError(
                f"Triangle index {int(triangles.max())} out of range for {len(vertices)} vertices"
            )

        # Copy before freezing so callers keep ownership of their buffers
        object.__setattr__(self, 'vertices', _readonly(vertices.copy()))
        object.__setattr__(self, 'triangles', _readonly(triangles.copy()))

    @classmethod
    def empty(cls) -> 'Mesh':
        """Get the empty-mesh sentinel"""
        return EMPTY_MESH

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)

    @property
    def is_empty(self) -> bool:
        return self.vertex_count == 0 and self.triangle_count == 0

    @property
    def flat_indices(self) -> np.ndarray:
        """Triangle indices as one flat buffer (length divisible by 3)"""
        return self.triangles.reshape(-1)

    def face_normals(self) -> np.ndarray:
        """Non-unit face normals (cross product of the two edges from vertex 0)"""
        return triangle_normals(self.vertices, self.triangles)

    def bounds(self) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """
        Axis-aligned bounding box.

        Returns:
            (min, max) corners, or None for a mesh without vertices
        """
        if self.vertex_count == 0:
            return None
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    def centered(self) -> 'Mesh':
        """Copy of the mesh translated so its bounding-box centre is the origin"""
        box = self.bounds()
        if box is None:
            return self
        center = (box[0] + box[1]) / 2.0
        return Mesh(self.vertices - center, self.triangles)

    def with_vertices(self, vertices: np.ndarray) -> 'Mesh':
        """Copy of the mesh with new vertex positions and the same connectivity"""
        vertices = np.asarray(vertices)
        if vertices.shape != self.vertices.shape:
            raise GeometryError(
                f"Replacement vertices {vertices.shape} do not match {self.vertices.shape}"
            )
        return Mesh(vertices, self.triangles)

    def __repr__(self) -> str:
        return f"Mesh(vertices={self.vertex_count:,}, triangles={self.triangle_count:,})"


EMPTY_MESH = Mesh(np.zeros((0, 3), dtype=np.float32), np.zeros((0, 3), dtype=np.uint32))


@dataclass(eq=False)
class Fragment:
    """
    One unit of incoming local mesh geometry plus its world pose.

    The index buffer is kept in its delivered width (8/16/32-bit); ingest
    normalizes it to 32-bit.
    """
    fragment_id: str
    vertices: np.ndarray  # (N, 3) local coordinates
    indices: np.ndarray  # flat index buffer, uint8/uint16/uint32
    transform: np.ndarray = field(default_factory=lambda: np.eye(4, dtype=np.float32))
    primitive_type: int = PRIMITIVE_TRIANGLE
    timestamp_ns: int = 0

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)


@dataclass(frozen=True, eq=False)
class IngestedFragment:
    """World-space vertices plus the fragment's local (un-offset) triangles"""
    fragment_id: str
    vertices: np.ndarray  # (N, 3) float32 world coordinates
    triangles: np.ndarray  # (M, 3) uint32 local indices

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)


@dataclass(frozen=True, eq=False)
class Snapshot:
    """The set of fragments processed together in one update cycle"""
    fragments: Tuple[Fragment, ...]
    snapshot_id: str = ''
    timestamp_ns: int = 0

    def __len__(self) -> int:
        return len(self.fragments)


def triangle_normals(vertices: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """
    Compute non-unit face normals.

    Args:
        vertices: (N, 3) positions
        triangles: (M, 3) vertex indices

    Returns:
        (M, 3) float64 cross products (v1 - v0) x (v2 - v0)
    """
    if len(triangles) == 0:
        return np.zeros((0, 3), dtype=np.float64)
    v = np.asarray(vertices, dtype=np.float64)
    t = np.asarray(triangles, dtype=np.int64)
    p0, p1, p2 = v[t[:, 0]], v[t[:, 1]], v[t[:, 2]]
    return np.cross(p1 - p0, p2 - p0)


def unit_normals(normals: np.ndarray) -> np.ndarray:
    """Normalize rows; zero-length rows stay zero"""
    lengths = np.linalg.norm(normals, axis=1, keepdims=True)
    safe = np.where(lengths > 0, lengths, 1.0)
    return normals / safe
