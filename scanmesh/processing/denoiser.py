"""
Coplanar triangle denoiser.

Overlapping fragments produce near-coincident triangles on shared surfaces.
For every edge shared by exactly two triangles whose unit normals are nearly
parallel, the second triangle in enumeration order is dropped. Edges with
one or more than two triangles are left alone. Vertices are never touched,
so the output may contain unreferenced vertices.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Set, Tuple

import numpy as np

from scanmesh.processing.geometry import Mesh, triangle_normals, unit_normals

logger = logging.getLogger(__name__)

EdgeKey = Tuple[int, int]

DEFAULT_COPLANAR_COS = math.cos(math.radians(10.0))


@dataclass(frozen=True)
class DenoiseResult:
    """Denoised mesh plus bookkeeping"""
    mesh: Mesh
    removed: Tuple[int, ...]  # Indices into the input triangle array

    @property
    def removed_count(self) -> int:
        return len(self.removed)


def edge_key(a: int, b: int) -> EdgeKey:
    """Canonical (min, max) key for an undirected edge"""
    return (a, b) if a < b else (b, a)


def build_edge_map(triangles: np.ndarray) -> Dict[EdgeKey, List[int]]:
    """
    Map every undirected edge to the triangles that use it.

    Args:
        triangles: (M, 3) vertex indices

    Returns:
        Dict of edge key -> triangle indices in enumeration order
    """
    edge_map: Dict[EdgeKey, List[int]] = defaultdict(list)
    for tri_index, (v0, v1, v2) in enumerate(triangles.tolist()):
        for a, b in ((v0, v1), (v1, v2), (v2, v0)):
            if a == b:
                continue
            key = edge_key(a, b)
            owners = edge_map[key]
            # A triangle listing the same edge twice still counts once
            if not owners or owners[-1] != tri_index:
                owners.append(tri_index)
    return edge_map


def find_redundant_triangles(mesh: Mesh, coplanar_cos: float = DEFAULT_COPLANAR_COS) -> Set[int]:
    """
    Find triangles that duplicate a coplanar neighbour.

    Args:
        mesh: Aggregated mesh
        coplanar_cos: Dot product threshold for unit normals

    Returns:
        Set of triangle indices to remove
    """
    if mesh.triangle_count < 2:
        return set()

    normals = unit_normals(triangle_normals(mesh.vertices, mesh.triangles))
    edge_map = build_edge_map(mesh.triangles)

    removed: Set[int] = set()
    for owners in edge_map.values():
        if len(owners) != 2:
            continue
        first, second = owners
        if float(np.dot(normals[first], normals[second])) > coplanar_cos:
            removed.add(second)

    return removed


def denoise(mesh: Mesh, coplanar_cos: float = DEFAULT_COPLANAR_COS) -> DenoiseResult:
    """
    Remove redundant near-coplanar triangles.

    Args:
        mesh: Aggregated mesh
        coplanar_cos: cos of the maximum angle between normals treated as coplanar

    Returns:
        DenoiseResult with the filtered mesh (same vertex array)
    """
    removed = find_redundant_triangles(mesh, coplanar_cos)
    if not removed:
        return DenoiseResult(mesh=mesh, removed=())

    keep = np.ones(mesh.triangle_count, dtype=bool)
    keep[list(removed)] = False
    filtered = Mesh(mesh.vertices, mesh.triangles[keep])

    logger.debug(
        f"Denoiser removed {len(removed):,} / {mesh.triangle_count:,} triangles"
    )
    return DenoiseResult(mesh=filtered, removed=tuple(sorted(removed)))
