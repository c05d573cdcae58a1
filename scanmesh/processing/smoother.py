"""
Laplacian smoothing.

Each iteration moves every vertex to the mean of its neighbours' current
positions (simultaneous update). Vertices without neighbours stay put and
triangle connectivity is never changed.
"""

import logging
import time
from typing import Dict, Set, Tuple

import numpy as np

from scanmesh.processing.geometry import Mesh

logger = logging.getLogger(__name__)


def build_adjacency(vertex_count: int, triangles: np.ndarray) -> Dict[int, Set[int]]:
    """
    Build the vertex adjacency graph.

    Every vertex of a triangle gains the other two as neighbours. Duplicate
    edges collapse and a vertex is never its own neighbour.

    Args:
        vertex_count: Number of vertices
        triangles: (M, 3) vertex indices

    Returns:
        Dict of vertex index -> neighbour set (only vertices with neighbours)
    """
    adjacency: Dict[int, Set[int]] = {}
    for v0, v1, v2 in np.asarray(triangles).tolist():
        for vertex, others in ((v0, (v1, v2)), (v1, (v0, v2)), (v2, (v0, v1))):
            neighbours = adjacency.setdefault(vertex, set())
            neighbours.update(o for o in others if o != vertex)

    # Fully degenerate triangles can leave empty sets behind
    return {v: n for v, n in adjacency.items() if n and v < vertex_count}


def _flatten_adjacency(adjacency: Dict[int, Set[int]]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Pack adjacency into (vertices, neighbour list, segment starts) arrays"""
    vertices = np.array(sorted(adjacency), dtype=np.int64)
    counts = np.array([len(adjacency[v]) for v in vertices], dtype=np.int64)
    neighbours = np.fromiter(
        (n for v in vertices for n in sorted(adjacency[v])),
        dtype=np.int64,
        count=int(counts.sum())
    )
    starts = np.concatenate([[0], np.cumsum(counts)[:-1]])
    return vertices, neighbours, starts


def laplacian_smooth(vertices: np.ndarray, triangles: np.ndarray, iterations: int = 1) -> np.ndarray:
    """
    Smooth vertex positions.

    Args:
        vertices: (N, 3) positions
        triangles: (M, 3) vertex indices
        iterations: Number of relaxation passes

    Returns:
        (N, 3) float32 smoothed positions (new array)
    """
    positions = np.array(vertices, dtype=np.float64).reshape(-1, 3)
    if iterations <= 0 or len(positions) == 0 or len(triangles) == 0:
        return positions.astype(np.float32)

    adjacency = build_adjacency(len(positions), triangles)
    if not adjacency:
        return positions.astype(np.float32)

    movable, neighbours, starts = _flatten_adjacency(adjacency)
    counts = np.diff(np.append(starts, len(neighbours)))[:, None]

    for _ in range(iterations):
        sums = np.add.reduceat(positions[neighbours], starts, axis=0)
        new_positions = positions.copy()
        new_positions[movable] = sums / counts
        positions = new_positions

    return positions.astype(np.float32)


def smooth_mesh(mesh: Mesh, iterations: int = 1) -> Mesh:
    """Smoothed copy of a mesh with identical connectivity"""
    if mesh.is_empty or iterations <= 0:
        return mesh

    start_time = time.time()
    smoothed = mesh.with_vertices(laplacian_smooth(mesh.vertices, mesh.triangles, iterations))
    elapsed_ms = (time.time() - start_time) * 1000
    logger.debug(
        f"Smoothed {mesh.vertex_count:,} vertices ({iterations} iteration(s)) in {elapsed_ms:.1f}ms"
    )
    return smoothed
