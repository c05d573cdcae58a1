"""
Mesh aggregator.

Concatenates ingested fragments into one global vertex buffer and one global
triangle buffer. Fragment k's local indices are offset by the cumulative
vertex count of fragments 0..k-1, so its triangles only reference its own
vertices. Fragment order is preserved.
"""

import logging
import time
from typing import Iterable, List, Sequence

import numpy as np

from scanmesh.processing.geometry import EMPTY_MESH, Fragment, IngestedFragment, Mesh
from scanmesh.processing.ingest import ingest_fragment

logger = logging.getLogger(__name__)


def vertex_offsets(vertex_counts: Iterable[int]) -> List[int]:
    """
    Cumulative vertex offsets.

    Args:
        vertex_counts: Vertex count per fragment, in order

    Returns:
        Offset of each fragment's first vertex in the global buffer
    """
    offsets = []
    running = 0
    for count in vertex_counts:
        offsets.append(running)
        running += count
    return offsets


def aggregate(fragments: Sequence[IngestedFragment]) -> Mesh:
    """
    Merge ingested fragments into one mesh.

    Args:
        fragments: Ingested fragments in delivery order

    Returns:
        Global mesh, or the empty-mesh sentinel if nothing was accumulated
    """
    fragments = [f for f in fragments if f is not None and f.vertex_count > 0]
    if not fragments:
        return EMPTY_MESH

    start_time = time.time()

    offsets = vertex_offsets(f.vertex_count for f in fragments)
    all_vertices = np.vstack([f.vertices for f in fragments])
    all_triangles = np.vstack([
        f.triangles.astype(np.uint32) + np.uint32(offset)
        for f, offset in zip(fragments, offsets)
    ])

    mesh = Mesh(all_vertices, all_triangles)

    elapsed_ms = (time.time() - start_time) * 1000
    logger.debug(
        f"Aggregated {len(fragments)} fragments: {mesh.vertex_count:,} vertices, "
        f"{mesh.triangle_count:,} triangles in {elapsed_ms:.1f}ms"
    )
    return mesh


def ingest_all(fragments: Iterable[Fragment]) -> List[IngestedFragment]:
    """Ingest fragments in order, dropping the skipped ones"""
    ingested = []
    for fragment in fragments:
        result = ingest_fragment(fragment)
        if result is not None:
            ingested.append(result)
    return ingested


def aggregate_fragments(fragments: Iterable[Fragment]) -> Mesh:
    """
    Ingest and aggregate raw fragments.

    Raises:
        GeometryError: If any fragment is malformed
    """
    return aggregate(ingest_all(fragments))
