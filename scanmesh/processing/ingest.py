"""
Fragment ingest.

Converts one fragment's local vertices and index buffer into world-space
vertices plus 32-bit local triangles. Index offsets are applied later by
the aggregator.
"""

import logging
from typing import Optional, Union

import numpy as np

from scanmesh.errors import GeometryError
from scanmesh.processing.geometry import (
    Fragment,
    IngestedFragment,
    PRIMITIVE_TRIANGLE,
    SUPPORTED_INDEX_WIDTHS,
)

logger = logging.getLogger(__name__)


def normalize_indices(
    indices: Union[np.ndarray, bytes, bytearray, memoryview],
    bytes_per_index: Optional[int] = None
) -> np.ndarray:
    """
    Normalize an 8/16/32-bit index buffer to a flat uint32 array.

    Args:
        indices: Index array, or raw little-endian index bytes
        bytes_per_index: Index width in bytes (raw bytes only)

    Returns:
        Flat uint32 array

    Raises:
        GeometryError: On an unsupported index width or negative indices
    """
    if isinstance(indices, (bytes, bytearray, memoryview)):
        if bytes_per_index not in SUPPORTED_INDEX_WIDTHS:
            raise GeometryError(f"Unsupported index width: {bytes_per_index} bytes")
        dtype = np.dtype(SUPPORTED_INDEX_WIDTHS[bytes_per_index]).newbyteorder('<')
        if len(indices) % bytes_per_index != 0:
            raise GeometryError(
                f"Index buffer of {len(indices)} bytes is not a multiple of {bytes_per_index}"
            )
        return np.frombuffer(indices, dtype=dtype).astype(np.uint32)

    array = np.asarray(indices).reshape(-1)
    if array.size == 0:
        return np.zeros(0, dtype=np.uint32)
    if array.dtype.kind not in 'iu':
        raise GeometryError(f"Index buffer must be integral, got {array.dtype}")
    if array.dtype.kind == 'i' and array.min() < 0:
        raise GeometryError("Index buffer contains negative indices")
    # int64 arrays built from Python lists can exceed the 32-bit range
    if int(array.max()) > np.iinfo(np.uint32).max:
        raise GeometryError("Index values do not fit in 32 bits")
    return array.astype(np.uint32)


def transform_points(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """
    Apply a homogeneous 4x4 transform to points (w=1).

    Args:
        points: (N, 3) local coordinates
        transform: (4, 4) local-to-world matrix

    Returns:
        (N, 3) float32 world coordinates
    """
    points_homogeneous = np.hstack([points, np.ones((len(points), 1))])
    return (transform @ points_homogeneous.T).T[:, :3].astype(np.float32)


def ingest_fragment(fragment: Fragment) -> Optional[IngestedFragment]:
    """
    Bring one fragment into world space.

    Args:
        fragment: Local geometry and pose

    Returns:
        IngestedFragment, or None if the fragment is skipped (no vertices or
        a non-triangle primitive)

    Raises:
        GeometryError: On malformed arrays, a bad transform or out-of-range indices
    """
    vertices = np.asarray(fragment.vertices, dtype=np.float64)

    if vertices.size == 0:
        logger.debug(f"Skipping empty fragment: {fragment.fragment_id}")
        return None
    if fragment.primitive_type != PRIMITIVE_TRIANGLE:
        logger.debug(
            f"Skipping fragment {fragment.fragment_id}: primitive type {fragment.primitive_type}"
        )
        return None

    if vertices.ndim != 2 or vertices.shape[1] != 3:
        raise GeometryError(
            f"Fragment {fragment.fragment_id}: vertices must be (N, 3), got {vertices.shape}"
        )
    if not np.all(np.isfinite(vertices)):
        raise GeometryError(f"Fragment {fragment.fragment_id}: vertices are not finite")

    transform = np.asarray(fragment.transform, dtype=np.float64)
    if transform.shape != (4, 4):
        raise GeometryError(
            f"Fragment {fragment.fragment_id}: transform must be 4x4, got {transform.shape}"
        )
    if not np.all(np.isfinite(transform)):
        raise GeometryError(f"Fragment {fragment.fragment_id}: transform is not finite")

    indices = normalize_indices(fragment.indices)
    if len(indices) % 3 != 0:
        raise GeometryError(
            f"Fragment {fragment.fragment_id}: {len(indices)} indices is not a multiple of 3"
        )
    triangles = indices.reshape(-1, 3)
    if len(triangles) and int(triangles.max()) >= len(vertices):
        raise GeometryError(
            f"Fragment {fragment.fragment_id}: index {int(triangles.max())} "
            f"out of range for {len(vertices)} vertices"
        )

    world_vertices = transform_points(vertices, transform)

    logger.debug(
        f"Ingested fragment {fragment.fragment_id}: "
        f"{len(world_vertices)} vertices, {len(triangles)} triangles"
    )

    return IngestedFragment(
        fragment_id=fragment.fragment_id,
        vertices=world_vertices,
        triangles=triangles
    )
