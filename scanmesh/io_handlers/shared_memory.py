"""
Shared memory reader for mesh fragments.

Reads fragment geometry from /dev/shm segments written by the sensing
subsystem.
"""

import os
import struct
import numpy as np
from typing import Optional
import logging

from scanmesh.errors import GeometryError
from scanmesh.processing.geometry import Fragment, PRIMITIVE_TRIANGLE, SUPPORTED_INDEX_WIDTHS
from scanmesh.processing.ingest import normalize_indices

logger = logging.getLogger(__name__)


class FragmentReader:
    """
    Reader for mesh fragments in shared memory.

    Segment layout (little-endian):
    - Header: 88 bytes (timestamp, vertex count, index count, index width,
      primitive type, pose)
    - Vertices: vertex_count * 3 * 4 bytes (float32 XYZ, local space)
    - Indices: index_count * bytes_per_index bytes (uint8/uint16/uint32)
    """

    HEADER_FORMAT = '<QIIII16f'  # uint64, 4x uint32, 16 floats (4x4 pose, column-major)
    HEADER_SIZE = struct.calcsize(HEADER_FORMAT)

    def __init__(self, shm_path: str = '/dev/shm'):
        """
        Initialize shared memory reader.

        Args:
            shm_path: Path to shared memory directory (default: /dev/shm)
        """
        self.shm_path = shm_path
        if not os.path.exists(shm_path):
            raise RuntimeError(f"Shared memory path does not exist: {shm_path}")

    def _segment_path(self, shm_key: str) -> str:
        # POSIX SHM names start with /
        if shm_key.startswith('/'):
            shm_key = shm_key[1:]
        return os.path.join(self.shm_path, shm_key)

    def read_fragment(self, shm_key: str, fragment_id: Optional[str] = None) -> Optional[Fragment]:
        """
        Read one fragment from shared memory.

        Args:
            shm_key: Shared memory key (e.g., "mesh_fragment_0001" or "/mesh_fragment_0001")
            fragment_id: Identifier to attach (defaults to the key)

        Returns:
            Fragment or None if the segment is missing or truncated
        """
        shm_file = self._segment_path(shm_key)
        fragment_id = fragment_id or shm_key.lstrip('/')

        if not os.path.exists(shm_file):
            logger.warning(f"Shared memory file does not exist: {shm_file}")
            return None

        try:
            with open(shm_file, 'rb') as f:
                header_bytes = f.read(self.HEADER_SIZE)
                if len(header_bytes) < self.HEADER_SIZE:
                    logger.error(f"Incomplete header read: {len(header_bytes)} < {self.HEADER_SIZE}")
                    return None

                header_data = struct.unpack(self.HEADER_FORMAT, header_bytes)
                timestamp_ns = header_data[0]
                vertex_count = header_data[1]
                index_count = header_data[2]
                bytes_per_index = header_data[3]
                primitive_type = header_data[4]
                # Producers write pose.T.flatten(), so reshape and transpose back
                pose_matrix = np.array(header_data[5:21], dtype=np.float32).reshape(4, 4).T

                if bytes_per_index not in SUPPORTED_INDEX_WIDTHS:
                    logger.error(f"Unsupported index width in {shm_key}: {bytes_per_index}")
                    return None

                vertices_size = vertex_count * 3 * 4
                vertex_bytes = f.read(vertices_size)
                if len(vertex_bytes) < vertices_size:
                    logger.error(f"Incomplete vertex read: {len(vertex_bytes)} < {vertices_size}")
                    return None

                vertices = np.frombuffer(vertex_bytes, dtype='<f4').reshape(-1, 3)

                indices_size = index_count * bytes_per_index
                index_bytes = f.read(indices_size)
                if len(index_bytes) < indices_size:
                    logger.error(f"Incomplete index read: {len(index_bytes)} < {indices_size}")
                    return None

                indices = normalize_indices(index_bytes, bytes_per_index)

        except OSError as e:
            logger.error(f"Error reading shared memory {shm_key}: {e}")
            return None
        except GeometryError as e:
            logger.error(f"Malformed fragment in {shm_key}: {e}")
            return None

        logger.debug(
            f"Read fragment {fragment_id}: {vertex_count} vertices, "
            f"{index_count} indices ({bytes_per_index * 8}-bit)"
        )

        return Fragment(
            fragment_id=fragment_id,
            vertices=vertices,
            indices=indices,
            transform=pose_matrix,
            primitive_type=primitive_type,
            timestamp_ns=timestamp_ns
        )

    def write_fragment(
        self,
        shm_key: str,
        vertices: np.ndarray,
        indices: np.ndarray,
        pose: Optional[np.ndarray] = None,
        bytes_per_index: int = 4,
        primitive_type: int = PRIMITIVE_TRIANGLE,
        timestamp_ns: int = 0
    ) -> str:
        """
        Write a fragment segment (producer side and tests).

        Returns:
            Path of the written segment
        """
        if bytes_per_index not in SUPPORTED_INDEX_WIDTHS:
            raise ValueError(f"Unsupported index width: {bytes_per_index}")

        vertices = np.asarray(vertices, dtype='<f4').reshape(-1, 3)
        index_dtype = np.dtype(SUPPORTED_INDEX_WIDTHS[bytes_per_index]).newbyteorder('<')
        indices = np.asarray(indices).reshape(-1).astype(index_dtype)
        pose = np.eye(4, dtype=np.float32) if pose is None else np.asarray(pose, dtype=np.float32)

        header = struct.pack(
            self.HEADER_FORMAT,
            timestamp_ns,
            len(vertices),
            len(indices),
            bytes_per_index,
            primitive_type,
            *pose.T.flatten()
        )

        shm_file = self._segment_path(shm_key)
        with open(shm_file, 'wb') as f:
            f.write(header)
            f.write(vertices.tobytes())
            f.write(indices.tobytes())

        return shm_file

    def unlink(self, shm_key: str) -> bool:
        """
        Remove shared memory segment.

        Args:
            shm_key: Shared memory key to remove

        Returns:
            True if successfully removed, False otherwise
        """
        shm_file = self._segment_path(shm_key)
        try:
            if os.path.exists(shm_file):
                os.unlink(shm_file)
                logger.debug(f"Unlinked shared memory: {shm_key}")
                return True
            return False
        except OSError as e:
            logger.error(f"Error unlinking shared memory {shm_key}: {e}")
            return False

    @staticmethod
    def calculate_size(vertex_count: int, index_count: int, bytes_per_index: int = 4) -> int:
        """
        Calculate total size needed for a fragment in shared memory.

        Args:
            vertex_count: Number of vertices
            index_count: Number of indices (3 per triangle)
            bytes_per_index: Index width in bytes (1, 2 or 4)

        Returns:
            Total size in bytes
        """
        vertices_size = vertex_count * 3 * 4  # 3 floats per vertex
        indices_size = index_count * bytes_per_index
        return FragmentReader.HEADER_SIZE + vertices_size + indices_size
