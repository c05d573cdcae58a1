"""
Reconstruction session.

Runs one update cycle per fragment snapshot: ingest, aggregate, denoise,
ceiling update and smoothing. The mesh is rebuilt from scratch every cycle;
only the ceiling polygon carries state from one cycle to the next.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from scanmesh.config import ReconstructionConfig
from scanmesh.errors import GeometryError
from scanmesh.processing.aggregator import aggregate, ingest_all
from scanmesh.processing.denoiser import denoise
from scanmesh.processing.geometry import EMPTY_MESH, Fragment, Mesh, Snapshot
from scanmesh.processing.planar_extractor import PlanarSurfaceExtractor, PolygonUpdate
from scanmesh.processing.smoother import smooth_mesh

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleResult:
    """Immutable output of one update cycle"""
    sequence: int
    snapshot_id: str
    timestamp_ns: int
    mesh: Mesh  # Aggregated (and denoised, if enabled)
    smoothed_mesh: Optional[Mesh]  # None when smoothing is disabled
    polygon: Optional[PolygonUpdate]  # Set only when the polygon changed
    stats: Dict = field(default_factory=dict)

    @property
    def polygon_changed(self) -> bool:
        return self.polygon is not None


class ReconstructionSession:
    """
    Owner of all per-session reconstruction state.

    Not thread-safe: call it from a single worker only (see SnapshotWorker).
    """

    def __init__(self, config: Optional[ReconstructionConfig] = None):
        """
        Initialize reconstruction session.

        Args:
            config: Tunable constants (defaults from the environment)
        """
        self.config = config or ReconstructionConfig()
        self.extractor = PlanarSurfaceExtractor(self.config)

        # Tracking
        self.sequence = 0
        self.total_snapshots = 0
        self.failed_cycles = 0
        self.last_fragments: Tuple[Fragment, ...] = ()
        self.last_stats: Dict = {}

        logger.info(
            f"ReconstructionSession initialized: strategy={self.extractor.strategy.value}, "
            f"denoise={self.config.denoise_enabled}, "
            f"smoothing={self.config.smoothing_iterations if self.config.smoothing_enabled else 'off'}"
        )

    def process_snapshot(self, snapshot: Snapshot) -> CycleResult:
        """
        Run one update cycle.

        Geometry errors never escape: the cycle falls back to the empty mesh
        and the polygon is left untouched.

        Args:
            snapshot: Fragments delivered for this cycle

        Returns:
            CycleResult for the renderer
        """
        start_time = time.time()
        self.sequence += 1
        self.total_snapshots += 1
        self.last_fragments = tuple(snapshot.fragments)

        removed = 0
        polygon = None
        smoothed = None
        timings = {}

        try:
            t0 = time.time()
            raw_mesh = aggregate(ingest_all(snapshot.fragments))
            timings['aggregate_ms'] = (time.time() - t0) * 1000
        except GeometryError as e:
            self.failed_cycles += 1
            logger.warning(f"Snapshot {snapshot.snapshot_id or self.sequence}: {e}; using empty mesh")
            raw_mesh = EMPTY_MESH

        mesh = raw_mesh
        if self.config.denoise_enabled and raw_mesh.triangle_count:
            t0 = time.time()
            result = denoise(raw_mesh, self.config.coplanar_cos)
            mesh, removed = result.mesh, result.removed_count
            timings['denoise_ms'] = (time.time() - t0) * 1000

        t0 = time.time()
        try:
            polygon = self.extractor.update(raw_mesh)
        except GeometryError as e:
            logger.warning(f"Ceiling update skipped: {e}")
        timings['ceiling_ms'] = (time.time() - t0) * 1000

        if self.config.smoothing_enabled:
            t0 = time.time()
            smoothed = smooth_mesh(mesh, self.config.smoothing_iterations)
            timings['smooth_ms'] = (time.time() - t0) * 1000

        elapsed_ms = (time.time() - start_time) * 1000
        stats = {
            'sequence': self.sequence,
            'fragment_count': len(snapshot.fragments),
            'vertex_count': mesh.vertex_count,
            'triangle_count': mesh.triangle_count,
            'removed_triangles': removed,
            'ceiling_point_count': len(self.extractor.polygon),
            'ceiling_height': self.extractor.polygon.height,
            'ceiling_area': self.extractor.polygon.area,
            'cycle_ms': elapsed_ms,
            **timings
        }
        self.last_stats = stats

        logger.debug(
            f"Cycle {self.sequence}: {len(snapshot.fragments)} fragments, "
            f"{mesh.vertex_count:,} vertices, {mesh.triangle_count:,} triangles "
            f"(-{removed}) in {elapsed_ms:.1f}ms"
        )

        return CycleResult(
            sequence=self.sequence,
            snapshot_id=snapshot.snapshot_id,
            timestamp_ns=snapshot.timestamp_ns,
            mesh=mesh,
            smoothed_mesh=smoothed,
            polygon=polygon,
            stats=stats
        )

    def current_polygon(self) -> Optional[PolygonUpdate]:
        return self.extractor.current_polygon()

    def get_statistics(self) -> dict:
        """
        Get current statistics.

        Returns:
            Dictionary with session statistics
        """
        return {
            'total_snapshots': self.total_snapshots,
            'failed_cycles': self.failed_cycles,
            'polygon_updates': self.extractor.update_count,
            'ceiling_point_count': len(self.extractor.polygon),
            'ceiling_height': self.extractor.polygon.height,
            'ceiling_area': self.extractor.polygon.area,
            'last_vertex_count': self.last_stats.get('vertex_count', 0),
            'last_triangle_count': self.last_stats.get('triangle_count', 0),
            'last_removed_triangles': self.last_stats.get('removed_triangles', 0),
            'last_cycle_ms': self.last_stats.get('cycle_ms', 0.0),
        }

    def reset(self) -> None:
        """Discard the ceiling polygon and cached fragments"""
        self.extractor.reset()
        self.last_fragments = ()
        self.last_stats = {}
        logger.info("Reconstruction session reset")

    def __repr__(self) -> str:
        stats = self.get_statistics()
        return (
            f"ReconstructionSession(snapshots={stats['total_snapshots']}, "
            f"ceiling_points={stats['ceiling_point_count']}, "
            f"strategy={self.extractor.strategy.value})"
        )
