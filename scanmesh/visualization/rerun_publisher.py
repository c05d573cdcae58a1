"""
Rerun publisher for mesh and ceiling visualization.

Handles logging of the reconstructed mesh, the smoothed mesh, the ceiling
polygon, and statistics to Rerun.
"""

import rerun as rr
import numpy as np
import logging
import time
from typing import Optional

from scanmesh.processing.geometry import Mesh
from scanmesh.processing.planar_extractor import PolygonUpdate

logger = logging.getLogger(__name__)

MESH_ENTITY = "/scan/world/mesh"
SMOOTHED_ENTITY = "/scan/world/smoothed_mesh"
CEILING_ENTITY = "/scan/world/ceiling"
CEILING_OUTLINE_ENTITY = "/scan/world/ceiling_outline"
STATS_ENTITY = "/scan/stats"

MESH_COLOR = [0, 200, 0]
SMOOTHED_COLOR = [0, 90, 255]
CEILING_COLOR = [255, 140, 0]


def _set_time(timestamp_ns: Optional[int]) -> None:
    if timestamp_ns:
        rr.set_time("sensor_time", timestamp=np.datetime64(timestamp_ns, "ns"))


class RerunPublisher:
    """Publishes reconstruction results to the Rerun viewer"""

    def __init__(self, log_interval_seconds: float = 0.5):
        """
        Initialize Rerun publisher.

        Args:
            log_interval_seconds: Minimum interval between mesh updates (default: 500ms)
        """
        self.log_interval = log_interval_seconds
        self.last_mesh_log = 0.0

        self.mesh_update_count = 0
        self.polygon_update_count = 0

        logger.info(f"RerunPublisher initialized: mesh_interval={log_interval_seconds}s")

    def seconds_until_next_mesh(self) -> float:
        """Time left before the throttle lets another mesh through"""
        return max(0.0, self.last_mesh_log + self.log_interval - time.time())

    def should_log_mesh(self) -> bool:
        """Check if it's time to log a mesh update"""
        return self.seconds_until_next_mesh() <= 0.0

    def log_mesh(
        self,
        mesh: Mesh,
        timestamp_ns: Optional[int] = None,
        smoothed: Optional[Mesh] = None
    ) -> None:
        """
        Log the reconstructed mesh (and its smoothed version, when given).

        Only one of the two is shown; the smoothed mesh replaces the raw one.

        Args:
            mesh: Aggregated mesh
            timestamp_ns: Optional timestamp in nanoseconds
            smoothed: Optional smoothed mesh
        """
        _set_time(timestamp_ns)

        if smoothed is not None and smoothed.triangle_count:
            rr.log(MESH_ENTITY, rr.Clear(recursive=False))
            rr.log(
                SMOOTHED_ENTITY,
                rr.Mesh3D(
                    vertex_positions=smoothed.vertices,
                    triangle_indices=smoothed.triangles,
                    albedo_factor=SMOOTHED_COLOR
                )
            )
        elif mesh.triangle_count:
            rr.log(SMOOTHED_ENTITY, rr.Clear(recursive=False))
            rr.log(
                MESH_ENTITY,
                rr.Mesh3D(
                    vertex_positions=mesh.vertices,
                    triangle_indices=mesh.triangles,
                    albedo_factor=MESH_COLOR
                )
            )
        else:
            # Empty-mesh sentinel: clear whatever was shown
            rr.log(MESH_ENTITY, rr.Clear(recursive=False))
            rr.log(SMOOTHED_ENTITY, rr.Clear(recursive=False))

        self.last_mesh_log = time.time()
        self.mesh_update_count += 1

        logger.debug(f"Logged mesh: {mesh.vertex_count:,} vertices, {mesh.triangle_count:,} triangles")

    def log_polygon(self, polygon: PolygonUpdate, timestamp_ns: Optional[int] = None) -> None:
        """
        Log the ceiling polygon as a filled fan and a closed outline.

        Args:
            polygon: Current ceiling polygon
            timestamp_ns: Optional timestamp in nanoseconds
        """
        if polygon.point_count < 3:
            return

        _set_time(timestamp_ns)

        rr.log(
            CEILING_ENTITY,
            rr.Mesh3D(
                vertex_positions=polygon.mesh.vertices,
                triangle_indices=polygon.mesh.triangles,
                albedo_factor=CEILING_COLOR
            )
        )

        outline = np.vstack([polygon.mesh.vertices, polygon.mesh.vertices[:1]])
        rr.log(CEILING_OUTLINE_ENTITY, rr.LineStrips3D([outline], colors=[CEILING_COLOR]))

        self.polygon_update_count += 1
        logger.debug(f"Logged ceiling polygon: {polygon.point_count} points at {polygon.height:.3f}")

    def log_statistics(self, stats: dict) -> None:
        """
        Log statistics panel.

        Args:
            stats: Dictionary with statistics
        """
        height = stats.get('ceiling_height')
        height_str = f"{height:.3f} m" if height is not None else "not detected"

        stats_text = f"""# 🏠 Scan Mesh Statistics

## Mesh
- **Snapshots:** {stats.get('total_snapshots', 0)}
- **Vertices:** {stats.get('last_vertex_count', 0):,}
- **Triangles:** {stats.get('last_triangle_count', 0):,}
- **Removed (coplanar):** {stats.get('last_removed_triangles', 0):,}
- **Cycle Time:** {stats.get('last_cycle_ms', 0.0):.1f} ms

## Ceiling
- **Height:** {height_str}
- **Points:** {stats.get('ceiling_point_count', 0)}
- **Area:** {stats.get('ceiling_area', 0.0):.2f} m²
- **Polygon Updates:** {stats.get('polygon_updates', 0)}

## Worker
- **Pending:** {stats.get('pending_commands', 0)} (peak {stats.get('peak_pending_commands', 0)})
- **Failed Cycles:** {stats.get('failed_cycles', 0)}

## Publisher
- **Mesh Updates:** {self.mesh_update_count}
- **Polygon Updates:** {self.polygon_update_count}
"""

        rr.log(STATS_ENTITY, rr.TextDocument(stats_text, media_type=rr.MediaType.MARKDOWN))

    def get_statistics(self) -> dict:
        """Get publisher statistics"""
        return {
            'mesh_updates': self.mesh_update_count,
            'polygon_log_count': self.polygon_update_count
        }
