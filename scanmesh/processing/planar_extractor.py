"""
Planar surface (ceiling) extractor.

Maintains one BoundaryPolygon for the whole capture session and updates it
from each aggregated mesh. Two variants are selected by configuration:

- hull: reference height from the mean of the highest vertices, then every
  cycle the vertices near that height are merged into the polygon and the
  convex hull is recomputed and simplified.
- concave: triangles facing steeply downward are ceiling candidates; their
  vertices are inserted one by one into a possibly concave polygon next to
  the nearest edge. The polygon is not guaranteed to stay simple.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from scanmesh.config import CeilingStrategy, ReconstructionConfig
from scanmesh.processing.geometry import Mesh, triangle_normals, unit_normals
from scanmesh.processing.polygon import (
    Point2,
    convex_hull,
    distance,
    fan_triangulate,
    point_in_polygon,
    point_segment_distance,
    polygon_area,
    remove_short_sides,
    unique_points,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolygonUpdate:
    """Immutable view of the boundary polygon handed to the renderer"""
    points: Tuple[Point2, ...]
    height: float
    strategy: str
    mesh: Mesh  # Fan triangulation from vertex 0, lifted to `height`

    @property
    def point_count(self) -> int:
        return len(self.points)

    @property
    def area(self) -> float:
        """Enclosed area in square metres (orientation ignored)"""
        return abs(polygon_area(self.points))


class BoundaryPolygon:
    """
    Cumulative 2D boundary of the dominant horizontal surface.

    Lives for the whole session and is mutated in place. No two points are
    closer than `min_separation`.
    """

    def __init__(self, min_separation: float):
        self.min_separation = min_separation
        self.height: Optional[float] = None
        self._points: List[Point2] = []

    @property
    def points(self) -> List[Point2]:
        return list(self._points)

    @property
    def is_established(self) -> bool:
        return self.height is not None

    @property
    def area(self) -> float:
        return abs(polygon_area(self._points))

    def __len__(self) -> int:
        return len(self._points)

    def establish(self, height: float) -> None:
        """Fix the reference height (only once per session)"""
        if self.height is not None:
            raise RuntimeError("Reference height is already established")
        self.height = float(height)
        logger.info(f"Ceiling reference height established: {self.height:.3f}")

    def replace_points(self, points: List[Point2]) -> None:
        """Swap in a recomputed outline, keeping the separation invariant"""
        self._points[:] = unique_points(points, self.min_separation)

    def is_separated(self, point: Point2) -> bool:
        return all(distance(point, q) >= self.min_separation for q in self._points)

    def append(self, point: Point2) -> bool:
        if not self.is_separated(point):
            return False
        self._points.append(point)
        return True

    def insert(self, index: int, point: Point2) -> bool:
        if not self.is_separated(point):
            return False
        self._points.insert(index, point)
        return True

    def clear(self) -> None:
        self.height = None
        self._points.clear()


class PlanarSurfaceExtractor:
    """Ceiling boundary tracker; the variant is picked from the config"""

    def __init__(self, config: Optional[ReconstructionConfig] = None):
        self.config = config or ReconstructionConfig()
        self.strategy = CeilingStrategy(self.config.ceiling_strategy)
        self.height_axis = self.config.height_axis
        self.plane_axes = list(self.config.plane_axes)

        min_separation = (
            self.config.min_point_distance
            if self.strategy == CeilingStrategy.HULL
            else self.config.concave_min_distance
        )
        self.polygon = BoundaryPolygon(min_separation)
        self.update_count = 0

        logger.info(f"PlanarSurfaceExtractor initialized: strategy={self.strategy.value}")

    def update(self, mesh: Mesh) -> Optional[PolygonUpdate]:
        """
        Fold one aggregated mesh into the boundary polygon.

        Args:
            mesh: Aggregated world-space mesh for this cycle

        Returns:
            PolygonUpdate if the polygon changed, otherwise None
        """
        if mesh.vertex_count == 0:
            return None

        start_time = time.time()
        before = self.polygon.points
        before_height = self.polygon.height

        if self.strategy == CeilingStrategy.HULL:
            self._update_hull(mesh)
        else:
            self._update_concave(mesh)

        if self.polygon.points == before and self.polygon.height == before_height:
            return None

        self.update_count += 1
        elapsed_ms = (time.time() - start_time) * 1000
        logger.debug(
            f"Ceiling polygon updated: {len(before)} -> {len(self.polygon)} points "
            f"in {elapsed_ms:.1f}ms"
        )
        return self.current_polygon()

    def current_polygon(self) -> Optional[PolygonUpdate]:
        """Immutable snapshot of the polygon, or None before a height is known"""
        if not self.polygon.is_established:
            return None
        points = tuple(self.polygon.points)
        return PolygonUpdate(
            points=points,
            height=self.polygon.height,
            strategy=self.strategy.value,
            mesh=fan_triangulate(points, self.polygon.height, self.height_axis)
        )

    def reset(self) -> None:
        self.polygon.clear()
        self.update_count = 0
        logger.info("Ceiling polygon reset")

    def _project(self, vertices: np.ndarray) -> np.ndarray:
        return np.asarray(vertices, dtype=np.float64)[:, self.plane_axes]

    # --- Threshold + convex hull ---

    def _reference_height(self, heights: np.ndarray) -> float:
        """Mean of the top fraction of heights (at least one vertex)"""
        ordered = np.sort(heights)[::-1]
        top_count = max(1, int(math.floor(len(ordered) * self.config.top_fraction + 1e-9)))
        return float(ordered[:top_count].mean())

    def _update_hull(self, mesh: Mesh) -> None:
        # A NaN here would become the session's reference height
        vertices = mesh.vertices[np.all(np.isfinite(mesh.vertices), axis=1)]
        if len(vertices) == 0:
            return
        heights = vertices[:, self.height_axis].astype(np.float64)

        if not self.polygon.is_established:
            self.polygon.establish(self._reference_height(heights))

        near = np.abs(heights - self.polygon.height) < self.config.height_threshold
        if not np.any(near):
            return

        candidates = [tuple(p) for p in self._project(vertices[near]).tolist()]
        merged = unique_points(
            candidates, self.config.min_point_distance, kept=self.polygon.points
        )
        logger.debug(
            f"Ceiling candidates: {len(candidates)} new, {len(self.polygon)} kept, "
            f"{len(merged)} after dedup"
        )

        hull = convex_hull(merged)
        hull = remove_short_sides(
            hull,
            self.config.min_side_length,
            parallel_epsilon=self.config.parallel_epsilon,
            limit=self.config.intersection_limit
        )
        self.polygon.replace_points(hull)

    # --- Downward normals + concave insertion ---

    def _update_concave(self, mesh: Mesh) -> None:
        if mesh.triangle_count == 0:
            return

        normals = unit_normals(triangle_normals(mesh.vertices, mesh.triangles))
        faces = mesh.triangles[normals[:, self.height_axis] < self.config.ceiling_normal_threshold]
        if len(faces) == 0:
            return

        corners = mesh.vertices[faces].astype(np.float64)  # (F, 3, 3)
        corners = corners[np.all(np.isfinite(corners), axis=(1, 2))]
        if len(corners) == 0:
            return
        face_heights = corners[:, :, self.height_axis].mean(axis=1)

        if not self.polygon.is_established:
            self._seed_polygon(corners[0], float(face_heights[0]))
            corners, face_heights = corners[1:], face_heights[1:]

        accepted = np.abs(face_heights - self.polygon.height) <= self.config.height_tolerance
        for face in corners[accepted]:
            for point in self._project(face).tolist():
                self._insert_concave((point[0], point[1]))

    def _seed_polygon(self, face: np.ndarray, height: float) -> None:
        self.polygon.establish(height)
        seed = [tuple(p) for p in self._project(face).tolist()]
        for point in unique_points(seed, self.config.concave_min_distance):
            self.polygon.append(point)

    def _insert_concave(self, point: Point2) -> bool:
        """Insert after the edge with the nearest midpoint unless already covered"""
        points = self.polygon.points
        min_distance = self.config.concave_min_distance

        if len(points) < 3:
            return self.polygon.append(point)

        if point_in_polygon(point, points):
            return False

        n = len(points)
        best_index = 0
        best_distance = math.inf
        for i in range(n):
            a, b = points[i], points[(i + 1) % n]
            if point_segment_distance(point, a, b) < min_distance:
                return False
            midpoint = ((a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0)
            d = distance(point, midpoint)
            if d < best_distance:
                best_distance = d
                best_index = i

        return self.polygon.insert(best_index + 1, point)
