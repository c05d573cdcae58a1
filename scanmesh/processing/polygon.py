"""
2D polygon helpers for ceiling boundary extraction.

Points are (x, y) pairs in the horizontal projection plane. Polygons are
plain ordered lists of points; closing edges are implicit.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from scanmesh.errors import GeometryError
from scanmesh.processing.geometry import Mesh

logger = logging.getLogger(__name__)

Point2 = Tuple[float, float]


def cross(o: Point2, a: Point2, b: Point2) -> float:
    """Z component of (a - o) x (b - o); positive for a left turn"""
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def distance(a: Point2, b: Point2) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def as_points(points: Iterable) -> List[Point2]:
    """Convert arrays or sequences of pairs to a list of float tuples"""
    return [(float(p[0]), float(p[1])) for p in points]


def unique_points(
    points: Iterable[Point2],
    min_distance: float,
    kept: Optional[Sequence[Point2]] = None
) -> List[Point2]:
    """
    Rejection-based deduplication.

    A point closer than min_distance to any already kept point is discarded
    (not averaged). Points in `kept` are always retained and come first.

    Args:
        points: Candidate points, in order
        min_distance: Minimum separation
        kept: Points already accepted

    Returns:
        Kept points followed by accepted candidates
    """
    result: List[Point2] = []
    grid: Dict[Tuple[int, int], List[Point2]] = {}
    min_sq = min_distance * min_distance

    def cell_of(p: Point2) -> Tuple[int, int]:
        return (math.floor(p[0] / min_distance), math.floor(p[1] / min_distance))

    def add(p: Point2) -> None:
        result.append(p)
        grid.setdefault(cell_of(p), []).append(p)

    for p in kept or ():
        add(p)

    for p in points:
        cx, cy = cell_of(p)
        too_close = False
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for q in grid.get((cx + dx, cy + dy), ()):
                    if (p[0] - q[0]) ** 2 + (p[1] - q[1]) ** 2 < min_sq:
                        too_close = True
                        break
                if too_close:
                    break
            if too_close:
                break
        if not too_close:
            add(p)

    return result


def convex_hull(points: Sequence[Point2]) -> List[Point2]:
    """
    Monotone-chain convex hull.

    Collinear points are dropped (strict left turns only). The hull is
    counter-clockwise without a repeated closing point.

    Args:
        points: Input points

    Returns:
        Hull vertices; inputs with fewer than 3 points are returned as-is

    Raises:
        GeometryError: On empty or non-finite input
    """
    if len(points) == 0:
        raise GeometryError("Cannot build a convex hull from zero points")
    pts = as_points(points)
    if not all(math.isfinite(x) and math.isfinite(y) for x, y in pts):
        raise GeometryError("Convex hull input contains non-finite coordinates")
    if len(pts) <= 2:
        return pts

    pts = sorted(pts)

    lower: List[Point2] = []
    for p in pts:
        while len(lower) >= 2 and cross(lower[-2], lower[-1], p) <= 0:
            lower.pop()
        lower.append(p)

    upper: List[Point2] = []
    for p in reversed(pts):
        while len(upper) >= 2 and cross(upper[-2], upper[-1], p) <= 0:
            upper.pop()
        upper.append(p)

    # Last point of each chain is the first point of the other
    return lower[:-1] + upper[:-1]


def line_intersection(
    p1: Point2, p2: Point2, p3: Point2, p4: Point2,
    parallel_epsilon: float = 1e-6,
    limit: float = 10.0
) -> Optional[Point2]:
    """
    Intersect the infinite lines p1-p2 and p3-p4.

    Returns:
        Intersection point, or None if the lines are nearly parallel or the
        parameter along p1-p2 falls outside [-limit, limit]
    """
    denominator = (p1[0] - p2[0]) * (p3[1] - p4[1]) - (p1[1] - p2[1]) * (p3[0] - p4[0])
    if abs(denominator) < parallel_epsilon:
        return None

    t = ((p1[0] - p3[0]) * (p3[1] - p4[1]) - (p1[1] - p3[1]) * (p3[0] - p4[0])) / denominator
    if t < -limit or t > limit:
        return None

    return (p1[0] + t * (p2[0] - p1[0]), p1[1] + t * (p2[1] - p1[1]))


def remove_short_sides(
    polygon: Sequence[Point2],
    min_side_length: float,
    parallel_epsilon: float = 1e-6,
    limit: float = 10.0
) -> List[Point2]:
    """
    Collapse sides shorter than min_side_length.

    The two endpoints of a short side are replaced by the intersection of the
    neighbouring sides extended as lines. The scan restarts after every merge
    and stops when no side qualifies or fewer than 4 vertices remain. Every
    merge removes one vertex, so this runs at most len(polygon) - 3 merges.

    Args:
        polygon: Ordered polygon vertices
        min_side_length: Sides shorter than this are collapsed

    Returns:
        Simplified polygon (new list)
    """
    result = as_points(polygon)
    merges = 0

    modified = True
    while modified and len(result) >= 4:
        modified = False
        n = len(result)
        for i in range(n):
            current = result[i]
            following = result[(i + 1) % n]
            if distance(current, following) >= min_side_length:
                continue

            prev = result[(i - 1) % n]
            after = result[(i + 2) % n]
            intersection = line_intersection(
                prev, current, following, after,
                parallel_epsilon=parallel_epsilon,
                limit=limit
            )
            if intersection is None:
                continue

            result[i] = intersection
            del result[(i + 1) % n]
            merges += 1
            modified = True
            break

    if merges:
        logger.debug(f"Short-side removal: {merges} merge(s), {len(result)} vertices left")
    return result


def point_in_polygon(point: Point2, polygon: Sequence[Point2]) -> bool:
    """Ray-casting parity test (points on the boundary may go either way)"""
    n = len(polygon)
    if n < 3:
        return False
    x, y = point
    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def point_segment_distance(point: Point2, a: Point2, b: Point2) -> float:
    """Distance from a point to the closed segment a-b"""
    dx, dy = b[0] - a[0], b[1] - a[1]
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return distance(point, a)
    t = ((point[0] - a[0]) * dx + (point[1] - a[1]) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    return distance(point, (a[0] + t * dx, a[1] + t * dy))


def polygon_area(polygon: Sequence[Point2]) -> float:
    """Signed shoelace area; positive for counter-clockwise order"""
    n = len(polygon)
    area = 0.0
    for i in range(n):
        x1, y1 = polygon[i]
        x2, y2 = polygon[(i + 1) % n]
        area += x1 * y2 - x2 * y1
    return area / 2.0


def fan_triangulate(polygon: Sequence[Point2], height: float, height_axis: int = 1) -> Mesh:
    """
    Fan-triangulate a polygon from vertex 0 and lift it to 3D.

    Args:
        polygon: Ordered 2D vertices
        height: Value placed on the height axis
        height_axis: Index of the vertical axis

    Returns:
        Mesh with len(polygon) vertices and len(polygon) - 2 triangles, or
        the empty mesh for fewer than 3 vertices
    """
    if len(polygon) < 3:
        return Mesh.empty()

    plane_axes = [axis for axis in range(3) if axis != height_axis]
    vertices = np.zeros((len(polygon), 3), dtype=np.float32)
    points = np.asarray(polygon, dtype=np.float64)
    vertices[:, plane_axes[0]] = points[:, 0]
    vertices[:, plane_axes[1]] = points[:, 1]
    vertices[:, height_axis] = height

    triangles = [(0, i, i + 1) for i in range(1, len(polygon) - 1)]
    return Mesh(vertices, np.array(triangles, dtype=np.uint32))
