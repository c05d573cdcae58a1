import math

import numpy as np
import pytest

from scanmesh.errors import GeometryError
from scanmesh.processing.polygon import (
    convex_hull,
    cross,
    fan_triangulate,
    line_intersection,
    point_in_polygon,
    point_segment_distance,
    polygon_area,
    remove_short_sides,
    unique_points,
)

SQUARE = [(0.0, 0.0), (2.0, 0.0), (2.0, 2.0), (0.0, 2.0)]


def test_hull_drops_interior_and_collinear_points():
    points = [(0.0, 0.0), (2.0, 0.0), (2.0, 2.0), (0.0, 2.0), (1.0, 1.0), (1.0, 0.0)]
    assert convex_hull(points) == SQUARE


def test_hull_is_counter_clockwise():
    assert polygon_area(convex_hull([(2.0, 2.0), (0.0, 0.0), (0.0, 2.0), (2.0, 0.0)])) > 0


def test_hull_contains_every_input_point():
    rng = np.random.default_rng(3)
    points = [tuple(p) for p in rng.uniform(-5.0, 5.0, size=(200, 2)).tolist()]
    hull = convex_hull(points)

    assert 3 <= len(hull) <= len(points)
    n = len(hull)
    for p in points:
        for i in range(n):
            assert cross(hull[i], hull[(i + 1) % n], p) >= -1e-9


def test_hull_small_inputs():
    assert convex_hull([(1.0, 2.0)]) == [(1.0, 2.0)]
    assert convex_hull([(1.0, 2.0), (3.0, 4.0)]) == [(1.0, 2.0), (3.0, 4.0)]


def test_hull_rejects_empty_and_non_finite():
    with pytest.raises(GeometryError):
        convex_hull([])
    with pytest.raises(GeometryError):
        convex_hull([(0.0, 0.0), (1.0, math.nan), (1.0, 1.0)])


def test_line_intersection():
    assert line_intersection((0.0, 0.0), (1.0, 0.0), (2.0, -1.0), (2.0, 1.0)) == pytest.approx((2.0, 0.0))


def test_line_intersection_parallel():
    assert line_intersection((0.0, 0.0), (1.0, 0.0), (0.0, 1.0), (1.0, 1.0)) is None


def test_line_intersection_outside_limit():
    assert line_intersection((0.0, 0.0), (1.0, 0.0), (100.0, -1.0), (100.0, 1.0)) is None


def test_short_side_is_collapsed_to_corner():
    chamfered = [(0.0, 0.0), (2.0, 0.0), (2.0, 1.9), (1.9, 2.0), (0.0, 2.0)]
    result = remove_short_sides(chamfered, min_side_length=0.2)

    assert len(result) == 4
    for got, want in zip(result, SQUARE):
        assert got == pytest.approx(want)


def test_triangle_is_left_alone():
    triangle = [(0.0, 0.0), (0.1, 0.0), (0.0, 0.1)]
    assert remove_short_sides(triangle, min_side_length=1.0) == triangle


def test_short_side_removal_terminates():
    n = 20
    circle = [(0.1 * math.cos(2 * math.pi * k / n), 0.1 * math.sin(2 * math.pi * k / n)) for k in range(n)]
    result = remove_short_sides(circle, min_side_length=0.2)
    assert 3 <= len(result) <= n


def test_unique_points_rejects_close_points():
    points = [(0.0, 0.0), (0.01, 0.0), (0.1, 0.0), (0.1, 0.04)]
    assert unique_points(points, 0.05) == [(0.0, 0.0), (0.1, 0.0)]


def test_unique_points_keeps_existing_first():
    result = unique_points([(0.0, 0.01), (1.0, 1.0)], 0.05, kept=[(0.0, 0.0)])
    assert result == [(0.0, 0.0), (1.0, 1.0)]


def test_point_in_polygon():
    assert point_in_polygon((1.0, 1.0), SQUARE)
    assert not point_in_polygon((3.0, 1.0), SQUARE)
    assert not point_in_polygon((0.5, 0.5), SQUARE[:2])


def test_point_segment_distance():
    assert point_segment_distance((1.0, 1.0), (0.0, 0.0), (2.0, 0.0)) == pytest.approx(1.0)
    assert point_segment_distance((3.0, 0.0), (0.0, 0.0), (2.0, 0.0)) == pytest.approx(1.0)
    assert point_segment_distance((1.0, 1.0), (0.0, 0.0), (0.0, 0.0)) == pytest.approx(math.sqrt(2))


def test_fan_triangulate_lifts_to_height():
    mesh = fan_triangulate(SQUARE, 2.5, height_axis=1)

    assert mesh.triangles.tolist() == [[0, 1, 2], [0, 2, 3]]
    np.testing.assert_allclose(mesh.vertices[:, 1], 2.5)
    np.testing.assert_allclose(mesh.vertices[:, [0, 2]], SQUARE)


def test_fan_triangulate_needs_three_points():
    assert fan_triangulate(SQUARE[:2], 1.0).is_empty
