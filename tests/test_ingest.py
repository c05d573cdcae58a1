import numpy as np
import pytest

from scanmesh.errors import GeometryError
from scanmesh.processing.geometry import PRIMITIVE_LINE, Fragment
from scanmesh.processing.ingest import ingest_fragment, normalize_indices, transform_points

from conftest import quad_fragment, translation


def test_identity_transform_keeps_vertices():
    fragment = quad_fragment()
    ingested = ingest_fragment(fragment)

    np.testing.assert_allclose(ingested.vertices, fragment.vertices)
    assert ingested.vertices.dtype == np.float32
    assert ingested.triangles.tolist() == [[0, 1, 2]]


def test_translation_is_applied_with_w_one():
    ingested = ingest_fragment(quad_fragment(transform=translation(1.0, 2.0, -3.0)))

    np.testing.assert_allclose(ingested.vertices[0], [1.0, 2.0, -3.0])
    np.testing.assert_allclose(ingested.vertices[2], [2.0, 3.0, -3.0])


def test_rotation_about_vertical_axis():
    # 90 degrees about +y maps +x to -z
    pose = np.array([
        [0.0, 0.0, 1.0, 0.0],
        [0.0, 1.0, 0.0, 0.0],
        [-1.0, 0.0, 0.0, 0.0],
        [0.0, 0.0, 0.0, 1.0],
    ])
    points = transform_points(np.array([[1.0, 0.0, 0.0]]), pose)
    np.testing.assert_allclose(points, [[0.0, 0.0, -1.0]], atol=1e-7)


@pytest.mark.parametrize("dtype", [np.uint8, np.uint16, np.uint32])
def test_index_widths_normalize_to_uint32(dtype):
    ingested = ingest_fragment(quad_fragment(dtype=dtype))
    assert ingested.triangles.dtype == np.uint32
    assert ingested.triangles.tolist() == [[0, 1, 2]]


def test_normalize_raw_index_bytes():
    raw = np.array([0, 1, 2, 300], dtype='<u2').tobytes()
    indices = normalize_indices(raw, bytes_per_index=2)
    assert indices.dtype == np.uint32
    assert indices.tolist() == [0, 1, 2, 300]


def test_normalize_rejects_unsupported_width():
    with pytest.raises(GeometryError):
        normalize_indices(b'\x00\x00\x00', bytes_per_index=3)


def test_normalize_rejects_negative_indices():
    with pytest.raises(GeometryError):
        normalize_indices(np.array([0, -1, 2]))


def test_empty_fragment_is_skipped():
    fragment = Fragment(
        fragment_id="empty",
        vertices=np.zeros((0, 3), dtype=np.float32),
        indices=np.zeros(0, dtype=np.uint32)
    )
    assert ingest_fragment(fragment) is None


def test_line_primitive_is_skipped():
    fragment = quad_fragment()
    fragment.primitive_type = PRIMITIVE_LINE
    assert ingest_fragment(fragment) is None


def test_index_count_not_divisible_by_three():
    fragment = quad_fragment()
    fragment.indices = np.array([0, 1, 2, 3], dtype=np.uint32)
    with pytest.raises(GeometryError):
        ingest_fragment(fragment)


def test_index_out_of_range():
    fragment = quad_fragment()
    fragment.indices = np.array([0, 1, 4], dtype=np.uint32)
    with pytest.raises(GeometryError):
        ingest_fragment(fragment)


def test_transform_must_be_4x4():
    fragment = quad_fragment(transform=np.eye(3))
    with pytest.raises(GeometryError):
        ingest_fragment(fragment)


def test_transform_must_be_finite():
    pose = translation()
    pose[0, 3] = np.nan
    with pytest.raises(GeometryError):
        ingest_fragment(quad_fragment(transform=pose))


def test_vertices_must_be_finite():
    fragment = quad_fragment()
    fragment.vertices[1, 2] = np.inf
    with pytest.raises(GeometryError):
        ingest_fragment(fragment)
