import numpy as np

from scanmesh.processing.aggregator import aggregate, aggregate_fragments, ingest_all, vertex_offsets
from scanmesh.processing.geometry import EMPTY_MESH, Fragment, Mesh

from conftest import quad_fragment, translation


def test_vertex_offsets():
    assert vertex_offsets([4, 3, 5]) == [0, 4, 7]
    assert vertex_offsets([]) == []


def test_two_fragments_are_offset():
    a = quad_fragment("a")
    b = quad_fragment("b", transform=translation(1.0, 0.0, 0.0))
    b.indices = np.array([1, 2, 3], dtype=np.uint32)

    mesh = aggregate_fragments([a, b])

    assert mesh.vertex_count == 8
    assert mesh.triangles.tolist() == [[0, 1, 2], [5, 6, 7]]
    np.testing.assert_allclose(mesh.vertices[:4], a.vertices)
    np.testing.assert_allclose(mesh.vertices[4:], np.asarray(b.vertices) + [1.0, 0.0, 0.0])


def test_identical_index_buffers_are_offset():
    a = quad_fragment("a")
    b = quad_fragment("b", transform=translation(1.0, 0.0, 0.0))

    mesh = aggregate_fragments([a, b])

    assert mesh.vertex_count == 8
    assert mesh.triangles.tolist() == [[0, 1, 2], [4, 5, 6]]
    np.testing.assert_array_equal(mesh.triangles[1], mesh.triangles[0] + 4)


def test_triangles_only_reference_own_fragment():
    rng = np.random.default_rng(7)
    fragments = []
    for k in range(6):
        count = int(rng.integers(3, 20))
        vertices = rng.normal(size=(count, 3)).astype(np.float32)
        indices = rng.integers(0, count, size=3 * int(rng.integers(1, 10))).astype(np.uint16)
        fragments.append(Fragment(fragment_id=f"f{k}", vertices=vertices, indices=indices))

    ingested = ingest_all(fragments)
    mesh = aggregate(ingested)

    offsets = vertex_offsets(f.vertex_count for f in ingested)
    row = 0
    for fragment, offset in zip(ingested, offsets):
        block = mesh.triangles[row:row + fragment.triangle_count]
        assert block.min() >= offset
        assert block.max() < offset + fragment.vertex_count
        row += fragment.triangle_count
    assert row == mesh.triangle_count


def test_fragment_order_is_preserved():
    a = quad_fragment("a", transform=translation(5.0, 0.0, 0.0))
    b = quad_fragment("b")
    mesh = aggregate_fragments([a, b])
    assert mesh.vertices[0, 0] == 5.0
    assert mesh.vertices[4, 0] == 0.0


def test_empty_input_gives_sentinel():
    mesh = aggregate([])
    assert mesh is EMPTY_MESH
    assert mesh is Mesh.empty()
    assert mesh.is_empty


def test_skipped_fragments_do_not_take_offsets():
    empty = Fragment(
        fragment_id="empty",
        vertices=np.zeros((0, 3), dtype=np.float32),
        indices=np.zeros(0, dtype=np.uint32)
    )
    mesh = aggregate_fragments([empty, quad_fragment()])
    assert mesh.vertex_count == 4
    assert mesh.triangles.tolist() == [[0, 1, 2]]


def test_aggregated_mesh_is_read_only():
    mesh = aggregate_fragments([quad_fragment()])
    assert not mesh.vertices.flags.writeable
    assert not mesh.triangles.flags.writeable
