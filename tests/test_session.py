import asyncio
import threading

import numpy as np
import pytest

from scanmesh.processing.geometry import EMPTY_MESH, Fragment, Snapshot
from scanmesh.processing.session import ReconstructionSession
from scanmesh.processing.worker import SceneState, SnapshotWorker

from conftest import ceiling_mesh, quad_fragment


def ceiling_fragment(fragment_id="room", height=2.5, width=4.0):
    mesh = ceiling_mesh(height=height, width=width)
    return Fragment(
        fragment_id=fragment_id,
        vertices=np.array(mesh.vertices),
        indices=mesh.flat_indices.astype(np.uint16)
    )


def snapshot(*fragments, snapshot_id="s"):
    return Snapshot(fragments=tuple(fragments), snapshot_id=snapshot_id, timestamp_ns=1)


def test_cycle_produces_mesh_and_polygon(recon_config):
    session = ReconstructionSession(recon_config)
    result = session.process_snapshot(snapshot(ceiling_fragment()))

    assert result.sequence == 1
    assert result.mesh.vertex_count == 8
    # One of each coplanar pair is removed
    assert result.mesh.triangle_count == 2
    assert result.stats['removed_triangles'] == 2
    assert result.smoothed_mesh.vertex_count == 8
    assert result.polygon_changed
    assert result.polygon.height == pytest.approx(2.5)


def test_polygon_is_reported_only_when_changed(recon_config):
    session = ReconstructionSession(recon_config)
    session.process_snapshot(snapshot(ceiling_fragment()))
    result = session.process_snapshot(snapshot(ceiling_fragment()))

    assert result.polygon is None
    assert session.current_polygon().point_count == 4


def test_mesh_is_rebuilt_each_cycle(recon_config):
    session = ReconstructionSession(recon_config)
    session.process_snapshot(snapshot(quad_fragment("a"), quad_fragment("b")))
    result = session.process_snapshot(snapshot(quad_fragment("a")))
    assert result.mesh.vertex_count == 4


def test_malformed_fragment_falls_back_to_empty_mesh(recon_config):
    bad = quad_fragment()
    bad.indices = np.array([0, 1, 9], dtype=np.uint32)

    session = ReconstructionSession(recon_config)
    session.process_snapshot(snapshot(ceiling_fragment()))
    result = session.process_snapshot(snapshot(bad))

    assert result.mesh is EMPTY_MESH
    assert result.polygon is None
    assert session.failed_cycles == 1
    # The polygon survives a failed cycle
    assert session.current_polygon().point_count == 4


def test_disabled_stages(recon_config):
    recon_config.denoise_enabled = False
    recon_config.smoothing_enabled = False
    session = ReconstructionSession(recon_config)
    result = session.process_snapshot(snapshot(ceiling_fragment()))

    assert result.mesh.triangle_count == 4
    assert result.smoothed_mesh is None


def test_reset_forgets_polygon_and_fragments(recon_config):
    session = ReconstructionSession(recon_config)
    session.process_snapshot(snapshot(ceiling_fragment()))
    session.reset()

    assert session.current_polygon() is None
    assert session.last_fragments == ()


def test_worker_runs_snapshots_in_order(recon_config):
    async def scenario():
        worker = SnapshotWorker(recon_config, max_pending=1)
        try:
            results = await asyncio.gather(*[
                worker.ingest_snapshot(snapshot(ceiling_fragment(width=w), snapshot_id=str(i)))
                for i, w in enumerate([4.0, 5.0, 6.0])
            ])
            polygon = await worker.current_polygon()
            stats = await worker.statistics()
            fragments = await worker.last_fragments()
        finally:
            worker.close()
        return results, polygon, stats, fragments

    results, polygon, stats, fragments = asyncio.run(scenario())

    assert [r.sequence for r in results] == [1, 2, 3]
    assert [r.snapshot_id for r in results] == ['0', '1', '2']
    assert max(p[0] for p in polygon.points) == pytest.approx(6.0)
    assert stats['total_snapshots'] == 3
    assert stats['peak_pending_commands'] >= 1
    assert fragments[0].fragment_id == "room"


def test_closed_worker_rejects_commands(recon_config):
    worker = SnapshotWorker(recon_config)
    worker.close()
    with pytest.raises(RuntimeError):
        asyncio.run(worker.ingest_snapshot(snapshot(quad_fragment())))


def test_scene_state_swaps_results(recon_config):
    session = ReconstructionSession(recon_config)
    scene = SceneState()

    first = session.process_snapshot(snapshot(ceiling_fragment()))
    second = session.process_snapshot(snapshot(ceiling_fragment()))

    assert scene.apply(first) is True
    assert scene.apply(second) is False
    assert scene.result is second
    # The last polygon stays until a new one arrives
    assert scene.polygon is first.polygon

    scene.clear()
    assert scene.result is None and scene.polygon is None


@pytest.mark.parametrize("row, column", [(4, 1), (5, 0)])
def test_non_finite_vertex_does_not_poison_ceiling(recon_config, row, column):
    bad = ceiling_fragment()
    bad.vertices[row, column] = np.nan

    session = ReconstructionSession(recon_config)
    result = session.process_snapshot(snapshot(bad))
    assert result.mesh is EMPTY_MESH
    assert session.failed_cycles == 1
    assert session.current_polygon() is None

    result = session.process_snapshot(snapshot(ceiling_fragment()))
    assert result.polygon.height == pytest.approx(2.5)
    assert result.polygon.point_count == 4


def test_cancelled_caller_keeps_job_pending(recon_config):
    gate = threading.Event()

    async def scenario():
        worker = SnapshotWorker(recon_config)
        worker.session.reset = lambda: gate.wait(5)
        try:
            task = asyncio.ensure_future(worker.reset())
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            while_running = worker.pending

            gate.set()
            for _ in range(200):
                if worker.pending == 0:
                    break
                await asyncio.sleep(0.01)
            return while_running, worker.pending
        finally:
            gate.set()
            worker.close()

    while_running, after = asyncio.run(scenario())
    assert while_running == 1
    assert after == 0
