import numpy as np
import pytest

from scanmesh.config import ReconstructionConfig
from scanmesh.processing.geometry import Fragment, Mesh


def translation(x=0.0, y=0.0, z=0.0):
    pose = np.eye(4, dtype=np.float32)
    pose[:3, 3] = [x, y, z]
    return pose


def quad_fragment(fragment_id="quad", transform=None, dtype=np.uint32):
    """4 vertices, 1 triangle"""
    vertices = np.array([
        [0.0, 0.0, 0.0],
        [1.0, 0.0, 0.0],
        [1.0, 1.0, 0.0],
        [0.0, 1.0, 0.0],
    ], dtype=np.float32)
    indices = np.array([0, 1, 2], dtype=dtype)
    return Fragment(
        fragment_id=fragment_id,
        vertices=vertices,
        indices=indices,
        transform=translation() if transform is None else transform
    )


def ceiling_mesh(height=2.5, width=4.0, depth=3.0):
    """Downward-facing ceiling rectangle above a floor rectangle"""
    vertices = np.array([
        # Ceiling
        [0.0, height, 0.0],
        [width, height, 0.0],
        [width, height, depth],
        [0.0, height, depth],
        # Floor
        [0.0, 0.0, 0.0],
        [width, 0.0, 0.0],
        [width, 0.0, depth],
        [0.0, 0.0, depth],
    ], dtype=np.float32)
    triangles = np.array([
        [0, 1, 2], [0, 2, 3],  # Ceiling, normal -y
        [4, 6, 5], [4, 7, 6],  # Floor, normal +y
    ], dtype=np.uint32)
    return Mesh(vertices, triangles)


@pytest.fixture
def recon_config():
    return ReconstructionConfig(
        ceiling_strategy='hull',
        height_axis=1,
        height_threshold=0.10,
        min_point_distance=0.05,
        min_side_length=0.20,
        top_fraction=0.10,
        ceiling_normal_threshold=-0.5,
        height_tolerance=0.3,
        concave_min_distance=0.1,
        denoise_enabled=True,
        coplanar_angle_deg=10.0,
        smoothing_enabled=True,
        smoothing_iterations=1,
    )
