"""
Plain-text OBJ export and import.

Export writes `v x y z` lines followed by 1-based `f i j k` lines. Several
fragments share one running vertex offset, the same way the aggregator
offsets them. Import is lossy: only vertex positions and the first three
indices of each face are read, and malformed lines are skipped.

A pose may be stored next to an export as `<name>.json`, holding the 4x4
matrix as a JSON array of 16 floats in column-major order.
"""

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np

from scanmesh.errors import GeometryError, MeshIOError, MeshParseError
from scanmesh.processing.aggregator import aggregate, ingest_all
from scanmesh.processing.geometry import Fragment, Mesh

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

OBJ_HEADER = "# Exported by scanmesh\n"


def format_obj(mesh: Mesh) -> str:
    """Render a mesh as OBJ text"""
    lines = [OBJ_HEADER]
    for x, y, z in mesh.vertices.tolist():
        lines.append(f"v {x} {y} {z}\n")
    for a, b, c in (mesh.triangles.astype(np.int64) + 1).tolist():
        lines.append(f"f {a} {b} {c}\n")
    return ''.join(lines)


def _write_text(path: Path, text: str) -> None:
    # Write to a sibling temp file first so a failed export never leaves half a file
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(text)
        os.replace(tmp_path, path)
    except OSError as e:
        try:
            if tmp_path.exists():
                tmp_path.unlink()
        except OSError:
            logger.debug(f"Could not remove temp file {tmp_path}")
        raise MeshIOError(f"Failed to write {path}: {e}") from e


def export_mesh(mesh: Mesh, path: PathLike) -> Path:
    """
    Write a mesh to an OBJ file.

    Raises:
        MeshIOError: If the file cannot be written
    """
    path = Path(path)
    _write_text(path, format_obj(mesh))
    logger.info(
        f"Exported {mesh.vertex_count:,} vertices, {mesh.triangle_count:,} triangles to {path}"
    )
    return path


def ensure_export_dir(export_dir: PathLike) -> Path:
    """
    Create the export directory if missing.

    Raises:
        MeshIOError: If the directory cannot be created
    """
    folder = Path(export_dir)
    try:
        folder.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise MeshIOError(f"Cannot create export directory {folder}: {e}") from e
    return folder


def export_fragments(
    fragments: Iterable[Fragment],
    export_dir: PathLike,
    name: Optional[str] = None,
    pose: Optional[np.ndarray] = None
) -> Path:
    """
    Export fragments as a single OBJ file.

    Args:
        fragments: Fragments in delivery order
        export_dir: Target directory (created if missing)
        name: Base file name; a UUID is generated when empty
        pose: Optional 4x4 pose written to a companion `<name>.json`

    Returns:
        Path of the written OBJ file

    Raises:
        MeshIOError: If the directory or files cannot be written
        GeometryError: If a fragment is malformed
    """
    mesh = aggregate(ingest_all(fragments))
    folder = ensure_export_dir(export_dir)

    base_name = name.strip() if name and name.strip() else str(uuid.uuid4())
    obj_path = export_mesh(mesh, folder / f"{base_name}.obj")

    if pose is not None:
        write_pose(folder / f"{base_name}.json", pose)

    return obj_path


def write_pose(path: PathLike, pose: np.ndarray) -> Path:
    """
    Store a 4x4 pose as 16 column-major floats.

    Raises:
        GeometryError: If the pose is not 4x4
        MeshIOError: If the file cannot be written
    """
    pose = np.asarray(pose, dtype=np.float64)
    if pose.shape != (4, 4):
        raise GeometryError(f"Pose must be 4x4, got {pose.shape}")
    path = Path(path)
    _write_text(path, json.dumps(pose.T.flatten().tolist()))
    logger.debug(f"Wrote pose companion {path}")
    return path


def read_pose(path: PathLike) -> np.ndarray:
    """
    Load a pose companion file.

    Raises:
        MeshIOError: If the file cannot be read
        MeshParseError: If it does not hold 16 numbers
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except OSError as e:
        raise MeshIOError(f"Failed to read {path}: {e}") from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MeshParseError(f"Invalid pose file {path}: {e}") from e

    try:
        values = np.array(data, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError) as e:
        raise MeshParseError(f"Invalid pose values in {path}: {e}") from e
    if values.shape != (16,):
        raise MeshParseError(f"Pose file {path} holds {values.size} values, expected 16")
    return values.reshape(4, 4).T


def _parse_face_index(token: str) -> int:
    # "12/4/7" -> 12; attribute references are dropped
    return int(token.split('/', 1)[0])


def parse_obj(lines: Iterable[str]) -> Mesh:
    """
    Parse OBJ text lines into a mesh.

    Lines whose first token is `v` with at least 3 numbers add a vertex; lines
    whose first token is `f` with at least 3 fields add one triangle from the
    first three fields. Anything else, including malformed lines, is skipped.

    Raises:
        MeshParseError: If a face references a vertex that does not exist
    """
    vertices: List[Sequence[float]] = []
    faces: List[Sequence[int]] = []
    skipped = 0

    for line_number, line in enumerate(lines, start=1):
        tokens = line.split()
        if not tokens:
            continue
        kind = tokens[0]

        if kind == 'v':
            if len(tokens) < 4:
                skipped += 1
                continue
            try:
                vertices.append([float(t) for t in tokens[1:4]])
            except ValueError:
                skipped += 1
                logger.debug(f"Skipping malformed vertex on line {line_number}: {line.strip()}")

        elif kind == 'f':
            if len(tokens) < 4:
                skipped += 1
                continue
            try:
                face = [_parse_face_index(t) - 1 for t in tokens[1:4]]
            except ValueError:
                skipped += 1
                logger.debug(f"Skipping malformed face on line {line_number}: {line.strip()}")
                continue
            if min(face) < 0:
                # Relative (negative) and zero indices are not supported
                skipped += 1
                continue
            faces.append(face)

    if skipped:
        logger.warning(f"Skipped {skipped} malformed OBJ line(s)")

    vertex_array = np.array(vertices, dtype=np.float32).reshape(-1, 3)
    face_array = np.array(faces, dtype=np.int64).reshape(-1, 3)

    if len(face_array) and int(face_array.max()) >= len(vertex_array):
        raise MeshParseError(
            f"Face references vertex {int(face_array.max()) + 1} "
            f"but only {len(vertex_array)} vertices are defined"
        )

    try:
        return Mesh(vertex_array, face_array)
    except GeometryError as e:
        raise MeshParseError(str(e)) from e


def load_obj(path: PathLike) -> Mesh:
    """
    Read an OBJ file.

    Raises:
        MeshIOError: If the file cannot be read
        MeshParseError: If its contents are not a usable mesh
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            mesh = parse_obj(f)
    except OSError as e:
        raise MeshIOError(f"Failed to read {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise MeshParseError(f"{path} is not UTF-8 text: {e}") from e

    logger.info(f"Loaded {path}: {mesh.vertex_count:,} vertices, {mesh.triangle_count:,} triangles")
    return mesh


def latest_export(export_dir: PathLike) -> Optional[Path]:
    """
    Find the most recently modified OBJ file in a directory.

    Returns:
        Path, or None if the directory is missing or holds no OBJ files
    """
    folder = Path(export_dir)
    if not folder.is_dir():
        return None

    candidates = []
    for entry in folder.iterdir():
        if entry.name.startswith('.') or entry.suffix.lower() != '.obj' or not entry.is_file():
            continue
        try:
            candidates.append((entry.stat().st_mtime, entry))
        except OSError:
            continue

    if not candidates:
        return None
    return max(candidates, key=lambda item: item[0])[1]


def load_latest_export(export_dir: PathLike, center: bool = False) -> Optional[Mesh]:
    """
    Load the newest export, optionally centred on its bounding box.

    Returns:
        Mesh, or None if there is nothing to load
    """
    path = latest_export(export_dir)
    if path is None:
        logger.info(f"No OBJ exports found in {export_dir}")
        return None
    mesh = load_obj(path)
    return mesh.centered() if center else mesh
