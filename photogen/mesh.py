"""Mesh asset loading and format conversion.

Thin helpers around open3d's triangle mesh I/O, used both by the COLMAP
engine to publish its output model and by the observer for the auxiliary
export after processing completes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import numpy as np
import open3d as o3d

logger = logging.getLogger(__name__)


class MeshExportError(Exception):
    """Raised when a mesh cannot be read or written."""


def load_model(path: Union[str, Path]) -> o3d.geometry.TriangleMesh:
    """Load a triangle mesh from disk.

    Texture images referenced by obj or gltf materials are read along with
    the geometry.

    Args:
        path: Mesh file (obj, ply, stl, gltf, ...)

    Returns:
        Loaded triangle mesh

    Raises:
        MeshExportError: If the file is missing or holds no geometry
    """
    path = Path(path)
    if not path.is_file():
        raise MeshExportError(f"Model file not found: {path}")

    mesh = o3d.io.read_triangle_mesh(str(path))
    if not mesh.has_vertices():
        raise MeshExportError(f"Model file has no vertices: {path}")

    n_vertices = np.asarray(mesh.vertices).shape[0]
    n_triangles = np.asarray(mesh.triangles).shape[0]
    logger.info(f"Loaded {path.name}: {n_vertices} vertices, {n_triangles} triangles")
    if mesh.has_textures():
        logger.info(f"Resolved {len(mesh.textures)} texture(s)")

    return mesh


def save_model(
    mesh: o3d.geometry.TriangleMesh,
    output_path: Union[str, Path]
) -> Path:
    """Save mesh to file, the format following the file extension.

    Args:
        mesh: Triangle mesh to save
        output_path: Output file path

    Returns:
        Path written

    Raises:
        MeshExportError: If open3d fails to write the file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    # Some formats need vertex normals to be present
    if not mesh.has_vertex_normals():
        mesh.compute_vertex_normals()

    ok = o3d.io.write_triangle_mesh(
        str(output_path), mesh, write_vertex_colors=mesh.has_vertex_colors()
    )
    if not ok:
        raise MeshExportError(f"Failed to write mesh to {output_path}")

    logger.info(f"Mesh saved to {output_path}")
    return output_path


def convert_model(
    source: Union[str, Path],
    destination: Union[str, Path]
) -> Path:
    """Convert a mesh file to the format implied by ``destination``."""
    mesh = load_model(source)
    return save_model(mesh, destination)
