"""Offline surface reconstruction of an extracted cloud using Open3D."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import numpy as np

from livefusion.volume.contracts import PointCloud

logger = logging.getLogger(__name__)

MeshMethod = Literal["ball_pivoting", "poisson"]


def to_open3d(cloud: PointCloud, knn: int = 50):
    """Open3D point cloud; normals from the TSDF gradient, estimated where missing."""
    import open3d as o3d

    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(cloud.points.astype(np.float64))
    if cloud.colors is not None:
        pcd.colors = o3d.utility.Vector3dVector(cloud.colors.astype(np.float64) / 255.0)

    normals = cloud.normals.astype(np.float64)
    if len(normals) and np.all(np.isfinite(normals)):
        pcd.normals = o3d.utility.Vector3dVector(normals)
    else:
        pcd.estimate_normals(search_param=o3d.geometry.KDTreeSearchParamKNN(knn=knn))
    return pcd


def reconstruct_mesh(
    cloud: PointCloud,
    method: MeshMethod = "ball_pivoting",
    knn: int = 50,
    radii: list[float] | None = None,
    poisson_depth: int = 8,
):
    """Triangulate a point/normal cloud. Returns an open3d TriangleMesh."""
    if len(cloud) < 3:
        raise ValueError(f"Need at least 3 points to build a mesh, got {len(cloud)}")
    import open3d as o3d

    pcd = to_open3d(cloud, knn=knn)
    if method == "ball_pivoting":
        if radii is None:
            spacing = float(np.mean(pcd.compute_nearest_neighbor_distance()))
            radii = [1.5 * spacing, 3.0 * spacing]
        mesh = o3d.geometry.TriangleMesh.create_from_point_cloud_ball_pivoting(
            pcd, o3d.utility.DoubleVector(radii)
        )
    elif method == "poisson":
        mesh, _ = o3d.geometry.TriangleMesh.create_from_point_cloud_poisson(pcd, depth=poisson_depth)
    else:
        raise ValueError(f"Unknown mesh method: {method!r}")

    mesh.compute_vertex_normals()
    logger.info(f"Mesh ({method}): {len(mesh.vertices)} vertices, {len(mesh.triangles)} faces")
    return mesh


def write_mesh(path: Path, mesh) -> bool:
    """Write `mesh` as PLY. Returns False (and writes nothing) for an empty mesh."""
    import open3d as o3d

    if len(mesh.triangles) == 0:
        logger.error("Mesh is empty, nothing written")
        return False
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    o3d.io.write_triangle_mesh(str(path), mesh)
    logger.info(f"Saved mesh to {path}")
    return True
