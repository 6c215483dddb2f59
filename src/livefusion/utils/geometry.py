"""Rigid-transform utilities: SE(3) matrices, exponential map, camera placement."""

from __future__ import annotations

import logging

import numpy as np
from scipy.spatial.transform import Rotation

logger = logging.getLogger(__name__)


def make_pose(R: np.ndarray | None = None, t: np.ndarray | list[float] | None = None) -> np.ndarray:
    """Build a 4x4 rigid transform from rotation and translation."""
    T = np.eye(4)
    if R is not None:
        T[:3, :3] = R
    if t is not None:
        T[:3, 3] = t
    return T


def invert_pose(T: np.ndarray) -> np.ndarray:
    """Inverse of a rigid transform without a general matrix inverse."""
    R = T[:3, :3]
    t = T[:3, 3]
    inv = np.eye(4)
    inv[:3, :3] = R.T
    inv[:3, 3] = -R.T @ t
    return inv


def transform_points(T: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply T to points of shape (..., 3)."""
    return points @ T[:3, :3].T + T[:3, 3]


def rotate_vectors(T: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    """Apply only the rotation part of T to vectors of shape (..., 3)."""
    return vectors @ T[:3, :3].T


def exp_se3(xi: np.ndarray) -> np.ndarray:
    """Pose increment from a 6-vector (rx, ry, rz, tx, ty, tz).

    Rotation goes through the exact SO(3) exponential; translation is taken
    as-is, matching the small-motion linearisation used by the tracker.
    """
    xi = np.asarray(xi, dtype=np.float64)
    return make_pose(Rotation.from_rotvec(xi[:3]).as_matrix(), xi[3:])


def rotation_angle_deg(R: np.ndarray) -> float:
    """Angle of a rotation matrix, in degrees."""
    cos = np.clip((np.trace(R) - 1.0) / 2.0, -1.0, 1.0)
    return float(np.degrees(np.arccos(cos)))


def pose_distance(A: np.ndarray, B: np.ndarray) -> tuple[float, float]:
    """(translation metres, rotation degrees) between two poses."""
    rel = invert_pose(A) @ B
    return float(np.linalg.norm(rel[:3, 3])), rotation_angle_deg(rel[:3, :3])


def look_at(
    eye: np.ndarray | list[float],
    target: np.ndarray | list[float],
    up: np.ndarray | list[float] = (0.0, 0.0, 1.0),
) -> np.ndarray:
    """Camera-to-world pose of a camera at `eye` looking at `target`.

    Camera axes follow OpenCV: x right, y down, z forward.
    """
    eye = np.asarray(eye, dtype=np.float64)
    forward = np.asarray(target, dtype=np.float64) - eye
    forward /= np.linalg.norm(forward)
    right = np.cross(forward, np.asarray(up, dtype=np.float64))
    norm = np.linalg.norm(right)
    if norm < 1e-9:
        raise ValueError("look_at: viewing direction is parallel to the up vector")
    right /= norm
    down = np.cross(forward, right)
    return make_pose(np.column_stack([right, down, forward]), eye)


def rotmat2qvec(R: np.ndarray) -> np.ndarray:
    """Convert 3x3 rotation matrix to quaternion (w, x, y, z)."""
    x, y, z, w = Rotation.from_matrix(R).as_quat()
    if w < 0:
        x, y, z, w = -x, -y, -z, -w
    return np.array([w, x, y, z])


def orthonormalize(T: np.ndarray) -> np.ndarray:
    """Project the rotation block of T back onto SO(3).

    Composing many small increments accumulates round-off; the pipeline
    re-projects after every adopted pose.
    """
    U, _, Vt = np.linalg.svd(T[:3, :3])
    R = U @ Vt
    if np.linalg.det(R) < 0:
        U[:, -1] *= -1
        R = U @ Vt
    out = T.copy()
    out[:3, :3] = R
    return out
