"""Projective data association and point-to-plane normal equations."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from livefusion.preprocess.contracts import PyramidLevel


@dataclass
class NormalEquations:
    A: np.ndarray  # (6, 6)
    b: np.ndarray  # (6,)
    count: int
    sq_error: float

    @property
    def rms(self) -> float:
        return float(np.sqrt(self.sq_error / self.count)) if self.count else float("inf")


def associate(
    points: np.ndarray,
    normals: np.ndarray,
    model: PyramidLevel,
    dist_threshold: float,
    cos_threshold: float,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Match transformed live points to the model pixel they project onto.

    `points` and `normals` are already in the model camera frame. Returns the
    surviving live points and their model points and normals.
    """
    intr = model.intrinsics
    h, w = model.shape
    z = points[:, 2]
    front = z > 1e-6
    safe_z = np.where(front, z, 1.0)
    u = np.rint(intr.fx * points[:, 0] / safe_z + intr.cx).astype(np.int64)
    v = np.rint(intr.fy * points[:, 1] / safe_z + intr.cy).astype(np.int64)
    ok = front & (u >= 0) & (u < w) & (v >= 0) & (v < h)

    u, v = u[ok], v[ok]
    src, src_n = points[ok], normals[ok]
    dst = model.points[v, u].astype(np.float64)
    dst_n = model.normals[v, u].astype(np.float64)

    with np.errstate(invalid="ignore"):
        ok = (
            np.isfinite(dst[:, 0])
            & np.isfinite(dst_n[:, 0])
            & (np.linalg.norm(src - dst, axis=1) <= dist_threshold)
            & (np.sum(src_n * dst_n, axis=1) >= cos_threshold)
        )
    return src[ok], dst[ok], dst_n[ok]


def build_normal_equations(src: np.ndarray, dst: np.ndarray, dst_n: np.ndarray) -> NormalEquations:
    """Linearised point-to-plane system over the increment (rx, ry, rz, tx, ty, tz)."""
    r = np.sum(dst_n * (src - dst), axis=1)
    J = np.hstack([np.cross(src, dst_n), dst_n])
    return NormalEquations(
        A=J.T @ J,
        b=-(J.T @ r),
        count=len(r),
        sq_error=float(r @ r),
    )
