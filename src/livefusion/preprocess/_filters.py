"""Per-pixel kernels for the depth pyramid: filtering, back-projection, normals."""

from __future__ import annotations

import cv2
import numpy as np

from livefusion.core.contracts import CameraIntrinsics


def bilateral_filter(depth: np.ndarray, kernel_size: int, sigma_depth: float, sigma_spatial: float) -> np.ndarray:
    """Edge-preserving smoothing of a metric depth map; zeros stay zero.

    Invalid neighbours differ from valid ones by the full depth, which the
    range kernel weights down to nothing, so they do not bleed into surfaces.
    """
    valid = depth > 0
    filtered = cv2.bilateralFilter(depth.astype(np.float32), kernel_size, sigma_depth, sigma_spatial)
    return np.where(valid, filtered, 0.0).astype(np.float32)


def back_project(depth: np.ndarray, intrinsics: CameraIntrinsics) -> np.ndarray:
    """Camera-frame points (H, W, 3); NaN where depth is 0."""
    h, w = depth.shape
    u = np.arange(w, dtype=np.float32)[None, :]
    v = np.arange(h, dtype=np.float32)[:, None]
    z = np.where(depth > 0, depth, np.nan).astype(np.float32)
    x = (u - np.float32(intrinsics.cx)) * z / np.float32(intrinsics.fx)
    y = (v - np.float32(intrinsics.cy)) * z / np.float32(intrinsics.fy)
    return np.stack([x, y, z], axis=-1)


def compute_normals(points: np.ndarray) -> np.ndarray:
    """Finite-difference normals from the right and lower neighbours.

    Normals face the camera. The last row and column, and pixels with any
    invalid neighbour, are NaN.
    """
    normals = np.full_like(points, np.nan)
    p = points[:-1, :-1]
    du = points[:-1, 1:] - p
    dv = points[1:, :-1] - p
    n = np.cross(du, dv)
    norm = np.linalg.norm(n, axis=-1, keepdims=True)
    with np.errstate(invalid="ignore", divide="ignore"):
        n = n / norm
    # Orient towards the camera centre
    flip = np.sum(n * p, axis=-1) > 0
    n[flip] *= -1
    n[~np.isfinite(norm[..., 0]) | (norm[..., 0] < 1e-12)] = np.nan
    normals[:-1, :-1] = n
    return normals.astype(np.float32)


def downsample_depth(depth: np.ndarray, max_jump: float | None = None) -> np.ndarray:
    """2x2 block average; a block with any invalid pixel becomes invalid.

    With `max_jump`, blocks straddling a depth discontinuity larger than it are
    invalidated too, so no points are invented between surfaces.
    """
    h, w = depth.shape[0] // 2 * 2, depth.shape[1] // 2 * 2
    blocks = depth[:h, :w].reshape(h // 2, 2, w // 2, 2)
    keep = np.all(blocks > 0, axis=(1, 3))
    if max_jump is not None:
        keep &= (blocks.max(axis=(1, 3)) - blocks.min(axis=(1, 3))) <= max_jump
    return np.where(keep, blocks.mean(axis=(1, 3)), 0.0).astype(np.float32)


def downsample_points_normals(points: np.ndarray, normals: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """2x2 average of points and normals (normals renormalised); NaN propagates."""
    h, w = points.shape[0] // 2 * 2, points.shape[1] // 2 * 2
    p = points[:h, :w].reshape(h // 2, 2, w // 2, 2, 3).mean(axis=(1, 3))
    n = normals[:h, :w].reshape(h // 2, 2, w // 2, 2, 3).sum(axis=(1, 3))
    norm = np.linalg.norm(n, axis=-1, keepdims=True)
    with np.errstate(invalid="ignore", divide="ignore"):
        n = n / norm
    bad = ~np.isfinite(p[..., 0]) | ~np.isfinite(norm[..., 0]) | (norm[..., 0] < 1e-6)
    p[bad] = np.nan
    n[bad] = np.nan
    return p.astype(np.float32), n.astype(np.float32)
