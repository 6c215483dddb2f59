"""Trilinear sampling of the TSDF grid.

Coordinates are continuous voxel coordinates: integer k is the centre of
voxel k. A sample is NaN when any of its eight corners lies outside the grid
or has never been integrated.
"""

from __future__ import annotations

import numpy as np

_CORNERS = [(dx, dy, dz) for dx in (0, 1) for dy in (0, 1) for dz in (0, 1)]


def trilinear(tsdf: np.ndarray, weights: np.ndarray, coords: np.ndarray) -> np.ndarray:
    """Interpolate `tsdf` at (N, 3) voxel coordinates."""
    coords = np.asarray(coords, dtype=np.float64).reshape(-1, 3)
    out = np.full(len(coords), np.nan, dtype=np.float32)
    if len(coords) == 0:
        return out

    dims = np.array(tsdf.shape)
    finite = np.all(np.isfinite(coords), axis=1)
    safe = np.where(finite[:, None], coords, -1.0)
    base = np.floor(safe).astype(np.int64)
    inside = finite & np.all((base >= 0) & (base < dims - 1), axis=1)
    if not inside.any():
        return out

    b = base[inside]
    f = safe[inside] - b
    acc = np.zeros(len(b), dtype=np.float64)
    observed = np.ones(len(b), dtype=bool)
    for dx, dy, dz in _CORNERS:
        ix, iy, iz = b[:, 0] + dx, b[:, 1] + dy, b[:, 2] + dz
        w = (
            (f[:, 0] if dx else 1.0 - f[:, 0])
            * (f[:, 1] if dy else 1.0 - f[:, 1])
            * (f[:, 2] if dz else 1.0 - f[:, 2])
        )
        observed &= weights[ix, iy, iz] > 0
        acc += w * tsdf[ix, iy, iz]

    out[inside] = np.where(observed, acc, np.nan)
    return out


def gradient(
    tsdf: np.ndarray, weights: np.ndarray, coords: np.ndarray, delta: float = 0.5
) -> np.ndarray:
    """Central-difference gradient of the interpolated field, (N, 3) in voxel units."""
    coords = np.asarray(coords, dtype=np.float64).reshape(-1, 3)
    grad = np.empty((len(coords), 3), dtype=np.float64)
    for axis in range(3):
        step = np.zeros(3)
        step[axis] = delta
        fwd = trilinear(tsdf, weights, coords + step)
        bwd = trilinear(tsdf, weights, coords - step)
        grad[:, axis] = (fwd - bwd) / (2.0 * delta)
    return grad


def unit_normals(grad: np.ndarray) -> np.ndarray:
    """Normalise gradients; degenerate or NaN gradients give NaN normals."""
    norm = np.linalg.norm(grad, axis=1, keepdims=True)
    with np.errstate(invalid="ignore", divide="ignore"):
        n = grad / norm
    bad = ~np.isfinite(norm[:, 0]) | (norm[:, 0] < 1e-8)
    n[bad] = np.nan
    return n
