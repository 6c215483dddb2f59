"""Truncated signed-distance volume: integration, surface extraction, reset.

The field is stored normalised by the truncation distance, so every voxel holds
a value in [-1, 1] together with an integration weight. A weight of zero marks
a voxel that has never been observed; its distance value carries no meaning.
"""

from __future__ import annotations

import logging

import numpy as np

from livefusion.core.contracts import CameraIntrinsics
from livefusion.utils.geometry import invert_pose, rotate_vectors, transform_points
from ._interpolation import gradient, trilinear, unit_normals
from .config import VolumeConfig
from .contracts import ExtractionResult, PointCloud

logger = logging.getLogger(__name__)


class TsdfVolume:
    """Dense TSDF grid backed by flat contiguous buffers.

    Voxel (x, y, z) lives at linear index ``(x * dy + y) * dz + z``; its centre
    is at ``(i + 0.5) * cell_size`` in volume-local coordinates.
    """

    def __init__(self, config: VolumeConfig):
        self.config = config
        self._dims = tuple(int(d) for d in config.dims)
        self._size = np.asarray(config.size, dtype=np.float64)
        self._cell = self._size / np.asarray(self._dims, dtype=np.float64)
        self._pose = config.volume_pose()
        self._pose_inv = invert_pose(self._pose)
        self._version = 0

        n = int(np.prod(self._dims))
        try:
            self._tsdf_buf = np.zeros(n, dtype=np.float32)
            self._weight_buf = np.zeros(n, dtype=np.float32)
            self._color_buf = np.zeros((n, 3), dtype=np.float32) if config.integrate_color else None
        except MemoryError:
            logger.error(f"Cannot allocate TSDF volume {self._dims} ({n:,} voxels)")
            raise

        self._tsdf = self._tsdf_buf.reshape(self._dims)
        self._weights = self._weight_buf.reshape(self._dims)
        self._colors = None if self._color_buf is None else self._color_buf.reshape(*self._dims, 3)

        # Per-axis voxel centre coordinates in the volume frame
        self._axes = [(np.arange(d, dtype=np.float32) + 0.5) * np.float32(c)
                      for d, c in zip(self._dims, self._cell)]

        logger.info(
            f"TSDF volume {self._dims[0]}x{self._dims[1]}x{self._dims[2]} "
            f"({self.memory_bytes / 2**20:.1f} MB), cell {self._cell.min() * 1000:.1f}mm, "
            f"trunc {self.trunc_dist * 1000:.0f}mm"
        )

    # -- accessors ----------------------------------------------------------

    @property
    def dims(self) -> tuple[int, int, int]:
        return self._dims

    @property
    def size(self) -> np.ndarray:
        return self._size.copy()

    @property
    def cell_size(self) -> np.ndarray:
        return self._cell.copy()

    @property
    def trunc_dist(self) -> float:
        return float(self.config.trunc_dist)

    @property
    def max_weight(self) -> float:
        return float(self.config.max_weight)

    @property
    def pose(self) -> np.ndarray:
        return self._pose.copy()

    @property
    def version(self) -> int:
        """Incremented by every mutation; lets callers cache renders."""
        return self._version

    @property
    def has_color(self) -> bool:
        return self._colors is not None

    @property
    def memory_bytes(self) -> int:
        total = self._tsdf_buf.nbytes + self._weight_buf.nbytes
        if self._color_buf is not None:
            total += self._color_buf.nbytes
        return total

    @property
    def tsdf(self) -> np.ndarray:
        """Read-only (dx, dy, dz) view of the normalised distances."""
        view = self._tsdf.view()
        view.flags.writeable = False
        return view

    @property
    def weights(self) -> np.ndarray:
        """Read-only (dx, dy, dz) view of the integration weights."""
        view = self._weights.view()
        view.flags.writeable = False
        return view

    # -- coordinate helpers -------------------------------------------------

    def world_to_voxel(self, points: np.ndarray) -> np.ndarray:
        """World points -> continuous voxel coordinates (integer = voxel centre)."""
        local = transform_points(self._pose_inv, np.asarray(points, dtype=np.float64))
        return local / self._cell - 0.5

    def voxel_to_world(self, coords: np.ndarray) -> np.ndarray:
        local = (np.asarray(coords, dtype=np.float64) + 0.5) * self._cell
        return transform_points(self._pose, local)

    def sample(self, points: np.ndarray) -> np.ndarray:
        """Trilinear TSDF (normalised) at world points; NaN where unobserved."""
        return self.sample_voxels(self.world_to_voxel(points))

    def sample_voxels(self, coords: np.ndarray) -> np.ndarray:
        return trilinear(self._tsdf, self._weights, coords)

    def gradient_normals(self, coords: np.ndarray, delta: float = 0.5) -> np.ndarray:
        """Unit world-frame normals from the field gradient at voxel coordinates."""
        grad = gradient(self._tsdf, self._weights, coords, delta=delta) / self._cell
        return unit_normals(rotate_vectors(self._pose, grad))

    def fetch_normals(self, points: np.ndarray) -> np.ndarray:
        """Surface normals at arbitrary world points (NaN where unavailable)."""
        return self.gradient_normals(self.world_to_voxel(points)).astype(np.float32)

    # -- mutation -----------------------------------------------------------

    def reset(self) -> None:
        """Clear every voxel to the no-data state."""
        self._tsdf_buf.fill(0.0)
        self._weight_buf.fill(0.0)
        if self._color_buf is not None:
            self._color_buf.fill(0.0)
        self._version += 1
        logger.debug("TSDF volume reset")

    def integrate(
        self,
        depth: np.ndarray,
        intrinsics: CameraIntrinsics,
        pose: np.ndarray,
        color: np.ndarray | None = None,
    ) -> int:
        """Fuse a metric depth map (0 = invalid) taken from camera-to-world `pose`.

        Returns the number of voxels updated. Projections outside the image,
        behind the camera, or onto invalid depth are skipped.
        """
        depth = np.asarray(depth, dtype=np.float32)
        if depth.shape != (intrinsics.height, intrinsics.width):
            raise ValueError(
                f"Depth shape {depth.shape} does not match intrinsics "
                f"{intrinsics.height}x{intrinsics.width}"
            )
        use_color = color is not None and self._colors is not None
        if use_color:
            color = np.asarray(color)
            if color.shape[:2] != depth.shape:
                raise ValueError(f"Color shape {color.shape} does not match depth {depth.shape}")
            color = color.reshape(*depth.shape, -1)[..., :3].astype(np.float32)

        vol_to_cam = invert_pose(np.asarray(pose, dtype=np.float64)) @ self._pose
        R = vol_to_cam[:3, :3].astype(np.float32)
        t = vol_to_cam[:3, 3].astype(np.float32)

        trunc = np.float32(self.config.trunc_dist)
        sw = np.float32(self.config.sample_weight)
        max_w = np.float32(self.config.max_weight)
        fx, fy = np.float32(intrinsics.fx), np.float32(intrinsics.fy)
        cx, cy = np.float32(intrinsics.cx), np.float32(intrinsics.cy)
        h, w = depth.shape

        dx, dy, dz = self._dims
        slab = max(1, self.config.chunk_voxels // (dy * dz))
        ys = self._axes[1][None, :, None]
        zs = self._axes[2][None, None, :]
        updated = 0

        for x0 in range(0, dx, slab):
            x1 = min(dx, x0 + slab)
            xs = self._axes[0][x0:x1, None, None]

            px = R[0, 0] * xs + R[0, 1] * ys + R[0, 2] * zs + t[0]
            py = R[1, 0] * xs + R[1, 1] * ys + R[1, 2] * zs + t[1]
            pz = R[2, 0] * xs + R[2, 1] * ys + R[2, 2] * zs + t[2]

            front = pz > 1e-6
            safe_z = np.where(front, pz, np.float32(1.0))
            u = np.rint(fx * px / safe_z + cx).astype(np.int64)
            v = np.rint(fy * py / safe_z + cy).astype(np.int64)
            visible = front & (u >= 0) & (u < w) & (v >= 0) & (v < h)
            if not visible.any():
                continue

            d = depth[np.clip(v, 0, h - 1), np.clip(u, 0, w - 1)]
            valid = visible & (d > 0)

            dist = np.sqrt(px * px + py * py + pz * pz)
            sdf = (d - pz) * dist / safe_z
            mask = valid & (sdf >= -trunc)
            n = int(np.count_nonzero(mask))
            if n == 0:
                continue

            sample = np.minimum(np.float32(1.0), sdf[mask] / trunc)
            tsdf_slab = self._tsdf[x0:x1]
            weight_slab = self._weights[x0:x1]
            w_old = weight_slab[mask]
            tsdf_slab[mask] = (w_old * tsdf_slab[mask] + sw * sample) / (w_old + sw)
            weight_slab[mask] = np.minimum(w_old + sw, max_w)

            if use_color:
                near = mask & (sdf < trunc)
                if near.any():
                    c_slab = self._colors[x0:x1]
                    w_near = (w_old[near[mask]])[:, None]
                    obs = color[v[near], u[near]]
                    c_slab[near] = (w_near * c_slab[near] + sw * obs) / (w_near + sw)

            updated += n

        self._version += 1
        logger.debug(f"Integrated frame: {updated:,} voxels updated")
        return updated

    # -- extraction ---------------------------------------------------------

    def extract_points(self, capacity: int | None = None) -> ExtractionResult:
        """Zero crossings between neighbouring voxels, in world coordinates.

        Only voxels that are observed and inside the truncation band take part.
        When more crossings exist than `capacity`, the first ones in scan order
        (voxel linear index, then axis x, y, z) are kept and the result is
        flagged as truncated.
        """
        capacity = self.config.cloud_buffer_size if capacity is None else int(capacity)
        if capacity < 0:
            raise ValueError(f"capacity must be non-negative, got {capacity}")

        F = self._tsdf
        known = (self._weights > 0) & (np.abs(F) < 1.0)

        keys = []
        offsets = []
        for axis in range(3):
            lo = [slice(None)] * 3
            hi = [slice(None)] * 3
            lo[axis] = slice(0, -1)
            hi[axis] = slice(1, None)
            f0, f1 = F[tuple(lo)], F[tuple(hi)]
            crossing = known[tuple(lo)] & known[tuple(hi)] & (
                ((f0 > 0) & (f1 < 0)) | ((f0 < 0) & (f1 > 0))
            )
            idx = np.nonzero(crossing)
            if len(idx[0]) == 0:
                continue
            linear = np.ravel_multi_index(idx, self._dims)
            keys.append(linear * 3 + axis)
            a, b = f0[idx].astype(np.float64), f1[idx].astype(np.float64)
            offsets.append(a / (a - b))

        if not keys:
            logger.debug("extract_points: no zero crossings")
            return ExtractionResult(PointCloud.empty(self.has_color), 0, capacity)

        keys = np.concatenate(keys)
        offsets = np.concatenate(offsets)
        total = len(keys)
        order = np.argsort(keys, kind="stable")[:capacity]
        keys, offsets = keys[order], offsets[order]
        if total > capacity:
            logger.warning(f"Extraction buffer full: kept {capacity:,} of {total:,} surface points")

        axis = keys % 3
        base = np.stack(np.unravel_index(keys // 3, self._dims), axis=1).astype(np.float64)
        coords = base.copy()
        coords[np.arange(len(coords)), axis] += offsets

        points = self.voxel_to_world(coords).astype(np.float32)
        normals = self.gradient_normals(coords).astype(np.float32)

        colors = None
        if self._colors is not None:
            step = np.zeros_like(base, dtype=np.int64)
            step[np.arange(len(step)), axis] = 1
            i0 = base.astype(np.int64)
            i1 = i0 + step
            c0 = self._colors[i0[:, 0], i0[:, 1], i0[:, 2]]
            c1 = self._colors[i1[:, 0], i1[:, 1], i1[:, 2]]
            mix = offsets[:, None]
            colors = np.clip((1.0 - mix) * c0 + mix * c1, 0, 255).astype(np.uint8)

        logger.debug(f"extract_points: {len(points):,} points ({total:,} crossings)")
        return ExtractionResult(PointCloud(points, normals, colors), total, capacity)
