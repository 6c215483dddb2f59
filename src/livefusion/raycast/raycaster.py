"""Ray casting of the TSDF volume into depth, point and normal maps."""

from __future__ import annotations

import logging
import math

import numpy as np

from livefusion.core.contracts import CameraIntrinsics
from livefusion.utils.geometry import invert_pose, rotate_vectors, transform_points
from livefusion.volume.tsdf import TsdfVolume
from .config import RaycastConfig
from .contracts import RenderResult

logger = logging.getLogger(__name__)


class RayCaster:
    """Marches one ray per pixel through the volume to its first zero crossing.

    All rays advance together; the active set shrinks as rays hit, leave the
    volume, or reach a back face.
    """

    def __init__(self, config: RaycastConfig | None = None):
        self.config = config or RaycastConfig()

    def render(self, volume: TsdfVolume, pose: np.ndarray, intrinsics: CameraIntrinsics) -> RenderResult:
        pose = np.asarray(pose, dtype=np.float64)
        h, w = intrinsics.height, intrinsics.width
        cam_to_vol = invert_pose(volume.pose) @ pose
        origin = cam_to_vol[:3, 3]

        u, v = np.meshgrid(np.arange(w, dtype=np.float64), np.arange(h, dtype=np.float64))
        rays = np.stack([
            (u - intrinsics.cx) / intrinsics.fx,
            (v - intrinsics.cy) / intrinsics.fy,
            np.ones_like(u),
        ], axis=-1).reshape(-1, 3)
        rays /= np.linalg.norm(rays, axis=1, keepdims=True)
        dirs = rotate_vectors(cam_to_vol, rays)

        t_near, t_far = self._clip_to_box(origin, dirs, volume.size)
        t_near = np.maximum(t_near, self.config.min_depth)
        t_hit = self._march(volume, origin, dirs, t_near, t_far)

        depth = np.zeros(h * w, dtype=np.float32)
        points = np.full((h * w, 3), np.nan, dtype=np.float32)
        normals = np.full((h * w, 3), np.nan, dtype=np.float32)

        hit = np.nonzero(np.isfinite(t_hit))[0]
        if hit.size:
            local = origin + dirs[hit] * t_hit[hit, None]
            coords = local / volume.cell_size - 0.5
            n_world = volume.gradient_normals(coords, delta=self.config.gradient_delta_factor)
            world_to_cam = invert_pose(pose)
            p_cam = transform_points(world_to_cam, volume.voxel_to_world(coords))
            n_cam = rotate_vectors(world_to_cam, n_world)

            good = np.isfinite(n_cam[:, 0]) & (p_cam[:, 2] > 0)
            idx = hit[good]
            depth[idx] = p_cam[good, 2]
            points[idx] = p_cam[good]
            normals[idx] = n_cam[good]

        result = RenderResult(
            depth=depth.reshape(h, w),
            points=points.reshape(h, w, 3),
            normals=normals.reshape(h, w, 3),
            pose=pose.copy(),
            intrinsics=intrinsics,
        )
        logger.debug(f"Raycast {w}x{h}: {result.num_hits} hits")
        return result

    @staticmethod
    def _clip_to_box(origin: np.ndarray, dirs: np.ndarray, size: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Slab test against [0, size]; returns entry/exit distances per ray."""
        safe = np.where(np.abs(dirs) < 1e-12, 1e-12, dirs)
        inv = 1.0 / safe
        t0 = (0.0 - origin) * inv
        t1 = (size - origin) * inv
        t_near = np.max(np.minimum(t0, t1), axis=1)
        t_far = np.min(np.maximum(t0, t1), axis=1)
        return np.maximum(t_near, 0.0), t_far

    def _march(
        self,
        volume: TsdfVolume,
        origin: np.ndarray,
        dirs: np.ndarray,
        t_near: np.ndarray,
        t_far: np.ndarray,
    ) -> np.ndarray:
        """Distance along each ray to the refined zero crossing (NaN = no hit)."""
        tsdf, weights = volume.tsdf, volume.weights
        cell = volume.cell_size
        upper = np.array(volume.dims) - 1
        step = self.config.step_factor * volume.trunc_dist

        t_hit = np.full(len(dirs), np.nan)
        active = np.nonzero(t_near < t_far)[0]
        if active.size == 0:
            return t_hit

        t = t_near.copy()
        prev = np.full(len(dirs), np.nan, dtype=np.float32)
        max_steps = int(math.ceil(float(np.max(t_far[active] - t_near[active])) / step)) + 1

        for _ in range(max_steps):
            if active.size == 0:
                break
            ta = t[active]
            p = origin + dirs[active] * ta[:, None]
            g = np.clip(np.floor(p / cell).astype(np.int64), 0, upper)
            val = tsdf[g[:, 0], g[:, 1], g[:, 2]]
            cur = np.where(weights[g[:, 0], g[:, 1], g[:, 2]] > 0, val, np.nan).astype(np.float32)
            pv = prev[active]

            with np.errstate(invalid="ignore"):
                crossing = (pv > 0) & (cur < 0)
                back_face = (pv < 0) & (cur > 0)

            if crossing.any():
                rays = active[crossing]
                t_cur = ta[crossing]
                t_prev = t_cur - step
                f_prev = volume.sample_voxels((origin + dirs[rays] * t_prev[:, None]) / cell - 0.5)
                f_cur = volume.sample_voxels((origin + dirs[rays] * t_cur[:, None]) / cell - 0.5)
                with np.errstate(invalid="ignore"):
                    usable = (f_prev > 0) & (f_cur < 0)
                fp = np.where(usable, f_prev, pv[crossing]).astype(np.float64)
                fc = np.where(usable, f_cur, cur[crossing]).astype(np.float64)
                t_hit[rays] = t_prev + step * fp / (fp - fc)

            prev[active] = cur
            t[active] = ta + step
            done = crossing | back_face | (ta + step > t_far[active])
            active = active[~done]

        return t_hit
