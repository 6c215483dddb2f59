"""Analytic scenes rendered into depth frames, for demos and tests."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from livefusion.core.contracts import CameraIntrinsics
from livefusion.utils.geometry import look_at
from .contracts import Frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Box:
    """Axis-aligned box."""

    center: tuple[float, float, float]
    half_extents: tuple[float, float, float]

    def intersect(self, origin: np.ndarray, dirs: np.ndarray) -> np.ndarray:
        c = np.asarray(self.center)
        e = np.asarray(self.half_extents)
        safe = np.where(np.abs(dirs) < 1e-12, 1e-12, dirs)
        t0 = (c - e - origin) / safe
        t1 = (c + e - origin) / safe
        t_min = np.max(np.minimum(t0, t1), axis=1)
        t_max = np.min(np.maximum(t0, t1), axis=1)
        hit = (t_min > 0) & (t_max >= t_min)
        return np.where(hit, t_min, np.nan)

    def sdf(self, points: np.ndarray) -> np.ndarray:
        q = np.abs(np.asarray(points) - np.asarray(self.center)) - np.asarray(self.half_extents)
        outside = np.linalg.norm(np.maximum(q, 0.0), axis=-1)
        inside = np.minimum(np.max(q, axis=-1), 0.0)
        return outside + inside


@dataclass(frozen=True)
class Sphere:
    center: tuple[float, float, float]
    radius: float

    def intersect(self, origin: np.ndarray, dirs: np.ndarray) -> np.ndarray:
        oc = origin - np.asarray(self.center)
        a = np.sum(dirs * dirs, axis=1)
        b = 2.0 * dirs @ oc
        c = oc @ oc - self.radius ** 2
        disc = b * b - 4.0 * a * c
        with np.errstate(invalid="ignore"):
            t = (-b - np.sqrt(disc)) / (2.0 * a)
        return np.where((disc >= 0) & (t > 0), t, np.nan)

    def sdf(self, points: np.ndarray) -> np.ndarray:
        return np.linalg.norm(np.asarray(points) - np.asarray(self.center), axis=-1) - self.radius


@dataclass
class SyntheticScene:
    primitives: list[Box | Sphere] = field(default_factory=list)

    def render_depth(self, pose: np.ndarray, intrinsics: CameraIntrinsics) -> np.ndarray:
        """Metric z-depth seen from camera-to-world `pose`; 0 where nothing is hit."""
        h, w = intrinsics.height, intrinsics.width
        u, v = np.meshgrid(np.arange(w, dtype=np.float64), np.arange(h, dtype=np.float64))
        rays = np.stack([
            (u - intrinsics.cx) / intrinsics.fx,
            (v - intrinsics.cy) / intrinsics.fy,
            np.ones_like(u),
        ], axis=-1).reshape(-1, 3)
        # Rays keep a unit z component in the camera frame, so t equals depth
        dirs = rays @ pose[:3, :3].T
        origin = pose[:3, 3]

        depth = np.full(len(dirs), np.inf)
        for prim in self.primitives:
            t = prim.intersect(origin, dirs)
            depth = np.where(np.isfinite(t) & (t < depth), t, depth)
        depth[~np.isfinite(depth)] = 0.0
        return depth.reshape(h, w).astype(np.float32)

    def sdf(self, points: np.ndarray) -> np.ndarray:
        """Signed distance to the union of primitives."""
        return np.min(np.stack([p.sdf(points) for p in self.primitives]), axis=0)


def cube_with_sphere(cube_size: float = 0.4, sphere_radius: float = 0.12) -> SyntheticScene:
    """Cube standing on z=0 with a ball resting on its top face (z up).

    The ball pins translation from every side while the faces pin rotation,
    so projective ICP stays well-conditioned around the whole orbit.
    """
    half = cube_size / 2.0
    return SyntheticScene([
        Box(center=(0.0, 0.0, half), half_extents=(half, half, half)),
        Sphere(center=(0.0, 0.0, cube_size + sphere_radius), radius=sphere_radius),
    ])


def orbit_poses(
    num_frames: int,
    radius: float = 1.0,
    height: float = 0.9,
    target: tuple[float, float, float] = (0.0, 0.0, 0.25),
    start_deg: float = 30.0,
    step_deg: float = 2.0,
) -> list[np.ndarray]:
    """Camera-to-world poses circling `target` at constant radius and height."""
    poses = []
    for i in range(num_frames):
        a = np.radians(start_deg + i * step_deg)
        eye = (radius * np.cos(a), radius * np.sin(a), height)
        poses.append(look_at(eye, target, up=(0.0, 0.0, 1.0)))
    return poses


class SyntheticSource:
    """Frame source rendering `scene` along `poses` as 16-bit millimetre depth."""

    def __init__(
        self,
        scene: SyntheticScene,
        poses: list[np.ndarray],
        intrinsics: CameraIntrinsics,
        depth_scale: float = 1000.0,
        noise_std: float = 0.0,
        seed: int = 0,
    ):
        self.scene = scene
        self.poses = [np.asarray(p, dtype=np.float64) for p in poses]
        self.intrinsics = intrinsics
        self.depth_scale = depth_scale
        self.noise_std = noise_std
        self._rng = np.random.default_rng(seed)
        self._cursor = 0

    def __len__(self) -> int:
        return len(self.poses)

    def grab(self) -> Frame | None:
        if self._cursor >= len(self.poses):
            return None
        i = self._cursor
        self._cursor += 1
        depth = self.scene.render_depth(self.poses[i], self.intrinsics)
        if self.noise_std > 0:
            hit = depth > 0
            depth[hit] += self._rng.normal(0.0, self.noise_std, size=int(hit.sum())).astype(np.float32)
        raw = np.clip(np.rint(depth * self.depth_scale), 0, np.iinfo(np.uint16).max).astype(np.uint16)
        return Frame(index=i, depth=raw, timestamp=float(i) / 30.0, name=f"synthetic_{i:05d}")
