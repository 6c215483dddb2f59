"""Depth preprocessing: raw sensor depth -> multi-resolution points/normals pyramid."""

from __future__ import annotations

import logging

import numpy as np

from livefusion.core.contracts import CameraIntrinsics
from ._filters import (
    back_project,
    bilateral_filter,
    compute_normals,
    downsample_depth,
    downsample_points_normals,
)
from .config import PreprocessConfig
from .contracts import DepthPyramid, PyramidLevel

logger = logging.getLogger(__name__)


class DepthPreprocessor:
    """Builds the live pyramid for one input frame."""

    def __init__(self, config: PreprocessConfig, intrinsics: CameraIntrinsics):
        self.config = config
        self.intrinsics = intrinsics

    def to_meters(self, raw_depth: np.ndarray) -> np.ndarray:
        """Scale raw depth to meters and zero everything outside the valid range."""
        raw_depth = np.asarray(raw_depth)
        if raw_depth.ndim == 3 and raw_depth.shape[2] == 1:
            raw_depth = raw_depth[..., 0]
        expected = (self.intrinsics.height, self.intrinsics.width)
        if raw_depth.shape != expected:
            raise ValueError(f"Depth frame shape {raw_depth.shape} does not match intrinsics {expected}")

        depth = raw_depth.astype(np.float32) / np.float32(self.config.depth_scale)
        depth[~np.isfinite(depth)] = 0.0
        in_range = (depth >= self.config.min_depth) & (depth <= self.config.max_depth)
        return np.where(in_range, depth, 0.0).astype(np.float32)

    def build_pyramid(self, raw_depth: np.ndarray) -> DepthPyramid:
        metric = self.to_meters(raw_depth)
        cfg = self.config
        depth = metric
        if cfg.use_bilateral:
            depth = bilateral_filter(
                metric, cfg.bilateral_kernel_size, cfg.bilateral_sigma_depth, cfg.bilateral_sigma_spatial
            )

        levels = []
        for level in range(cfg.levels):
            if level > 0:
                depth = downsample_depth(depth, max_jump=3.0 * cfg.bilateral_sigma_depth)
            intr = self.intrinsics.scaled(level)
            points = back_project(depth, intr)
            levels.append(PyramidLevel(depth, points, compute_normals(points), intr))

        pyramid = DepthPyramid(levels, metric_depth=metric)
        logger.debug(
            "Pyramid valid pixels: " + ", ".join(str(lvl.num_valid) for lvl in pyramid.levels)
        )
        return pyramid


def pyramid_from_render(
    points: np.ndarray,
    normals: np.ndarray,
    intrinsics: CameraIntrinsics,
    levels: int,
) -> DepthPyramid:
    """Model pyramid from a ray-cast points/normals map (camera frame)."""
    points = np.asarray(points, dtype=np.float32)
    normals = np.asarray(normals, dtype=np.float32)
    out = []
    for level in range(levels):
        if level > 0:
            points, normals = downsample_points_normals(points, normals)
        depth = np.nan_to_num(points[..., 2], nan=0.0).astype(np.float32)
        out.append(PyramidLevel(depth, points, normals, intrinsics.scaled(level)))
    return DepthPyramid(out)
