"""Depth pyramid records consumed by the tracker."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from livefusion.core.contracts import CameraIntrinsics


@dataclass
class PyramidLevel:
    """One resolution level: metric depth plus camera-frame points and normals.

    Invalid pixels have depth 0 and NaN points/normals.
    """

    depth: np.ndarray  # (H, W) float32
    points: np.ndarray  # (H, W, 3) float32
    normals: np.ndarray  # (H, W, 3) float32
    intrinsics: CameraIntrinsics

    @property
    def valid(self) -> np.ndarray:
        return np.isfinite(self.points[..., 0]) & np.isfinite(self.normals[..., 0])

    @property
    def num_valid(self) -> int:
        return int(np.count_nonzero(self.valid))

    @property
    def shape(self) -> tuple[int, int]:
        return self.depth.shape


@dataclass
class DepthPyramid:
    """Levels ordered finest first.

    `metric_depth` is the range-checked but unfiltered input in meters; the
    volume integrates it rather than the smoothed level 0.
    """

    levels: list[PyramidLevel] = field(default_factory=list)
    metric_depth: np.ndarray | None = None

    def __len__(self) -> int:
        return len(self.levels)

    def __getitem__(self, level: int) -> PyramidLevel:
        return self.levels[level]

    @property
    def depth(self) -> np.ndarray:
        """Depth to integrate: the unfiltered input when known, else level 0."""
        return self.metric_depth if self.metric_depth is not None else self.levels[0].depth
