"""Ray-cast output."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from livefusion.core.contracts import CameraIntrinsics


@dataclass(frozen=True)
class RenderResult:
    """Model view at `pose`. Points and normals are in the camera frame.

    Pixels whose ray found no surface have depth 0 and NaN points/normals.
    """

    depth: np.ndarray  # (H, W) float32
    points: np.ndarray  # (H, W, 3) float32
    normals: np.ndarray  # (H, W, 3) float32
    pose: np.ndarray  # (4, 4) camera-to-world
    intrinsics: CameraIntrinsics

    @property
    def valid(self) -> np.ndarray:
        return self.depth > 0

    @property
    def num_hits(self) -> int:
        return int(np.count_nonzero(self.valid))
