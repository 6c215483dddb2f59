"""Configuration for the TSDF volume."""

from __future__ import annotations

import numpy as np
from pydantic import BaseModel, Field


class VolumeConfig(BaseModel):
    dims: list[int] = Field(
        default=[256, 256, 256], min_length=3, max_length=3,
        description="Voxel resolution along x, y, z",
    )
    size: list[float] = Field(
        default=[3.0, 3.0, 3.0], min_length=3, max_length=3,
        description="Physical extent of the volume in meters",
    )
    pose: list[float] | None = Field(
        None, min_length=16, max_length=16,
        description="Volume-to-world 4x4 (row-major). None: centred on x/y, starting 0.5m ahead of the origin",
    )
    trunc_dist: float = Field(0.04, gt=0, description="TSDF truncation distance (meters)")
    max_weight: float = Field(64.0, gt=0, description="Per-voxel weight saturation cap")
    sample_weight: float = Field(1.0, gt=0, description="Weight of one depth observation")
    integrate_color: bool = Field(False, description="Keep a running RGB average per voxel")
    chunk_voxels: int = Field(
        2_000_000, gt=0, description="Voxels processed per integration chunk (bounds temporaries)"
    )
    cloud_buffer_size: int = Field(
        2_000_000, gt=0, description="Default capacity of extract_points (points)"
    )

    @property
    def cell_size(self) -> np.ndarray:
        return np.asarray(self.size, dtype=np.float64) / np.asarray(self.dims, dtype=np.float64)

    def volume_pose(self) -> np.ndarray:
        if self.pose is not None:
            return np.array(self.pose, dtype=np.float64).reshape(4, 4)
        T = np.eye(4)
        T[:3, 3] = [-self.size[0] / 2.0, -self.size[1] / 2.0, 0.5]
        return T
