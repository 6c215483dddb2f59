"""Top-level fusion configuration, composed of the per-component configs."""

from __future__ import annotations

import numpy as np
from pydantic import BaseModel, Field

from livefusion.core.contracts import CameraIntrinsics
from livefusion.preprocess.config import PreprocessConfig
from livefusion.raycast.config import RaycastConfig
from livefusion.tracking.config import IcpConfig
from livefusion.volume.config import VolumeConfig


class FusionConfig(BaseModel):
    """Everything one fusion session needs; loaded from fusion.yaml."""

    intrinsics: CameraIntrinsics = Field(default_factory=CameraIntrinsics)
    volume: VolumeConfig = Field(default_factory=VolumeConfig)
    preprocess: PreprocessConfig = Field(default_factory=PreprocessConfig)
    icp: IcpConfig = Field(default_factory=IcpConfig)
    raycast: RaycastConfig = Field(default_factory=RaycastConfig)

    initial_pose: list[float] | None = Field(
        None, min_length=16, max_length=16, description="Camera-to-world pose of the first frame (row-major)"
    )
    min_camera_movement: float = Field(
        0.0, ge=0, description="Skip integration when the camera moved less than this (meters)"
    )
    max_lost_frames: int = Field(
        0, ge=0, description="Reset volume and session after this many consecutive tracking failures (0 = never)"
    )

    def first_pose(self) -> np.ndarray:
        if self.initial_pose is None:
            return np.eye(4)
        return np.array(self.initial_pose, dtype=np.float64).reshape(4, 4)
