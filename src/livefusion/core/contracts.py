"""Common Pydantic models shared across the fusion components."""

from __future__ import annotations

from typing import Any

import numpy as np
from pydantic import BaseModel, Field


class FrameStats(BaseModel):
    """Per-frame timing and status attached to session summaries."""

    frame_index: int
    status: str
    elapsed_ms: float = 0.0
    params: dict[str, Any] = Field(default_factory=dict)


class CameraIntrinsics(BaseModel):
    """Camera intrinsic parameters (pinhole model)."""

    fx: float = 525.0
    fy: float = 525.0
    cx: float = 319.5
    cy: float = 239.5
    width: int = 640
    height: int = 480

    def scaled(self, level: int) -> CameraIntrinsics:
        """Intrinsics of pyramid level `level` (each level halves the resolution).

        Principal point follows pixel centres through 2x2 averaging.
        """
        if level == 0:
            return self
        s = 2 ** level
        return CameraIntrinsics(
            fx=self.fx / s,
            fy=self.fy / s,
            cx=(self.cx + 0.5) / s - 0.5,
            cy=(self.cy + 0.5) / s - 0.5,
            width=self.width // s,
            height=self.height // s,
        )

    def matrix(self) -> np.ndarray:
        """3x3 calibration matrix K."""
        return np.array([
            [self.fx, 0.0, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0],
        ])


class CameraPose(BaseModel):
    """Camera extrinsic: 4x4 camera-to-world matrix stored as flat list (row-major)."""

    frame_name: str
    timestamp: float = 0.0
    matrix_4x4: list[float] = Field(..., min_length=16, max_length=16)

    @classmethod
    def from_matrix(cls, frame_name: str, matrix: np.ndarray, timestamp: float = 0.0) -> CameraPose:
        return cls(
            frame_name=frame_name,
            timestamp=timestamp,
            matrix_4x4=np.asarray(matrix, dtype=float).reshape(16).tolist(),
        )

    def as_matrix(self) -> np.ndarray:
        return np.array(self.matrix_4x4, dtype=np.float64).reshape(4, 4)


class SessionSummary(BaseModel):
    """Result of running a fusion session over a frame source."""

    num_frames: int = 0
    num_integrated: int = 0
    num_tracking_lost: int = 0
    num_missed: int = 0
    mean_frame_ms: float = 0.0
    final_state: str = "uninitialized"
    trajectory: list[CameraPose] = Field(default_factory=list)
    frames: list[FrameStats] = Field(default_factory=list)
