"""Tracker results."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np


class TrackingStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class TrackingResult:
    """Outcome of one estimate_pose call.

    `transform` maps live-camera coordinates into model-camera coordinates and
    is None when tracking failed.
    """

    status: TrackingStatus
    transform: np.ndarray | None
    reason: str = ""
    num_correspondences: int = 0
    rms_error: float = float("nan")
    iterations: int = 0

    @property
    def ok(self) -> bool:
        return self.status is TrackingStatus.SUCCESS
