"""Per-frame results reported by the fusion pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from livefusion.tracking.contracts import TrackingResult


class FrameStatus(str, Enum):
    INITIALIZED = "initialized"  # first frame, integrated at the initial pose
    SKIPPED = "skipped"  # no usable depth before initialisation; still waiting for a first frame
    TRACKED = "tracked"
    TRACKING_LOST = "tracking_lost"  # pose frozen, frame not integrated
    RESET = "reset"  # too many consecutive failures, capture restarted
    NO_FRAME = "no_frame"  # sensor had nothing; pipeline did not advance


@dataclass(frozen=True)
class FrameResult:
    index: int
    status: FrameStatus
    pose: np.ndarray
    integrated: bool = False
    tracking: TrackingResult | None = None
    elapsed_ms: float = 0.0

    @property
    def tracking_lost(self) -> bool:
        return self.status in (FrameStatus.TRACKING_LOST, FrameStatus.RESET)

    @property
    def has_model(self) -> bool:
        """True once a frame has been fused, so a ray-cast can show something."""
        return self.status in (FrameStatus.INITIALIZED, FrameStatus.TRACKED, FrameStatus.TRACKING_LOST)
