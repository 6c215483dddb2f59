"""Explicit session state threaded through the fusion pipeline.

Sessions are immutable; every transition returns a new one, so a caller
holding an old session never sees it change. The frame index and the
integrated/lost counters cover the pipeline's whole lifetime and survive a
restart.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal

import numpy as np

SessionState = Literal["uninitialized", "tracking", "recovering", "terminated"]


@dataclass(frozen=True)
class FusionSession:
    state: SessionState = "uninitialized"
    pose: np.ndarray = field(default_factory=lambda: np.eye(4))  # last known good
    frame_index: int = 0  # frames consumed so far
    lost_frames: int = 0  # consecutive tracking failures
    num_integrated: int = 0
    num_tracking_lost: int = 0

    @classmethod
    def start(cls, initial_pose: np.ndarray) -> FusionSession:
        return cls(pose=np.array(initial_pose, dtype=np.float64))

    def restarted(self, initial_pose: np.ndarray) -> FusionSession:
        """Fresh capture at `initial_pose`, keeping the lifetime counters."""
        return replace(
            self,
            state="uninitialized",
            pose=np.array(initial_pose, dtype=np.float64),
            lost_frames=0,
        )

    def initialized(self) -> FusionSession:
        """First frame fused at the initial pose."""
        self._check_active()
        return replace(
            self,
            state="tracking",
            frame_index=self.frame_index + 1,
            num_integrated=self.num_integrated + 1,
        )

    def skipped(self) -> FusionSession:
        """Frame consumed before initialisation without fusing anything."""
        self._check_active()
        return replace(self, frame_index=self.frame_index + 1)

    def tracked(self, pose: np.ndarray, integrated: bool) -> FusionSession:
        self._check_active()
        return replace(
            self,
            state="tracking",
            pose=np.array(pose, dtype=np.float64),
            frame_index=self.frame_index + 1,
            lost_frames=0,
            num_integrated=self.num_integrated + int(integrated),
        )

    def lost(self) -> FusionSession:
        """Tracking failed: keep the last good pose and try again next frame."""
        self._check_active()
        return replace(
            self,
            state="recovering",
            frame_index=self.frame_index + 1,
            lost_frames=self.lost_frames + 1,
            num_tracking_lost=self.num_tracking_lost + 1,
        )

    def terminated(self) -> FusionSession:
        return replace(self, state="terminated")

    def _check_active(self) -> None:
        if self.state == "terminated":
            raise RuntimeError("Fusion session has been terminated")
