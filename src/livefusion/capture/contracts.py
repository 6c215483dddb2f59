"""Frame source interface consumed by the session runner."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np

from livefusion.core.contracts import CameraIntrinsics


@dataclass(frozen=True)
class Frame:
    index: int
    depth: np.ndarray | None  # (H, W) raw sensor units; None when the sensor delivered nothing
    color: np.ndarray | None = None  # (H, W, 3) uint8 RGB
    timestamp: float = 0.0
    name: str = ""


@runtime_checkable
class FrameSource(Protocol):
    """Anything that yields depth frames with fixed intrinsics."""

    intrinsics: CameraIntrinsics

    def grab(self) -> Frame | None:
        """Next frame, or None once the stream has ended.

        A live sensor that misses a frame returns a `Frame` whose `depth` is
        None; the session keeps going.
        """
        ...
