"""Output records of the TSDF volume."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class PointCloud:
    """Surface samples in world coordinates."""

    points: np.ndarray  # (N, 3) float32
    normals: np.ndarray  # (N, 3) float32, NaN where the gradient is unavailable
    colors: np.ndarray | None = None  # (N, 3) uint8

    def __len__(self) -> int:
        return len(self.points)

    @classmethod
    def empty(cls, with_colors: bool = False) -> PointCloud:
        return cls(
            points=np.zeros((0, 3), dtype=np.float32),
            normals=np.zeros((0, 3), dtype=np.float32),
            colors=np.zeros((0, 3), dtype=np.uint8) if with_colors else None,
        )


@dataclass(frozen=True)
class ExtractionResult:
    """Cloud returned by extract_points plus capacity bookkeeping."""

    cloud: PointCloud
    total_crossings: int
    capacity: int

    @property
    def count(self) -> int:
        return len(self.cloud)

    @property
    def truncated(self) -> bool:
        return self.total_crossings > self.count
