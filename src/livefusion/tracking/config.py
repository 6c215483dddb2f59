"""Configuration for projective point-to-plane ICP."""

from pydantic import BaseModel, Field


class IcpConfig(BaseModel):
    iterations: list[int] = Field(
        default=[10, 5, 4], min_length=1,
        description="Gauss-Newton iterations per pyramid level, finest level first",
    )
    dist_threshold: float = Field(0.1, gt=0, description="Max correspondence distance (meters)")
    angle_threshold_deg: float = Field(30.0, gt=0, le=180, description="Max normal angle (degrees)")
    min_correspondences: int = Field(
        100, ge=6, description="Minimum inliers at the finest level (scaled by 4^-level, floor 6)"
    )
    max_condition_number: float = Field(1e7, gt=1, description="Reject normal equations above this condition number")
    max_residual_growth: float = Field(
        10.0, gt=1, description="Fail when RMS exceeds this factor times the best RMS of the level"
    )
    max_translation: float = Field(0.2, gt=0, description="Largest accepted frame-to-frame translation (meters)")
    max_rotation_deg: float = Field(20.0, gt=0, description="Largest accepted frame-to-frame rotation (degrees)")
