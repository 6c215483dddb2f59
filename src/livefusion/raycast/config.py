"""Configuration for TSDF ray casting."""

from pydantic import BaseModel, Field


class RaycastConfig(BaseModel):
    step_factor: float = Field(0.75, gt=0, le=2.0, description="March step as a fraction of the truncation distance")
    gradient_delta_factor: float = Field(0.5, gt=0, description="Normal finite-difference delta (voxels)")
    min_depth: float = Field(0.0, ge=0, description="Rays start no closer than this to the camera (meters)")
