"""Configuration for depth preprocessing."""

from pydantic import BaseModel, Field


class PreprocessConfig(BaseModel):
    depth_scale: float = Field(1000.0, gt=0, description="Raw depth units per meter (1000 for uint16 mm)")
    min_depth: float = Field(0.2, ge=0, description="Nearest valid depth (meters)")
    max_depth: float = Field(5.0, gt=0, description="Farthest valid depth (meters)")
    levels: int = Field(3, ge=1, le=6, description="Number of pyramid levels")
    use_bilateral: bool = Field(True, description="Apply the edge-preserving bilateral filter")
    bilateral_kernel_size: int = Field(7, ge=1, description="Bilateral filter diameter (pixels)")
    bilateral_sigma_depth: float = Field(0.04, gt=0, description="Bilateral range sigma (meters)")
    bilateral_sigma_spatial: float = Field(4.5, gt=0, description="Bilateral spatial sigma (pixels)")
