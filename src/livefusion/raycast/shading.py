"""Turn a ray-cast into a displayable 8-bit image."""

from __future__ import annotations

from typing import Literal

import numpy as np

from .contracts import RenderResult

RenderMode = Literal["depth", "normals", "shaded"]


def render_image(
    result: RenderResult,
    mode: RenderMode = "shaded",
    light_position: np.ndarray | None = None,
    max_depth: float = 4.0,
    ambient: float = 0.3,
) -> np.ndarray:
    """Render `result` as uint8.

    - depth: (H, W) grey levels, 0 at the camera and 255 at `max_depth`
    - normals: (H, W, 3) camera-frame normals mapped from [-1, 1] to [0, 255]
    - shaded: (H, W, 3) Lambertian shading, light at `light_position`
      (camera frame; default the camera centre)
    """
    valid = result.valid
    if mode == "depth":
        img = np.clip(result.depth * (255.0 / max_depth), 0, 255)
        return np.where(valid, img, 0).astype(np.uint8)

    normals = np.nan_to_num(result.normals, nan=0.0)
    if mode == "normals":
        img = (normals * 0.5 + 0.5) * 255.0
        img[~valid] = 0
        return np.clip(img, 0, 255).astype(np.uint8)

    if mode == "shaded":
        light = np.zeros(3) if light_position is None else np.asarray(light_position, dtype=np.float64)
        points = np.nan_to_num(result.points, nan=0.0)
        to_light = light - points
        norm = np.linalg.norm(to_light, axis=-1, keepdims=True)
        to_light = to_light / np.maximum(norm, 1e-9)
        diffuse = np.clip(np.sum(normals * to_light, axis=-1), 0.0, 1.0)
        intensity = (ambient + (1.0 - ambient) * diffuse) * 255.0
        intensity[~valid] = 0
        return np.repeat(intensity[..., None], 3, axis=-1).astype(np.uint8)

    raise ValueError(f"Unknown render mode: {mode!r}")
