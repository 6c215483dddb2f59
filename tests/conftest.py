"""Shared pytest fixtures for livefusion tests."""

from pathlib import Path

import numpy as np
import pytest

from livefusion.capture.synthetic import SyntheticScene, cube_with_sphere, orbit_poses
from livefusion.core.contracts import CameraIntrinsics
from livefusion.pipeline.config import FusionConfig
from livefusion.preprocess.config import PreprocessConfig
from livefusion.utils.geometry import make_pose
from livefusion.volume.config import VolumeConfig


@pytest.fixture
def small_intrinsics() -> CameraIntrinsics:
    """160x120 pinhole camera, ~56 degree horizontal field of view."""
    return CameraIntrinsics(fx=150.0, fy=150.0, cx=79.5, cy=59.5, width=160, height=120)


@pytest.fixture
def plane_volume_config() -> VolumeConfig:
    """64^3 grid of 2 cm voxels starting 0.3 m in front of an identity camera."""
    return VolumeConfig(
        dims=[64, 64, 64],
        size=[1.28, 1.28, 1.28],
        pose=make_pose(t=[-0.64, -0.64, 0.3]).reshape(16).tolist(),
        trunc_dist=0.06,
    )


@pytest.fixture
def plane_depth(small_intrinsics: CameraIntrinsics) -> np.ndarray:
    """Metric depth of a fronto-parallel wall 1 m in front of the camera."""
    return np.full((small_intrinsics.height, small_intrinsics.width), 1.0, dtype=np.float32)


@pytest.fixture
def scene() -> SyntheticScene:
    return cube_with_sphere()


@pytest.fixture
def orbit() -> list[np.ndarray]:
    """Ground-truth camera-to-world poses circling the test scene."""
    return orbit_poses(20)


@pytest.fixture
def scene_volume_config() -> VolumeConfig:
    """96^3 grid of 12.5 mm voxels enclosing the cube and ball."""
    return VolumeConfig(
        dims=[96, 96, 96],
        size=[1.2, 1.2, 1.2],
        pose=make_pose(t=[-0.6, -0.6, -0.2]).reshape(16).tolist(),
        trunc_dist=0.05,
    )


@pytest.fixture
def fusion_config(small_intrinsics, scene_volume_config, orbit) -> FusionConfig:
    """Pipeline configuration whose first frame is placed at the first orbit pose."""
    return FusionConfig(
        intrinsics=small_intrinsics,
        volume=scene_volume_config,
        preprocess=PreprocessConfig(),
        initial_pose=orbit[0].reshape(16).tolist(),
    )


@pytest.fixture
def raw_scene_depth(scene, orbit, small_intrinsics):
    """Returns f(i) -> uint16 millimetre depth seen from orbit pose i."""
    def render(i: int) -> np.ndarray:
        depth = scene.render_depth(orbit[i], small_intrinsics)
        return np.rint(depth * 1000.0).astype(np.uint16)
    return render


@pytest.fixture
def frames_dir(tmp_path: Path, scene, orbit, small_intrinsics) -> Path:
    """Recorded sequence on disk: depth/*.png (uint16 mm) plus intrinsics.json."""
    from livefusion.utils.io import save_depth_image, write_intrinsics

    root = tmp_path / "seq"
    (root / "depth").mkdir(parents=True)
    for i in range(4):
        depth = scene.render_depth(orbit[i], small_intrinsics)
        save_depth_image(root / "depth" / f"{i:06d}.png", np.rint(depth * 1000.0).astype(np.uint16))
    write_intrinsics(root / "intrinsics.json", small_intrinsics)
    return root
