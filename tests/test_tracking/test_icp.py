"""Tests for livefusion.tracking: projective point-to-plane ICP."""

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from livefusion.preprocess.config import PreprocessConfig
from livefusion.preprocess.pyramid import DepthPreprocessor
from livefusion.tracking._reduction import associate, build_normal_equations
from livefusion.tracking.config import IcpConfig
from livefusion.tracking.contracts import TrackingStatus
from livefusion.tracking.icp import PoseTracker
from livefusion.utils.geometry import make_pose, pose_distance


@pytest.fixture
def metric_preprocessor(small_intrinsics) -> DepthPreprocessor:
    """Takes depth already in meters, unfiltered."""
    return DepthPreprocessor(PreprocessConfig(depth_scale=1.0, use_bilateral=False), small_intrinsics)


@pytest.fixture
def small_motion() -> np.ndarray:
    R = Rotation.from_euler("xyz", [0.5, -0.8, 0.6], degrees=True).as_matrix()
    return make_pose(R, [0.01, -0.008, 0.012])


@pytest.fixture
def pyramids(scene, orbit, small_intrinsics, metric_preprocessor, small_motion):
    """(live, model) pyramids of the test scene; live camera moved by `small_motion`."""
    P0 = orbit[0]
    P1 = P0 @ small_motion
    model = metric_preprocessor.build_pyramid(scene.render_depth(P0, small_intrinsics))
    live = metric_preprocessor.build_pyramid(scene.render_depth(P1, small_intrinsics))
    return live, model


class TestIcpConfig:
    def test_defaults(self):
        cfg = IcpConfig()
        assert cfg.iterations == [10, 5, 4]
        assert cfg.dist_threshold == 0.1
        assert cfg.angle_threshold_deg == 30.0


class TestReduction:
    def test_perfect_match_has_zero_residual(self, metric_preprocessor, scene, orbit, small_intrinsics):
        pyramid = metric_preprocessor.build_pyramid(scene.render_depth(orbit[0], small_intrinsics))
        level = pyramid[0]
        pts = level.points[level.valid].astype(np.float64)
        nrm = level.normals[level.valid].astype(np.float64)

        src, dst, dst_n = associate(pts, nrm, level, 0.1, np.cos(np.radians(30)))
        assert len(src) == level.num_valid
        eq = build_normal_equations(src, dst, dst_n)
        assert eq.count == len(src)
        assert eq.sq_error == pytest.approx(0.0, abs=1e-10)
        assert np.allclose(eq.b, 0.0, atol=1e-8)
        assert eq.A.shape == (6, 6)

    def test_distance_gate(self, metric_preprocessor, small_intrinsics, plane_depth):
        level = metric_preprocessor.build_pyramid(plane_depth)[0]
        pts = level.points[level.valid].astype(np.float64)
        nrm = level.normals[level.valid].astype(np.float64)
        cos = np.cos(np.radians(30))

        near, _, _ = associate(pts + [0.0, 0.0, 0.05], nrm, level, 0.1, cos)
        far, _, _ = associate(pts + [0.0, 0.0, 0.2], nrm, level, 0.1, cos)
        assert len(near) > 0
        assert len(far) == 0

    def test_angle_gate(self, metric_preprocessor, plane_depth):
        level = metric_preprocessor.build_pyramid(plane_depth)[0]
        pts = level.points[level.valid].astype(np.float64)
        tilted = np.tile([0.0, -np.sin(np.radians(45)), -np.cos(np.radians(45))], (len(pts), 1))
        src, _, _ = associate(pts, tilted, level, 0.1, np.cos(np.radians(30)))
        assert len(src) == 0

    def test_empty_system_rms(self):
        eq = build_normal_equations(np.zeros((0, 3)), np.zeros((0, 3)), np.zeros((0, 3)))
        assert eq.count == 0
        assert eq.rms == float("inf")


class TestPoseTracker:
    def test_identical_frames_give_identity(self, metric_preprocessor, scene, orbit, small_intrinsics):
        pyramid = metric_preprocessor.build_pyramid(scene.render_depth(orbit[0], small_intrinsics))
        result = PoseTracker(IcpConfig()).estimate_pose(pyramid, pyramid)
        assert result.ok
        assert np.allclose(result.transform, np.eye(4), atol=1e-6)
        assert result.rms_error < 1e-6
        assert result.iterations == 19

    def test_recovers_small_motion(self, pyramids, small_motion):
        live, model = pyramids
        result = PoseTracker(IcpConfig()).estimate_pose(live, model)
        assert result.status is TrackingStatus.SUCCESS
        dist, angle = pose_distance(result.transform, small_motion)
        assert dist < 0.005
        assert angle < 0.5
        assert result.num_correspondences > 1000

    def test_pose_guess_seeds_the_solution(self, pyramids, small_motion):
        live, model = pyramids
        result = PoseTracker(IcpConfig()).estimate_pose(live, model, pose_guess=small_motion)
        assert result.ok
        dist, angle = pose_distance(result.transform, small_motion)
        assert dist < 0.005
        assert angle < 0.5

    def test_no_overlap_fails(self, pyramids, metric_preprocessor, small_intrinsics):
        _, model = pyramids
        empty = metric_preprocessor.build_pyramid(
            np.zeros((small_intrinsics.height, small_intrinsics.width), dtype=np.float32)
        )
        result = PoseTracker(IcpConfig()).estimate_pose(empty, model)
        assert result.status is TrackingStatus.FAILED
        assert result.transform is None
        assert "correspondences" in result.reason

    def test_tiny_overlap_fails(self, scene, orbit, small_intrinsics, metric_preprocessor):
        depth = scene.render_depth(orbit[0], small_intrinsics)
        model = metric_preprocessor.build_pyramid(depth)
        patch = np.zeros_like(depth)
        patch[60:63, 80:83] = depth[60:63, 80:83]
        result = PoseTracker(IcpConfig()).estimate_pose(metric_preprocessor.build_pyramid(patch), model)
        assert not result.ok
        assert result.num_correspondences < 6

    def test_single_plane_is_degenerate(self, metric_preprocessor, plane_depth):
        pyramid = metric_preprocessor.build_pyramid(plane_depth)
        result = PoseTracker(IcpConfig()).estimate_pose(pyramid, pyramid)
        assert not result.ok
        assert "ill-conditioned" in result.reason

    def test_implausible_motion_rejected(self, pyramids):
        live, model = pyramids
        result = PoseTracker(IcpConfig(max_translation=0.001)).estimate_pose(live, model)
        assert not result.ok
        assert "implausible" in result.reason

