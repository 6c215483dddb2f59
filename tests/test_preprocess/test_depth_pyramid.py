"""Tests for livefusion.preprocess: metric conversion, filtering, pyramid levels."""

import numpy as np
import pytest

from livefusion.preprocess._filters import (
    back_project,
    bilateral_filter,
    compute_normals,
    downsample_depth,
    downsample_points_normals,
)
from livefusion.preprocess.config import PreprocessConfig
from livefusion.preprocess.pyramid import DepthPreprocessor, pyramid_from_render


@pytest.fixture
def preprocessor(small_intrinsics) -> DepthPreprocessor:
    return DepthPreprocessor(PreprocessConfig(), small_intrinsics)


@pytest.fixture
def flat_raw(small_intrinsics) -> np.ndarray:
    """uint16 millimetre frame of a wall 1 m away."""
    return np.full((small_intrinsics.height, small_intrinsics.width), 1000, dtype=np.uint16)


class TestPreprocessConfig:
    def test_defaults(self):
        cfg = PreprocessConfig()
        assert cfg.depth_scale == 1000.0
        assert cfg.levels == 3
        assert cfg.bilateral_kernel_size == 7
        assert cfg.bilateral_sigma_depth == 0.04
        assert cfg.bilateral_sigma_spatial == 4.5


class TestToMeters:
    def test_scale_and_range(self, preprocessor, flat_raw):
        raw = flat_raw.copy()
        raw[0, 0] = 100  # 0.1 m, too close
        raw[0, 1] = 6000  # 6 m, too far
        raw[0, 2] = 1500
        depth = preprocessor.to_meters(raw)
        assert depth.dtype == np.float32
        assert depth[0, 0] == 0.0
        assert depth[0, 1] == 0.0
        assert depth[0, 2] == pytest.approx(1.5)
        assert depth[5, 5] == pytest.approx(1.0)

    def test_wrong_shape_raises(self, preprocessor):
        with pytest.raises(ValueError, match="does not match"):
            preprocessor.to_meters(np.zeros((10, 10), dtype=np.uint16))

    def test_single_channel_image_accepted(self, preprocessor, flat_raw):
        depth = preprocessor.to_meters(flat_raw[..., None])
        assert depth.shape == flat_raw.shape


class TestFilters:
    def test_bilateral_keeps_holes_and_flat_surfaces(self):
        depth = np.full((20, 20), 1.0, dtype=np.float32)
        depth[10, 10] = 0.0
        out = bilateral_filter(depth, 7, 0.04, 4.5)
        assert out[10, 10] == 0.0
        assert np.allclose(out[depth > 0], 1.0, atol=1e-4)

    def test_back_project_plane(self, small_intrinsics, plane_depth):
        points = back_project(plane_depth, small_intrinsics)
        assert points.shape == (120, 160, 3)
        assert np.allclose(points[..., 2], 1.0)
        # Principal point lies between pixels 79 and 80
        assert points[59, 79, 0] == pytest.approx(-0.5 / 150.0)

    def test_back_project_invalid_is_nan(self, small_intrinsics, plane_depth):
        depth = plane_depth.copy()
        depth[3, 4] = 0.0
        assert np.all(np.isnan(back_project(depth, small_intrinsics)[3, 4]))

    def test_normals_face_camera(self, small_intrinsics, plane_depth):
        normals = compute_normals(back_project(plane_depth, small_intrinsics))
        assert np.allclose(normals[:-1, :-1], [0.0, 0.0, -1.0], atol=1e-5)
        assert np.all(np.isnan(normals[-1]))
        assert np.all(np.isnan(normals[:, -1]))

    def test_downsample_invalidates_blocks_with_holes(self):
        depth = np.ones((4, 4), dtype=np.float32)
        depth[0, 0] = 0.0
        out = downsample_depth(depth)
        assert out.shape == (2, 2)
        assert out[0, 0] == 0.0
        assert np.allclose(out.ravel()[1:], 1.0)

    def test_downsample_rejects_depth_jumps(self):
        depth = np.ones((4, 4), dtype=np.float32)
        depth[:, 3] = 2.0
        assert downsample_depth(depth)[0, 1] == pytest.approx(1.5)
        assert downsample_depth(depth, max_jump=0.12)[0, 1] == 0.0

    def test_downsample_points_normals_propagates_nan(self, small_intrinsics, plane_depth):
        depth = plane_depth.copy()
        depth[0, 0] = 0.0
        points = back_project(depth, small_intrinsics)
        p, n = downsample_points_normals(points, compute_normals(points))
        assert p.shape == (60, 80, 3)
        assert np.all(np.isnan(p[0, 0]))
        assert np.allclose(n[10, 10], [0.0, 0.0, -1.0], atol=1e-5)


class TestBuildPyramid:
    def test_levels_and_intrinsics(self, preprocessor, flat_raw):
        pyramid = preprocessor.build_pyramid(flat_raw)
        assert len(pyramid) == 3
        assert [lvl.shape for lvl in pyramid.levels] == [(120, 160), (60, 80), (30, 40)]
        intr1 = pyramid[1].intrinsics
        assert intr1.fx == pytest.approx(75.0)
        assert intr1.cx == pytest.approx(39.5)
        assert intr1.width == 80

    def test_metric_depth_is_unfiltered(self, preprocessor, flat_raw):
        pyramid = preprocessor.build_pyramid(flat_raw)
        assert pyramid.depth is pyramid.metric_depth
        assert np.allclose(pyramid.depth, 1.0)

    def test_hole_propagates_to_coarser_levels(self, preprocessor, flat_raw):
        raw = flat_raw.copy()
        raw[10, 10] = 0
        pyramid = preprocessor.build_pyramid(raw)
        assert pyramid[0].depth[10, 10] == 0.0
        assert pyramid[1].depth[5, 5] == 0.0
        assert pyramid[2].depth[2, 2] == 0.0
        assert not pyramid[0].valid[10, 10]
        assert not pyramid[0].valid[9, 10]  # its lower neighbour is missing
        assert pyramid[1].depth[20, 20] == pytest.approx(1.0)

    def test_num_valid(self, preprocessor, flat_raw):
        pyramid = preprocessor.build_pyramid(flat_raw)
        # Last row and column have no forward neighbours for normals
        assert pyramid[0].num_valid == 119 * 159

    def test_without_bilateral(self, small_intrinsics, flat_raw):
        pre = DepthPreprocessor(PreprocessConfig(use_bilateral=False, levels=1), small_intrinsics)
        pyramid = pre.build_pyramid(flat_raw)
        assert len(pyramid) == 1
        assert np.array_equal(pyramid[0].depth, pyramid.depth)


class TestPyramidFromRender:
    def test_levels_from_point_map(self, small_intrinsics, plane_depth):
        points = back_project(plane_depth, small_intrinsics)
        normals = compute_normals(points)
        pyramid = pyramid_from_render(points, normals, small_intrinsics, levels=3)
        assert len(pyramid) == 3
        assert pyramid.metric_depth is None
        assert pyramid[2].shape == (30, 40)
        assert np.allclose(pyramid[1].depth[:-1, :-1], 1.0)
        assert pyramid[0].depth[-1, -1] == pytest.approx(1.0)
        assert pyramid[2].intrinsics.fx == pytest.approx(37.5)
