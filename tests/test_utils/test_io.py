"""Tests for livefusion.utils.io: frames, PLY clouds and trajectories."""

from pathlib import Path

import numpy as np
import pytest

from livefusion.core.contracts import CameraPose
from livefusion.utils.geometry import make_pose
from livefusion.utils.io import (
    load_color_image,
    load_depth_image,
    read_ply_points,
    save_depth_image,
    write_point_cloud,
    write_trajectory,
)
from livefusion.volume.contracts import PointCloud


@pytest.fixture
def cloud() -> PointCloud:
    rng = np.random.RandomState(0)
    normals = rng.randn(50, 3)
    normals /= np.linalg.norm(normals, axis=1, keepdims=True)
    return PointCloud(
        points=rng.uniform(-1, 1, (50, 3)).astype(np.float32),
        normals=normals.astype(np.float32),
    )


class TestDepthFrames:
    def test_png_round_trip(self, tmp_path: Path):
        depth = np.arange(12, dtype=np.uint16).reshape(3, 4) * 1000
        save_depth_image(tmp_path / "d.png", depth)
        loaded = load_depth_image(tmp_path / "d.png")
        assert loaded.dtype == np.uint16
        assert np.array_equal(loaded, depth)

    def test_npy_round_trip(self, tmp_path: Path):
        depth = np.random.RandomState(1).uniform(0.5, 3.0, (4, 5)).astype(np.float32)
        save_depth_image(tmp_path / "d.npy", depth)
        assert np.array_equal(load_depth_image(tmp_path / "d.npy"), depth)

    def test_missing_images(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_depth_image(tmp_path / "missing.png")
        with pytest.raises(FileNotFoundError):
            load_color_image(tmp_path / "missing.png")


class TestPly:
    def test_binary_points_and_normals(self, tmp_path: Path, cloud):
        path = tmp_path / "cloud.ply"
        write_point_cloud(path, cloud)
        header = path.read_bytes().split(b"end_header\n")[0].decode("ascii")
        assert "element vertex 50" in header
        assert "property float nx" in header
        assert "red" not in header
        assert np.allclose(read_ply_points(path), cloud.points)

    def test_colors_written_as_uchar(self, tmp_path: Path, cloud):
        colored = PointCloud(cloud.points, cloud.normals, np.full((50, 3), 7, dtype=np.uint8))
        path = tmp_path / "colored.ply"
        write_point_cloud(path, colored)
        header = path.read_bytes().split(b"end_header\n")[0].decode("ascii")
        assert "property uchar red" in header
        assert np.allclose(read_ply_points(path), cloud.points)

    def test_nan_normals_written_as_zero(self, tmp_path: Path, cloud):
        normals = cloud.normals.copy()
        normals[0] = np.nan
        path = tmp_path / "nan.ply"
        write_point_cloud(path, PointCloud(cloud.points, normals))
        body = path.read_bytes().split(b"end_header\n", 1)[1]
        data = np.frombuffer(body, dtype="<f4").reshape(50, 6)
        assert np.array_equal(data[0, 3:], [0.0, 0.0, 0.0])

    def test_empty_cloud(self, tmp_path: Path):
        path = tmp_path / "empty.ply"
        write_point_cloud(path, PointCloud.empty())
        assert read_ply_points(path).shape == (0, 3)

    def test_ascii_ply(self, tmp_path: Path):
        path = tmp_path / "ascii.ply"
        path.write_text(
            "ply\nformat ascii 1.0\nelement vertex 2\n"
            "property float x\nproperty float y\nproperty float z\nend_header\n"
            "0 1 2\n3 4 5\n"
        )
        assert np.allclose(read_ply_points(path), [[0, 1, 2], [3, 4, 5]])


class TestTrajectory:
    def test_tum_format(self, tmp_path: Path):
        poses = [
            CameraPose.from_matrix("a", np.eye(4), timestamp=0.0),
            CameraPose.from_matrix("b", make_pose(t=[1.0, 2.0, 3.0]), timestamp=0.5),
        ]
        path = tmp_path / "traj" / "trajectory.txt"
        write_trajectory(path, poses)
        lines = path.read_text().splitlines()
        assert lines[0].startswith("#")
        values = [float(v) for v in lines[2].split()]
        assert values == pytest.approx([0.5, 1.0, 2.0, 3.0, 0.0, 0.0, 0.0, 1.0])
