"""I/O utilities: depth/color frames, PLY point clouds, trajectories."""

from __future__ import annotations

import json
from pathlib import Path

import cv2
import numpy as np

from livefusion.core.contracts import CameraIntrinsics, CameraPose
from livefusion.utils.geometry import rotmat2qvec
from livefusion.volume.contracts import PointCloud


# ── Frames ───────────────────────────────────────────────────────────

def load_depth_image(path: Path) -> np.ndarray:
    """Read a depth frame: 16-bit PNG/TIFF (raw sensor units) or .npy."""
    path = Path(path)
    if path.suffix.lower() == ".npy":
        depth = np.load(str(path))
    else:
        depth = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if depth is None:
            raise FileNotFoundError(f"Cannot read depth image: {path}")
    if depth.ndim == 3:
        depth = depth[..., 0]
    return depth


def save_depth_image(path: Path, depth: np.ndarray) -> None:
    """Write raw depth as 16-bit PNG (or .npy by suffix)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".npy":
        np.save(str(path), depth)
        return
    if not cv2.imwrite(str(path), np.asarray(depth).astype(np.uint16)):
        raise OSError(f"Failed to write depth image: {path}")


def load_color_image(path: Path) -> np.ndarray:
    """Read an 8-bit color frame as RGB."""
    bgr = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if bgr is None:
        raise FileNotFoundError(f"Cannot read color image: {path}")
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


def write_intrinsics(path: Path, intrinsics: CameraIntrinsics) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(intrinsics.model_dump(), f, indent=2)


# ── PLY I/O ──────────────────────────────────────────────────────────

_PLY_TYPES = {"float": "<f4", "double": "<f8", "uchar": "u1", "char": "i1",
              "short": "<i2", "ushort": "<u2", "int": "<i4", "uint": "<u4"}


def write_point_cloud(path: Path, cloud: PointCloud) -> None:
    """Write points, normals and optional colors as binary little-endian PLY."""
    fields = [("x", "<f4"), ("y", "<f4"), ("z", "<f4"),
              ("nx", "<f4"), ("ny", "<f4"), ("nz", "<f4")]
    if cloud.colors is not None:
        fields += [("red", "u1"), ("green", "u1"), ("blue", "u1")]

    n = len(cloud)
    data = np.empty(n, dtype=fields)
    data["x"], data["y"], data["z"] = cloud.points.T
    normals = np.nan_to_num(cloud.normals, nan=0.0)
    data["nx"], data["ny"], data["nz"] = normals.T
    if cloud.colors is not None:
        data["red"], data["green"], data["blue"] = cloud.colors.T

    header = "ply\nformat binary_little_endian 1.0\n" f"element vertex {n}\n"
    for name, kind in fields:
        ply_type = "uchar" if kind == "u1" else "float"
        header += f"property {ply_type} {name}\n"
    header += "end_header\n"

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(header.encode("ascii"))
        f.write(data.tobytes())


def read_ply_points(path: Path) -> np.ndarray:
    """Read vertex positions from a binary little-endian or ASCII PLY file."""
    with open(path, "rb") as f:
        header_lines = []
        while True:
            line = f.readline()
            if not line:
                raise ValueError(f"Truncated PLY header: {path}")
            text = line.decode("ascii").strip()
            header_lines.append(text)
            if text == "end_header":
                break
        body = f.read()

    n_vertices = 0
    props: list[tuple[str, str]] = []
    in_vertex = False
    for line in header_lines:
        if line.startswith("element vertex"):
            n_vertices = int(line.split()[-1])
            in_vertex = True
        elif line.startswith("element "):
            in_vertex = False
        elif in_vertex and line.startswith("property "):
            parts = line.split()
            props.append((parts[-1], _PLY_TYPES.get(parts[1], "<f4")))

    if n_vertices == 0:
        return np.zeros((0, 3))
    if "format ascii 1.0" in header_lines:
        rows = body.decode("ascii").split("\n")[:n_vertices]
        values = np.array([r.split()[:len(props)] for r in rows], dtype=np.float64)
        names = [p[0] for p in props]
        return values[:, [names.index("x"), names.index("y"), names.index("z")]]

    data = np.frombuffer(body, dtype=np.dtype(props), count=n_vertices)
    return np.stack([data["x"], data["y"], data["z"]], axis=1).astype(np.float64)


# ── Trajectories ─────────────────────────────────────────────────────

def write_trajectory(path: Path, poses: list[CameraPose]) -> None:
    """TUM RGB-D format: `timestamp tx ty tz qx qy qz qw` per line."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write("# timestamp tx ty tz qx qy qz qw\n")
        for pose in poses:
            T = pose.as_matrix()
            w, x, y, z = rotmat2qvec(T[:3, :3])
            tx, ty, tz = T[:3, 3]
            f.write(f"{pose.timestamp:.6f} {tx:.6f} {ty:.6f} {tz:.6f} {x:.6f} {y:.6f} {z:.6f} {w:.6f}\n")
