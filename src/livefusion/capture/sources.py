"""Recorded frame sources."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from livefusion.core.contracts import CameraIntrinsics
from livefusion.utils.io import load_color_image, load_depth_image
from .contracts import Frame

logger = logging.getLogger(__name__)

DEPTH_SUFFIXES = (".png", ".npy", ".tif", ".tiff")
COLOR_SUFFIXES = (".png", ".jpg", ".jpeg")


class DirectorySource:
    """Replays a recorded sequence from disk.

    Layout::

        frames_dir/
            depth/ 000000.png ...   (16-bit depth or .npy; or directly in frames_dir)
            color/ 000000.png ...   (optional, paired by sorted order)
            intrinsics.json         (optional: fx, fy, cx, cy, width, height)
    """

    def __init__(
        self,
        frames_dir: Path,
        intrinsics: CameraIntrinsics | None = None,
        max_frames: int | None = None,
    ):
        self.frames_dir = Path(frames_dir)
        if not self.frames_dir.is_dir():
            raise FileNotFoundError(f"Frame directory not found: {self.frames_dir}")

        depth_dir = self.frames_dir / "depth"
        if not depth_dir.is_dir():
            depth_dir = self.frames_dir
        self.depth_files = sorted(p for p in depth_dir.iterdir() if p.suffix.lower() in DEPTH_SUFFIXES)
        if max_frames is not None:
            self.depth_files = self.depth_files[:max_frames]
        if not self.depth_files:
            raise FileNotFoundError(f"No depth frames in {depth_dir}")

        color_dir = self.frames_dir / "color"
        self.color_files: list[Path] = []
        if color_dir.is_dir():
            self.color_files = sorted(p for p in color_dir.iterdir() if p.suffix.lower() in COLOR_SUFFIXES)
            if len(self.color_files) != len(self.depth_files):
                logger.warning(
                    f"{len(self.color_files)} color vs {len(self.depth_files)} depth frames; pairing by order"
                )

        self.intrinsics = intrinsics or self._read_intrinsics()
        self._cursor = 0
        logger.info(f"DirectorySource: {len(self.depth_files)} frames from {self.frames_dir}")

    def __len__(self) -> int:
        return len(self.depth_files)

    def _read_intrinsics(self) -> CameraIntrinsics:
        path = self.frames_dir / "intrinsics.json"
        if not path.exists():
            logger.warning(f"{path} missing, using default intrinsics")
            return CameraIntrinsics()
        with open(path, encoding="utf-8") as f:
            return CameraIntrinsics(**json.load(f))

    def grab(self) -> Frame | None:
        if self._cursor >= len(self.depth_files):
            return None
        i = self._cursor
        self._cursor += 1
        depth_path = self.depth_files[i]
        color = load_color_image(self.color_files[i]) if i < len(self.color_files) else None
        return Frame(index=i, depth=load_depth_image(depth_path), color=color, name=depth_path.stem)
