"""Per-frame orchestration: preprocess, ray-cast reference, track, integrate."""

from __future__ import annotations

import logging
import time

import numpy as np
from scipy.spatial.transform import Rotation

from livefusion.core.contracts import CameraIntrinsics
from livefusion.preprocess.pyramid import DepthPreprocessor, pyramid_from_render
from livefusion.raycast.contracts import RenderResult
from livefusion.raycast.raycaster import RayCaster
from livefusion.tracking.icp import PoseTracker
from livefusion.utils.geometry import orthonormalize
from livefusion.volume.contracts import ExtractionResult
from livefusion.volume.tsdf import TsdfVolume
from .config import FusionConfig
from .contracts import FrameResult, FrameStatus
from .session import FusionSession

logger = logging.getLogger(__name__)


class FusionPipeline:
    """Owns the volume and the running session for one capture.

    Frames are processed strictly one after another; `step_frame` returns
    once the frame is fused or tracking has been declared lost.
    """

    def __init__(self, config: FusionConfig | None = None):
        self.config = config or FusionConfig()
        self.intrinsics = self.config.intrinsics
        self.volume = TsdfVolume(self.config.volume)
        self.preprocessor = DepthPreprocessor(self.config.preprocess, self.intrinsics)
        self.tracker = PoseTracker(self.config.icp)
        self.raycaster = RayCaster(self.config.raycast)
        self.session = FusionSession.start(self.config.first_pose())
        self._reference: RenderResult | None = None
        self._reference_key: tuple[int, bytes] | None = None
        self._trajectory: list[np.ndarray] = []

    # -- queries ------------------------------------------------------------

    @property
    def state(self) -> str:
        return self.session.state

    def get_pose(self) -> np.ndarray:
        """Current camera-to-world pose (last known good)."""
        return self.session.pose.copy()

    def get_reference_render(self) -> RenderResult | None:
        """Latest ray-cast used as the tracking reference, if any."""
        return self._reference

    @property
    def trajectory(self) -> list[np.ndarray]:
        """Per-frame poses of the current capture (cleared by `reset`)."""
        return [p.copy() for p in self._trajectory]

    def render_view(
        self, pose: np.ndarray | None = None, intrinsics: CameraIntrinsics | None = None
    ) -> RenderResult:
        """Ray-cast the model from any viewpoint (default: the current pose)."""
        pose = self.get_pose() if pose is None else np.asarray(pose, dtype=np.float64)
        return self.raycaster.render(self.volume, pose, intrinsics or self.intrinsics)

    def extract_cloud(self, capacity: int | None = None) -> ExtractionResult:
        result = self.volume.extract_points(capacity)
        logger.info(f"Extracted {result.count:,} surface points")
        return result

    # -- per frame ----------------------------------------------------------

    def step_frame(self, depth: np.ndarray | None, color: np.ndarray | None = None) -> FrameResult:
        """Process one sensor frame. `depth=None` means no frame was available."""
        if self.session.state == "terminated":
            raise RuntimeError("Cannot process frames after terminate()")

        index = self.session.frame_index
        if depth is None:
            logger.debug(f"Frame {index}: no frame available")
            return FrameResult(index=index, status=FrameStatus.NO_FRAME, pose=self.get_pose())

        t0 = time.perf_counter()
        live = self.preprocessor.build_pyramid(depth)

        if self.session.state == "uninitialized":
            updated = self.volume.integrate(live.depth, self.intrinsics, self.session.pose, color)
            if updated == 0:
                self.session = self.session.skipped()
                logger.warning(f"Frame {index}: no usable depth inside the volume, waiting for a first frame")
                return FrameResult(
                    index=index,
                    status=FrameStatus.SKIPPED,
                    pose=self.get_pose(),
                    elapsed_ms=(time.perf_counter() - t0) * 1000.0,
                )
            self.session = self.session.initialized()
            self._trajectory.append(self.get_pose())
            logger.info(f"Frame {index}: volume initialised ({live[0].num_valid} valid pixels)")
            return FrameResult(
                index=index,
                status=FrameStatus.INITIALIZED,
                pose=self.get_pose(),
                integrated=True,
                elapsed_ms=(time.perf_counter() - t0) * 1000.0,
            )

        reference = self._render_reference(self.session.pose)
        model = pyramid_from_render(
            reference.points, reference.normals, self.intrinsics, self.config.preprocess.levels
        )
        tracking = self.tracker.estimate_pose(live, model)
        integrated = False

        if tracking.ok:
            delta = tracking.transform
            pose = orthonormalize(self.session.pose @ delta)
            integrated = self._moved_enough(delta)
            if integrated:
                self.volume.integrate(live.depth, self.intrinsics, pose, color)
            self.session = self.session.tracked(pose, integrated)
            self._trajectory.append(self.get_pose())
            status = FrameStatus.TRACKED
            logger.debug(
                f"Frame {index}: tracked ({tracking.num_correspondences} corr, "
                f"rms {tracking.rms_error * 1000:.2f} mm, integrated={integrated})"
            )
        else:
            self.session = self.session.lost()
            self._trajectory.append(self.get_pose())
            status = FrameStatus.TRACKING_LOST
            logger.warning(f"Frame {index}: tracking lost ({tracking.reason})")
            limit = self.config.max_lost_frames
            if limit and self.session.lost_frames >= limit:
                logger.warning(f"{self.session.lost_frames} consecutive failures, restarting capture")
                self.reset()
                status = FrameStatus.RESET

        return FrameResult(
            index=index,
            status=status,
            pose=self.get_pose(),
            integrated=integrated,
            tracking=tracking,
            elapsed_ms=(time.perf_counter() - t0) * 1000.0,
        )

    # -- lifecycle ----------------------------------------------------------

    def reset(self) -> None:
        """Start a new capture: clear the volume, the pose and the trajectory.

        Frame indices and the integrated/lost counters keep counting.
        """
        self.volume.reset()
        self.session = self.session.restarted(self.config.first_pose())
        self._trajectory.clear()
        self._reference = None
        self._reference_key = None
        logger.info("Fusion session reset")

    def terminate(self) -> None:
        """Stop accepting frames. The model stays available for extraction."""
        self.session = self.session.terminated()
        logger.info(
            f"Session terminated after {self.session.frame_index} frames "
            f"({self.session.num_integrated} integrated, {self.session.num_tracking_lost} lost)"
        )

    # -- internals ----------------------------------------------------------

    def _render_reference(self, pose: np.ndarray) -> RenderResult:
        """Ray-cast at `pose`, reused while neither the volume nor the pose changed."""
        key = (self.volume.version, np.ascontiguousarray(pose).tobytes())
        if self._reference is None or self._reference_key != key:
            self._reference = self.raycaster.render(self.volume, pose, self.intrinsics)
            self._reference_key = key
        return self._reference

    def _moved_enough(self, delta: np.ndarray) -> bool:
        threshold = self.config.min_camera_movement
        if threshold <= 0:
            return True
        rnorm = float(np.linalg.norm(Rotation.from_matrix(delta[:3, :3]).as_rotvec()))
        tnorm = float(np.linalg.norm(delta[:3, 3]))
        return (rnorm + tnorm) / 2.0 >= threshold
