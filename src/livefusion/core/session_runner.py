"""Session orchestrator: reads fusion.yaml and feeds a frame source through the pipeline."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from livefusion.pipeline.contracts import FrameStatus
from .contracts import CameraPose, FrameStats, SessionSummary

if TYPE_CHECKING:
    from livefusion.capture.contracts import FrameSource
    from livefusion.pipeline.config import FusionConfig
    from livefusion.pipeline.fusion import FusionPipeline

logger = logging.getLogger(__name__)

_LOST_STATUSES = (FrameStatus.TRACKING_LOST.value, FrameStatus.RESET.value)


def load_fusion_config(config_path: Path) -> FusionConfig:
    """Load and validate fusion.yaml."""
    from livefusion.pipeline.config import FusionConfig

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")
    with open(config_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return FusionConfig(**raw)


def save_fusion_config(config_path: Path, config: FusionConfig) -> None:
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.model_dump(mode="json"), f, sort_keys=False)


def run_session(
    pipeline: FusionPipeline,
    source: FrameSource,
    max_frames: int | None = None,
) -> SessionSummary:
    """Step every frame of `source` through `pipeline`, then terminate it.

    Stops when the source is exhausted (`grab()` returns None), after
    `max_frames` grabs, or on Ctrl-C. Frames the sensor missed (no depth) are
    passed on as such and counted, but get no stats or trajectory entry. The
    model stays available afterwards.
    """
    frames: list[FrameStats] = []
    trajectory: list[CameraPose] = []
    missed = 0
    t_start = time.perf_counter()

    try:
        while max_frames is None or len(frames) + missed < max_frames:
            frame = source.grab()
            if frame is None:
                logger.info("Frame source exhausted")
                break
            result = pipeline.step_frame(frame.depth, frame.color)
            if result.status is FrameStatus.NO_FRAME:
                missed += 1
                continue
            frames.append(FrameStats(
                frame_index=result.index,
                status=result.status.value,
                elapsed_ms=result.elapsed_ms,
                params={"integrated": result.integrated},
            ))
            trajectory.append(CameraPose.from_matrix(
                frame.name or f"frame_{frame.index:05d}", result.pose, timestamp=frame.timestamp
            ))
            if len(frames) % 10 == 0:
                logger.info(f"Processed {len(frames)} frames (state: {pipeline.state})")
    except KeyboardInterrupt:
        logger.warning(f"Interrupted after {len(frames)} frames")

    pipeline.terminate()
    elapsed = time.perf_counter() - t_start
    summary = SessionSummary(
        num_frames=len(frames),
        num_integrated=sum(1 for f in frames if f.params["integrated"]),
        num_tracking_lost=sum(1 for f in frames if f.status in _LOST_STATUSES),
        num_missed=missed,
        mean_frame_ms=(sum(f.elapsed_ms for f in frames) / len(frames)) if frames else 0.0,
        final_state=pipeline.state,
        trajectory=trajectory,
        frames=frames,
    )
    logger.info(
        f"Session complete in {elapsed:.1f}s: {summary.num_frames} frames, "
        f"{summary.num_integrated} integrated, {summary.num_tracking_lost} lost, {missed} missed"
    )
    return summary


def save_outputs(
    pipeline: FusionPipeline,
    summary: SessionSummary,
    output_dir: Path,
    mesh: bool = False,
) -> dict[str, Path]:
    """Write cloud.ply, trajectory.txt, summary.json and optionally mesh.ply."""
    from livefusion.utils.io import write_point_cloud, write_trajectory

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written: dict[str, Path] = {}

    extraction = pipeline.extract_cloud()
    cloud_path = output_dir / "cloud.ply"
    write_point_cloud(cloud_path, extraction.cloud)
    written["cloud"] = cloud_path

    trajectory_path = output_dir / "trajectory.txt"
    write_trajectory(trajectory_path, summary.trajectory)
    written["trajectory"] = trajectory_path

    summary_path = output_dir / "summary.json"
    summary_path.write_text(summary.model_dump_json(indent=2), encoding="utf-8")
    written["summary"] = summary_path

    if mesh:
        from livefusion.utils.meshing import reconstruct_mesh, write_mesh

        if len(extraction.cloud) < 3:
            logger.warning("Too few surface points for meshing, skipping mesh")
        else:
            mesh_path = output_dir / "mesh.ply"
            if write_mesh(mesh_path, reconstruct_mesh(extraction.cloud)):
                written["mesh"] = mesh_path

    logger.info(f"Saved outputs to {output_dir}")
    return written
