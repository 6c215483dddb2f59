"""End-to-end fusion over a synthetic orbit: tracking, drift and surface accuracy."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pytest

from livefusion.capture.synthetic import SyntheticSource
from livefusion.core.session_runner import run_session, save_outputs
from livefusion.pipeline.fusion import FusionPipeline
from livefusion.utils.geometry import pose_distance
from livefusion.utils.io import read_ply_points

logger = logging.getLogger(__name__)


@pytest.mark.e2e
def test_orbit_e2e(fusion_config, scene, orbit, small_intrinsics, tmp_path: Path):
    """Fuse a 20-frame orbit, then check the trajectory and the reconstructed surface."""
    pipeline = FusionPipeline(fusion_config)
    source = SyntheticSource(scene, orbit, small_intrinsics)
    summary = run_session(pipeline, source)

    # ========== Tracking ==========
    assert summary.num_frames == len(orbit)
    assert summary.num_tracking_lost == 0, [f.status for f in summary.frames]
    assert summary.frames[0].status == "initialized"
    assert all(f.status == "tracked" for f in summary.frames[1:])

    for estimated, truth in zip(summary.trajectory, orbit):
        dist_m, angle_deg = pose_distance(estimated.as_matrix(), truth)
        assert dist_m < 0.05, f"{estimated.frame_name}: {dist_m * 100:.1f} cm"
        assert angle_deg < 3.0, f"{estimated.frame_name}: {angle_deg:.2f} deg"

    # ========== Surface ==========
    cloud = pipeline.extract_cloud().cloud
    assert len(cloud) > 1000
    err = np.abs(scene.sdf(cloud.points))
    logger.info(f"Surface error: median {np.median(err) * 1000:.1f} mm, p90 {np.percentile(err, 90) * 1000:.1f} mm")
    assert np.median(err) < 0.01
    assert np.percentile(err, 90) < 0.025

    # ========== Outputs ==========
    written = save_outputs(pipeline, summary, tmp_path / "out")
    assert len(read_ply_points(written["cloud"])) == len(cloud)
    assert len(written["trajectory"].read_text().strip().splitlines()) == len(orbit) + 1
