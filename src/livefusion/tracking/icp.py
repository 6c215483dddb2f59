"""Coarse-to-fine projective ICP with point-to-plane residuals."""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from livefusion.preprocess.contracts import DepthPyramid
from livefusion.utils.geometry import exp_se3, rotate_vectors, rotation_angle_deg, transform_points
from ._reduction import associate, build_normal_equations
from .config import IcpConfig
from .contracts import TrackingResult, TrackingStatus

logger = logging.getLogger(__name__)

# RMS below this (meters) is converged; growth relative to it is noise
_RMS_FLOOR = 1e-3


class PoseTracker:
    """Aligns a live pyramid to a model pyramid rendered at the previous pose."""

    def __init__(self, config: IcpConfig):
        self.config = config

    def estimate_pose(
        self,
        live: DepthPyramid,
        model: DepthPyramid,
        pose_guess: np.ndarray | None = None,
    ) -> TrackingResult:
        """Estimate the live-to-model camera transform.

        Starts at the coarsest level shared by both pyramids and the iteration
        schedule; each level's result seeds the next finer one.
        """
        cfg = self.config
        T = np.eye(4) if pose_guess is None else np.array(pose_guess, dtype=np.float64)
        cos_threshold = math.cos(math.radians(cfg.angle_threshold_deg))
        n_levels = min(len(live), len(model), len(cfg.iterations))

        total_iters = 0
        count = 0
        rms = float("nan")

        for level in reversed(range(n_levels)):
            iters = cfg.iterations[level]
            if iters <= 0:
                continue
            lv = live[level]
            valid = lv.valid
            pts = lv.points[valid].astype(np.float64)
            nrm = lv.normals[valid].astype(np.float64)
            min_corr = max(6, cfg.min_correspondences // 4 ** level)
            best_rms = math.inf

            for _ in range(iters):
                src, dst, dst_n = associate(
                    transform_points(T, pts),
                    rotate_vectors(T, nrm),
                    model[level],
                    cfg.dist_threshold,
                    cos_threshold,
                )
                eq = build_normal_equations(src, dst, dst_n)
                count = eq.count
                if count < min_corr:
                    return self._failed(
                        f"level {level}: {count} correspondences (< {min_corr})", count, rms, total_iters
                    )

                rms = eq.rms
                if rms > cfg.max_residual_growth * max(best_rms, _RMS_FLOOR):
                    return self._failed(
                        f"level {level}: residual diverged ({rms:.4f} m)", count, rms, total_iters
                    )
                best_rms = min(best_rms, rms)

                xi = self._solve(eq.A, eq.b)
                if xi is None:
                    return self._failed(f"level {level}: ill-conditioned system", count, rms, total_iters)

                T = exp_se3(xi) @ T
                total_iters += 1

            logger.debug(f"ICP level {level}: {count} correspondences, rms {rms * 1000:.2f} mm")

        translation = float(np.linalg.norm(T[:3, 3]))
        rotation = rotation_angle_deg(T[:3, :3])
        if translation > cfg.max_translation or rotation > cfg.max_rotation_deg:
            return self._failed(
                f"implausible motion ({translation:.3f} m, {rotation:.1f} deg)", count, rms, total_iters
            )

        return TrackingResult(
            status=TrackingStatus.SUCCESS,
            transform=T,
            num_correspondences=count,
            rms_error=rms,
            iterations=total_iters,
        )

    def _solve(self, A: np.ndarray, b: np.ndarray) -> np.ndarray | None:
        if not (np.all(np.isfinite(A)) and np.all(np.isfinite(b))):
            return None
        if np.linalg.cond(A) > self.config.max_condition_number:
            return None
        try:
            xi = cho_solve(cho_factor(A), b)
        except LinAlgError:
            return None
        return xi if np.all(np.isfinite(xi)) else None

    @staticmethod
    def _failed(reason: str, count: int, rms: float, iterations: int) -> TrackingResult:
        logger.debug(f"ICP failed: {reason}")
        return TrackingResult(
            status=TrackingStatus.FAILED,
            transform=None,
            reason=reason,
            num_correspondences=count,
            rms_error=rms,
            iterations=iterations,
        )
