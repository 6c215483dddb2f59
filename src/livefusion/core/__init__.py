"""livefusion core: session runner, shared contracts, logging."""

from .contracts import CameraIntrinsics, CameraPose, FrameStats, SessionSummary
from .session_runner import load_fusion_config, run_session, save_outputs
from .logging import setup_logging

__all__ = [
    "CameraIntrinsics",
    "CameraPose",
    "FrameStats",
    "SessionSummary",
    "load_fusion_config",
    "run_session",
    "save_outputs",
    "setup_logging",
]
