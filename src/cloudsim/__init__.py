"""
cloudsim - SLAM point cloud visibility simulator.

This package provides functionality for:
- Loading/saving landmark clouds exported by a SLAM back end
- Camera pose composition and projection
- Frustum, distance-invariance and viewing-angle visibility queries
- Exploration sessions that accumulate newly seen landmarks
"""

from .mapping import (
    Landmark,
    LandmarkSet,
    LoadReport,
    MalformedRecord,
    Observation,
    PointCloudStore,
    read_landmarks,
    write_landmarks,
)
from .pose import (
    CameraModel,
    CameraPose,
    InvalidPose,
    compose_pose,
    load_transform,
    project,
    transform_points,
)
from .visibility import VisibilityConfig, VisibilityEngine, VisiblePoint
from .exploration import (
    ExplorationAccumulator,
    SessionClosed,
    SessionState,
    StepResult,
    apply_key,
    load_trajectory,
    poses_from_keys,
    save_trajectory,
)
from .utils import CloudSimError, ConfigError

__version__ = "0.1.0"

__all__ = [
    # Point cloud store
    "Landmark",
    "LandmarkSet",
    "LoadReport",
    "MalformedRecord",
    "Observation",
    "PointCloudStore",
    "read_landmarks",
    "write_landmarks",
    # Pose
    "CameraModel",
    "CameraPose",
    "InvalidPose",
    "compose_pose",
    "load_transform",
    "project",
    "transform_points",
    # Visibility
    "VisibilityConfig",
    "VisibilityEngine",
    "VisiblePoint",
    # Exploration
    "ExplorationAccumulator",
    "SessionClosed",
    "SessionState",
    "StepResult",
    "apply_key",
    "load_trajectory",
    "poses_from_keys",
    "save_trajectory",
    # Errors
    "CloudSimError",
    "ConfigError",
]
