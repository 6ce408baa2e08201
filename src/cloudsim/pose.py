"""
Camera pose and camera model.

Pose algebra for the virtual camera: composing yaw/pitch/roll and a position
into the homogeneous ``Twc``/``Tcw`` pair, projecting world points into the
camera frame, and the pinhole camera model used for the frustum test.

Conventions: camera +X right, +Y down, +Z forward. With zero angles the
camera looks down world +Z. ``R_wc = R_y(yaw) @ R_x(pitch) @ R_z(roll)``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import cv2
import numpy as np

from .utils import CloudSimError, ConfigError

LOGGER = logging.getLogger(__name__)


class InvalidPose(CloudSimError, ValueError):
    """Non-finite position or angle handed to the pose model."""


# ---------------------------------------------------------------------- #
# Rotation / transform algebra
# ---------------------------------------------------------------------- #
def rotation_yaw(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]], dtype=np.float64)


def rotation_pitch(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]], dtype=np.float64)


def rotation_roll(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]], dtype=np.float64)


def _check_finite(position: Sequence[float], yaw: float, pitch: float, roll: float):
    values = list(position) + [yaw, pitch, roll]
    if len(values) != 6:
        raise InvalidPose(f"position must have 3 components, got {len(values) - 3}")
    for v in values:
        try:
            ok = math.isfinite(float(v))
        except (TypeError, ValueError):
            ok = False
        if not ok:
            raise InvalidPose(f"non-finite pose component: {v!r}")


def rotation_from_euler(yaw: float, pitch: float, roll: float) -> np.ndarray:
    """Camera-to-world rotation, intrinsic yaw then pitch then roll."""
    return rotation_yaw(yaw) @ rotation_pitch(pitch) @ rotation_roll(roll)


def euler_from_rotation(R: np.ndarray) -> Tuple[float, float, float]:
    """Recover ``(yaw, pitch, roll)`` from a camera-to-world rotation.

    At pitch = +/-90 degrees yaw and roll are coupled; roll is reported as 0.
    """
    R = np.asarray(R, dtype=np.float64)
    cos_pitch = math.hypot(R[1, 0], R[1, 1])
    pitch = math.atan2(-R[1, 2], cos_pitch)

    if cos_pitch > 1e-9:
        yaw = math.atan2(R[0, 2], R[2, 2])
        roll = math.atan2(R[1, 0], R[1, 1])
    else:
        yaw = math.atan2(-R[2, 0], R[0, 0])
        roll = 0.0
    return yaw, pitch, roll


def invert_transform(T: np.ndarray) -> np.ndarray:
    """Inverse of a rigid 4x4 transform (rotation transpose, re-projected translation)."""
    R = T[:3, :3]
    t = T[:3, 3]
    inverse = np.eye(4, dtype=np.float64)
    inverse[:3, :3] = R.T
    inverse[:3, 3] = -R.T @ t
    return inverse


def compose_pose(
    position: Sequence[float],
    yaw: float,
    pitch: float,
    roll: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Build the ``(Twc, Tcw)`` pair for a camera pose.

    Args:
        position: Camera centre in world coordinates.
        yaw: Rotation about the vertical (camera Y) axis, radians.
        pitch: Rotation about the lateral (camera X) axis, radians.
        roll: Rotation about the forward (camera Z) axis, radians.

    Raises:
        InvalidPose: If any component is not finite.
    """
    _check_finite(position, yaw, pitch, roll)

    twc = np.eye(4, dtype=np.float64)
    twc[:3, :3] = rotation_from_euler(float(yaw), float(pitch), float(roll))
    twc[:3, 3] = np.asarray(position, dtype=np.float64).reshape(3)
    return twc, invert_transform(twc)


def project(tcw: np.ndarray, point: Sequence[float]) -> np.ndarray:
    """Camera-frame coordinates of a single world point."""
    homogeneous = np.append(np.asarray(point, dtype=np.float64).reshape(3), 1.0)
    return (tcw @ homogeneous)[:3]


def project_points(tcw: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Camera-frame coordinates of an Nx3 array of world points."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return points @ tcw[:3, :3].T + tcw[:3, 3]


# ---------------------------------------------------------------------- #
# World alignment transforms
# ---------------------------------------------------------------------- #
def load_transform(path) -> np.ndarray:
    """Read a 4x4 comma-separated matrix (one row per line).

    Raises:
        OSError: If the file cannot be read.
        ValueError: If it does not hold a 4x4 numeric matrix.
    """
    rows = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            rows.append([float(v) for v in line.split(",") if v.strip()])
            if len(rows) == 4:
                break

    matrix = np.array(rows, dtype=np.float64)
    if matrix.shape != (4, 4):
        raise ValueError(f"{path} does not contain a 4x4 matrix (got shape {matrix.shape})")
    LOGGER.debug("Loaded alignment transform from %s:\n%s", path, matrix)
    return matrix


def transform_points(T: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 transform to an Nx3 array of points."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    homogeneous = np.hstack((points, np.ones((len(points), 1))))
    transformed = homogeneous @ T.T
    return transformed[:, :3] / transformed[:, 3:4]


# ---------------------------------------------------------------------- #
# Pose value object
# ---------------------------------------------------------------------- #
@dataclass(frozen=True)
class CameraPose:
    """Virtual camera pose: centre in world coordinates plus yaw/pitch/roll (radians)."""

    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0

    def __post_init__(self):
        _check_finite(self.position, self.yaw, self.pitch, self.roll)
        object.__setattr__(self, "position", tuple(float(v) for v in self.position))

    @property
    def matrices(self) -> Tuple[np.ndarray, np.ndarray]:
        return compose_pose(self.position, self.yaw, self.pitch, self.roll)

    @property
    def twc(self) -> np.ndarray:
        return self.matrices[0]

    @property
    def tcw(self) -> np.ndarray:
        return self.matrices[1]

    @property
    def camera_center(self) -> np.ndarray:
        return np.array(self.position, dtype=np.float64)

    def moved(self, forward: float = 0.0, right: float = 0.0, up: float = 0.0) -> "CameraPose":
        """Translate along the camera's own axes."""
        R = rotation_from_euler(self.yaw, self.pitch, self.roll)
        offset = R @ np.array([right, -up, forward], dtype=np.float64)
        return CameraPose(tuple(self.camera_center + offset), self.yaw, self.pitch, self.roll)

    def rotated(self, d_yaw: float = 0.0, d_pitch: float = 0.0, d_roll: float = 0.0) -> "CameraPose":
        return CameraPose(self.position, self.yaw + d_yaw, self.pitch + d_pitch, self.roll + d_roll)

    @classmethod
    def from_matrix(cls, twc: np.ndarray) -> "CameraPose":
        yaw, pitch, roll = euler_from_rotation(twc[:3, :3])
        return cls(tuple(twc[:3, 3]), yaw, pitch, roll)

    def transformed(self, T: np.ndarray) -> "CameraPose":
        """Express this pose in the frame reached by applying ``T`` to the world.

        ``T`` may carry a uniform scale (as ICP/Sim3 alignments do); the scale
        moves the camera centre but is stripped from the rotation.
        """
        A = np.asarray(T, dtype=np.float64)[:3, :3]
        U, S, Vt = np.linalg.svd(A)
        rotation = U @ Vt
        if np.linalg.det(rotation) < 0:
            U[:, -1] *= -1
            rotation = U @ Vt
        twc = self.twc
        aligned = np.eye(4, dtype=np.float64)
        aligned[:3, :3] = rotation @ twc[:3, :3]
        aligned[:3, 3] = transform_points(T, twc[:3, 3])[0]
        return CameraPose.from_matrix(aligned)

    def as_dict(self) -> Dict:
        return {
            "position": list(self.position),
            "yaw": self.yaw,
            "pitch": self.pitch,
            "roll": self.roll,
        }


# ---------------------------------------------------------------------- #
# Camera model
# ---------------------------------------------------------------------- #
@dataclass
class CameraModel:
    """Pinhole intrinsics and image bounds used for the frustum test."""

    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int
    dist_coeffs: np.ndarray = field(default_factory=lambda: np.zeros((5, 1), dtype=np.float64))
    near_plane: float = 0.0
    far_plane: Optional[float] = None

    def __post_init__(self):
        self.dist_coeffs = np.asarray(self.dist_coeffs, dtype=np.float64).reshape(-1, 1)
        for name in ("fx", "fy", "width", "height"):
            if not getattr(self, name) > 0:
                raise ConfigError(f"camera {name} must be positive, got {getattr(self, name)!r}")

    @property
    def camera_matrix(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def project_to_image(self, points_cam: np.ndarray) -> np.ndarray:
        """Pixel coordinates (Nx2) of camera-frame points.

        Only meaningful for points with positive depth.
        """
        points_cam = np.asarray(points_cam, dtype=np.float64).reshape(-1, 3)
        if len(points_cam) == 0:
            return np.empty((0, 2), dtype=np.float64)
        image_points, _ = cv2.projectPoints(
            points_cam,
            np.zeros((3, 1), dtype=np.float64),
            np.zeros((3, 1), dtype=np.float64),
            self.camera_matrix,
            self.dist_coeffs,
        )
        return image_points.reshape(-1, 2)

    def in_frustum(self, points_cam: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Frustum mask for camera-frame points.

        Admission uses the undistorted pinhole projection; the distortion
        polynomial folds far off-axis points back into the image. Reported
        image points of admitted landmarks include lens distortion.

        Returns:
            (mask, image_points); image points of rejected points are NaN.
        """
        points_cam = np.asarray(points_cam, dtype=np.float64).reshape(-1, 3)
        depth = points_cam[:, 2]
        mask = (depth > 0.0) & (depth > self.near_plane)
        if self.far_plane is not None:
            mask &= depth <= self.far_plane

        image_points = np.full((len(points_cam), 2), np.nan, dtype=np.float64)
        if mask.any():
            indices = np.flatnonzero(mask)
            x, y, z = points_cam[indices].T
            u = self.fx * x / z + self.cx
            v = self.fy * y / z + self.cy
            inside = (u >= 0.0) & (u < self.width) & (v >= 0.0) & (v < self.height)
            mask[indices[~inside]] = False

            kept = indices[inside]
            if len(kept):
                image_points[kept] = self.project_to_image(points_cam[kept])
        return mask, image_points

    @classmethod
    def from_fov(cls, h_fov_deg: float, v_fov_deg: float, width: int = 640, height: int = 480) -> "CameraModel":
        """Model with the given full horizontal/vertical field of view."""
        if not (0.0 < h_fov_deg < 180.0 and 0.0 < v_fov_deg < 180.0):
            raise ConfigError("field of view must be in (0, 180) degrees")
        fx = (width / 2.0) / math.tan(math.radians(h_fov_deg) / 2.0)
        fy = (height / 2.0) / math.tan(math.radians(v_fov_deg) / 2.0)
        return cls(fx=fx, fy=fy, cx=width / 2.0, cy=height / 2.0, width=width, height=height)

    @classmethod
    def from_config(cls, config: Dict) -> "CameraModel":
        """Build from the ``camera`` section of the configuration."""
        settings_file = config.get("settings_file")
        if settings_file:
            model = cls.from_settings_file(settings_file)
            model.near_plane = float(config.get("near_plane") or 0.0)
            far = config.get("far_plane")
            model.far_plane = float(far) if far is not None else None
            return model

        try:
            far = config.get("far_plane")
            return cls(
                fx=float(config["fx"]),
                fy=float(config["fy"]),
                cx=float(config["cx"]),
                cy=float(config["cy"]),
                width=int(config["width"]),
                height=int(config["height"]),
                dist_coeffs=np.array(config.get("dist_coeffs") or [0.0] * 5, dtype=np.float64),
                near_plane=float(config.get("near_plane") or 0.0),
                far_plane=float(far) if far is not None else None,
            )
        except KeyError as e:
            raise ConfigError(f"Missing required camera key: {e.args[0]}") from None

    @classmethod
    def from_settings_file(cls, path) -> "CameraModel":
        """Read intrinsics from an ORB-SLAM style YAML settings file."""
        if not Path(path).exists():
            raise FileNotFoundError(f"Camera settings file not found: {path}")

        # OpenCV reports YAML syntax errors as cv2.error or SystemError
        try:
            storage = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
        except (cv2.error, SystemError) as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e
        if not storage.isOpened():
            raise ConfigError(f"Cannot parse {path}")

        def read(key, required=True):
            try:
                node = storage.getNode(key)
                if node.empty():
                    if required:
                        raise ConfigError(f"{path} is missing {key}")
                    return 0.0
                return node.real()
            except (cv2.error, SystemError) as e:
                raise ConfigError(f"Cannot parse {path}: {e}") from e

        try:
            model = cls(
                fx=read("Camera.fx"),
                fy=read("Camera.fy"),
                cx=read("Camera.cx"),
                cy=read("Camera.cy"),
                width=int(read("Camera.width")),
                height=int(read("Camera.height")),
                dist_coeffs=np.array(
                    [read(k, required=False) for k in ("Camera.k1", "Camera.k2", "Camera.p1", "Camera.p2")]
                    + [0.0],
                    dtype=np.float64,
                ),
            )
        finally:
            storage.release()

        LOGGER.info("Camera intrinsics loaded from %s:\n%s", path, model.camera_matrix)
        return model
