"""
Visibility engine.

Classifies every landmark of a :class:`~cloudsim.mapping.LandmarkSet` as
visible or not from a camera pose, using the same three admissibility tests
the SLAM tracker applies before matching a map point:

1. Frustum: positive depth and a pinhole projection inside the image.
2. Distance invariance: camera-to-point distance inside
   ``[min_distance, max_distance]``.
3. Viewing angle: angle between the landmark normal and the direction from
   the landmark to the camera at most ``max_view_angle_deg``. A zero normal
   (never assigned statistics) always passes.

The engine holds no per-query state; results come back in landmark-set order.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .mapping import Landmark, LandmarkSet, Observation
from .pose import CameraModel, CameraPose, invert_transform, project_points

LOGGER = logging.getLogger(__name__)


@dataclass
class VisibilityConfig:
    """Configuration for the admissibility tests."""

    max_view_angle_deg: float = 60.0  # ORB-SLAM's viewing cosine limit of 0.5
    # False for normals stored as the mean camera->point direction (raw ORB-SLAM export)
    normal_points_to_camera: bool = True

    @property
    def view_cosine_limit(self) -> float:
        return math.cos(math.radians(self.max_view_angle_deg))

    @classmethod
    def from_config(cls, config: dict) -> "VisibilityConfig":
        return cls(
            max_view_angle_deg=float(config.get("max_view_angle_deg", 60.0)),
            normal_points_to_camera=bool(config.get("normal_points_to_camera", True)),
        )


@dataclass(frozen=True, eq=False)
class VisiblePoint:
    """A landmark admitted by all three tests for one query."""

    landmark: Landmark
    camera_point: np.ndarray  # camera-frame (x, y, z)
    image_point: np.ndarray  # pixel (u, v)
    distance: float
    view_cosine: Optional[float]  # None when the normal is unknown
    representative: Optional[Observation] = None

    @property
    def landmark_id(self) -> int:
        return self.landmark.id


@dataclass
class VisibilityMasks:
    """Per-landmark outcome of each test, aligned with the landmark set."""

    in_frustum: np.ndarray
    in_range: np.ndarray
    in_view_angle: np.ndarray
    camera_points: np.ndarray
    image_points: np.ndarray
    distances: np.ndarray
    view_cosines: np.ndarray

    @property
    def visible(self) -> np.ndarray:
        return self.in_frustum & self.in_range & self.in_view_angle

    def counts(self) -> dict:
        return {
            "total": int(len(self.in_frustum)),
            "in_frustum": int(self.in_frustum.sum()),
            "in_range": int((self.in_frustum & self.in_range).sum()),
            "visible": int(self.visible.sum()),
        }


def select_representative(observations: Sequence[Observation]) -> Optional[Observation]:
    """Most recent observation: highest frame id, later entry on ties."""
    best = None
    for obs in observations:
        if best is None or obs.frame_id >= best.frame_id:
            best = obs
    return best


class VisibilityEngine:
    """
    Pose-to-visible-subset classifier.

    Stateless apart from its camera model and config, so one engine can
    serve concurrent read-only queries on a shared landmark set.
    """

    def __init__(self, camera: CameraModel, config: Optional[VisibilityConfig] = None):
        self.camera = camera
        self.config = config or VisibilityConfig()

    def classify(
        self,
        landmarks: LandmarkSet,
        tcw: np.ndarray,
        camera_center: Optional[np.ndarray] = None,
    ) -> VisibilityMasks:
        """Run the three tests and return every intermediate mask.

        Distance and angle are only evaluated for landmarks that passed the
        frustum test; the rest are reported as failing them.
        """
        tcw = np.asarray(tcw, dtype=np.float64)
        if camera_center is None:
            camera_center = invert_transform(tcw)[:3, 3]
        camera_center = np.asarray(camera_center, dtype=np.float64).reshape(3)

        n = len(landmarks)
        camera_points = project_points(tcw, landmarks.positions)
        in_frustum, image_points = self.camera.in_frustum(camera_points)

        in_range = np.zeros(n, dtype=bool)
        in_view_angle = np.zeros(n, dtype=bool)
        distances = np.full(n, np.nan, dtype=np.float64)
        view_cosines = np.full(n, np.nan, dtype=np.float64)

        candidates = np.flatnonzero(in_frustum)
        if len(candidates):
            to_camera = camera_center - landmarks.positions[candidates]
            dist = np.linalg.norm(to_camera, axis=1)
            distances[candidates] = dist

            in_range[candidates] = (
                (dist >= landmarks.min_distances[candidates])
                & (dist <= landmarks.max_distances[candidates])
            )

            normals = landmarks.normals[candidates]
            if not self.config.normal_points_to_camera:
                normals = -normals
            normal_norm = np.linalg.norm(normals, axis=1)
            known = normal_norm > 0.0

            with np.errstate(invalid="ignore", divide="ignore"):
                cosines = np.einsum("ij,ij->i", normals, to_camera) / (normal_norm * dist)
            # Camera sitting on the point: direction undefined, only the distance test applies
            cosines = np.where(dist > 0.0, cosines, 1.0)
            cosines = np.clip(cosines, -1.0, 1.0)

            view_cosines[candidates] = np.where(known, cosines, np.nan)
            in_view_angle[candidates] = ~known | (cosines >= self.config.view_cosine_limit)

        return VisibilityMasks(
            in_frustum=in_frustum,
            in_range=in_range,
            in_view_angle=in_view_angle,
            camera_points=camera_points,
            image_points=image_points,
            distances=distances,
            view_cosines=view_cosines,
        )

    def query(
        self,
        landmarks: LandmarkSet,
        tcw: np.ndarray,
        camera_center: Optional[np.ndarray] = None,
    ) -> List[VisiblePoint]:
        """Landmarks visible from ``tcw``, in landmark-set order."""
        if len(landmarks) == 0:
            return []

        masks = self.classify(landmarks, tcw, camera_center)
        visible = []
        for i in np.flatnonzero(masks.visible):
            landmark = landmarks[int(i)]
            cosine = masks.view_cosines[i]
            visible.append(
                VisiblePoint(
                    landmark=landmark,
                    camera_point=masks.camera_points[i].copy(),
                    image_point=masks.image_points[i].copy(),
                    distance=float(masks.distances[i]),
                    view_cosine=None if np.isnan(cosine) else float(cosine),
                    representative=select_representative(landmark.observations),
                )
            )

        LOGGER.debug(
            "Query: %d/%d visible (%d in frustum)",
            len(visible), len(landmarks), int(masks.in_frustum.sum()),
        )
        return visible

    def query_pose(self, landmarks: LandmarkSet, pose: CameraPose) -> List[VisiblePoint]:
        return self.query(landmarks, pose.tcw, pose.camera_center)
