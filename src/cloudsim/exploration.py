"""
Exploration sessions over a landmark set.

An :class:`ExplorationAccumulator` steps a virtual camera through a sequence
of poses (keyboard-style motion or a recorded trajectory), queries the
visibility engine at each one and keeps the running split between landmarks
already seen and landmarks seen for the first time. Deduplication is by
landmark id, never by coordinates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .mapping import LandmarkSet
from .pose import CameraPose
from .utils import CloudSimError
from .visibility import VisibilityEngine, VisiblePoint

LOGGER = logging.getLogger(__name__)


class SessionClosed(CloudSimError, RuntimeError):
    """``step`` called on a finished session without a ``reset``."""


class SessionState(Enum):
    """Lifecycle of an exploration session."""
    IDLE = "idle"  # no pose issued yet
    ACTIVE = "active"
    FINISHED = "finished"


@dataclass
class StepResult:
    """Outcome of one exploration step."""

    index: int
    pose: CameraPose
    visible: List[VisiblePoint]
    newly_visible: List[VisiblePoint]
    cumulative_seen: Tuple[int, ...]  # landmark ids, first-seen order

    @property
    def new_count(self) -> int:
        return len(self.newly_visible)

    @property
    def total_seen(self) -> int:
        return len(self.cumulative_seen)


class ExplorationAccumulator:
    """
    Session-scoped seen/unseen bookkeeping.

    Owned by a single driving loop; ``step`` must not be called concurrently
    on the same instance.
    """

    def __init__(self, landmarks: LandmarkSet, engine: VisibilityEngine):
        self.landmarks = landmarks
        self.engine = engine

        self.state = SessionState.IDLE
        self._seen_order: List[int] = []
        self._seen: Set[int] = set()
        self._last_new: Tuple[int, ...] = ()
        self.step_count = 0

        self.stats = {
            "steps": 0,
            "visible_total": 0,
            "sessions": 0,
        }

    @property
    def seen_ids(self) -> Tuple[int, ...]:
        return tuple(self._seen_order)

    def step(self, pose: CameraPose) -> StepResult:
        """Query ``pose`` and fold the visible landmarks into the seen set.

        Raises:
            SessionClosed: If the session was finished and not reset.
        """
        if self.state is SessionState.FINISHED:
            raise SessionClosed("Session is finished; call reset() before stepping again")

        visible = self.engine.query_pose(self.landmarks, pose)

        if self.state is SessionState.IDLE:
            self.state = SessionState.ACTIVE
            self.stats["sessions"] += 1
            LOGGER.info("Exploration session started at %s", pose.as_dict())

        newly_visible = []
        for point in visible:
            if point.landmark_id not in self._seen:
                self._seen.add(point.landmark_id)
                self._seen_order.append(point.landmark_id)
                newly_visible.append(point)
        self._last_new = tuple(p.landmark_id for p in newly_visible)

        result = StepResult(
            index=self.step_count,
            pose=pose,
            visible=visible,
            newly_visible=newly_visible,
            cumulative_seen=tuple(self._seen_order),
        )
        self.step_count += 1
        self.stats["steps"] += 1
        self.stats["visible_total"] += len(visible)

        LOGGER.debug(
            "Step %d: visible %d, new %d, total %d",
            result.index, len(visible), result.new_count, result.total_seen,
        )
        return result

    def replay(self, poses: Iterable[CameraPose]) -> Iterator[StepResult]:
        """Step through ``poses`` in order, yielding each result."""
        for pose in poses:
            yield self.step(pose)

    def finish(self):
        """End the session; further steps are rejected until ``reset``."""
        if self.state is not SessionState.FINISHED:
            LOGGER.info(
                "Exploration session finished after %d steps, %d landmarks seen",
                self.step_count, len(self._seen_order),
            )
        self.state = SessionState.FINISHED

    def reset(self):
        """Clear the seen set and return to IDLE."""
        self._seen.clear()
        self._seen_order.clear()
        self._last_new = ()
        self.step_count = 0
        self.state = SessionState.IDLE
        LOGGER.info("Exploration session reset")

    def seen_landmarks(self) -> LandmarkSet:
        """Every landmark seen so far, in first-seen order."""
        return LandmarkSet(self.landmarks.get(i) for i in self._seen_order)

    def new_landmarks(self) -> LandmarkSet:
        """Landmarks first seen on the most recent step."""
        return LandmarkSet(self.landmarks.get(i) for i in self._last_new)

    def get_statistics(self) -> Dict:
        total = len(self.landmarks)
        return {
            **self.stats,
            "state": self.state.value,
            "current_steps": self.step_count,
            "seen": len(self._seen_order),
            "unseen": total - len(self._seen_order),
            "coverage": len(self._seen_order) / total if total else 0.0,
        }


# ---------------------------------------------------------------------- #
# Key-driven motion
# ---------------------------------------------------------------------- #
KEY_BINDINGS: Dict[str, str] = {
    "a": "yaw left",
    "d": "yaw right",
    "w": "pitch up",
    "s": "pitch down",
    "i": "move forward",
    "k": "move backward",
    "j": "move left",
    "l": "move right",
    "r": "move up",
    "f": "move down",
}


def apply_key(pose: CameraPose, key: str, rotate_scale: float, moving_scale: float) -> CameraPose:
    """Pose reached by pressing ``key`` once; unknown keys leave it unchanged."""
    if key == "a":
        return pose.rotated(d_yaw=-rotate_scale)
    if key == "d":
        return pose.rotated(d_yaw=rotate_scale)
    if key == "w":
        return pose.rotated(d_pitch=rotate_scale)
    if key == "s":
        return pose.rotated(d_pitch=-rotate_scale)
    if key == "i":
        return pose.moved(forward=moving_scale)
    if key == "k":
        return pose.moved(forward=-moving_scale)
    if key == "j":
        return pose.moved(right=-moving_scale)
    if key == "l":
        return pose.moved(right=moving_scale)
    if key == "r":
        return pose.moved(up=moving_scale)
    if key == "f":
        return pose.moved(up=-moving_scale)
    return pose


def poses_from_keys(
    start: CameraPose,
    keys: str,
    rotate_scale: float,
    moving_scale: float,
    include_start: bool = True,
) -> List[CameraPose]:
    """Expand a key script into the poses visited, one per key."""
    poses = [start] if include_start else []
    pose = start
    for key in keys:
        if key not in KEY_BINDINGS:
            LOGGER.debug("Ignoring unbound key %r", key)
            continue
        pose = apply_key(pose, key, rotate_scale, moving_scale)
        poses.append(pose)
    return poses


# ---------------------------------------------------------------------- #
# Recorded trajectories
# ---------------------------------------------------------------------- #
def load_trajectory(path) -> List[CameraPose]:
    """Read ``x,y,z,yaw,pitch,roll`` rows (radians).

    Blank lines, ``#`` comments and a non-numeric header row are skipped.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If a data row is malformed.
    """
    poses = []
    with open(path, "r", encoding="utf-8") as f:
        for line_number, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            fields = [v.strip() for v in line.split(",")]
            try:
                values = [float(v) for v in fields]
            except ValueError:
                if not poses and line_number == 1:
                    continue  # header
                raise ValueError(f"{path}:{line_number}: non-numeric trajectory row") from None
            if len(values) != 6:
                raise ValueError(
                    f"{path}:{line_number}: expected 6 fields (x,y,z,yaw,pitch,roll), got {len(values)}"
                )
            poses.append(CameraPose(tuple(values[:3]), values[3], values[4], values[5]))

    LOGGER.info("Loaded trajectory with %d poses from %s", len(poses), path)
    return poses


def save_trajectory(poses: Iterable[CameraPose], path):
    """Write poses in the format read by :func:`load_trajectory`."""
    count = 0
    with open(path, "w", encoding="utf-8") as f:
        f.write("x,y,z,yaw,pitch,roll\n")
        for pose in poses:
            values = list(pose.position) + [pose.yaw, pose.pitch, pose.roll]
            f.write(",".join(repr(float(v)) for v in values) + "\n")
            count += 1
    LOGGER.info("Saved trajectory with %d poses to %s", count, path)
