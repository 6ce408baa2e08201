"""
Point cloud store for cloudsim.

Loads and saves the landmark set exported by the SLAM back end:

- One landmark per line, comma separated, no header row
- ``x,y,z,minDistance,maxDistance,normalX,normalY,normalZ`` prefix
- Zero or more ``frameId,kpX,kpY`` observation triples

Rows that fail to parse are dropped with a warning; the rest of the file
still loads. Landmarks are immutable, the store only ever swaps whole sets.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .utils import CloudSimError

LOGGER = logging.getLogger(__name__)

FORMAT_VERSION = 1
VERSION_MARKER = "# cloudsim-map format_version="
PREFIX_FIELDS = 8
OBSERVATION_FIELDS = 3

PathLike = Union[str, Path]


class MalformedRecord(CloudSimError, ValueError):
    """A landmark row could not be parsed."""

    def __init__(self, message: str, line_number: Optional[int] = None):
        super().__init__(message)
        self.line_number = line_number


@dataclass(frozen=True)
class Observation:
    """A keypoint of a landmark in one source keyframe."""

    frame_id: int
    x: float
    y: float

    @property
    def keypoint(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class Landmark:
    """A 3D map point with its admissibility metadata."""

    id: int
    position: Tuple[float, float, float]
    min_distance: float
    max_distance: float
    normal: Tuple[float, float, float]
    observations: Tuple[Observation, ...] = ()

    @property
    def has_normal(self) -> bool:
        """False for points that never received normal/depth statistics."""
        return any(c != 0.0 for c in self.normal)

    def with_id(self, landmark_id: int) -> "Landmark":
        return Landmark(
            id=landmark_id,
            position=self.position,
            min_distance=self.min_distance,
            max_distance=self.max_distance,
            normal=self.normal,
            observations=self.observations,
        )


class LandmarkSet:
    """
    Immutable, ordered collection of landmarks.

    Iteration follows insertion order. Column arrays used by the visibility
    engine are built once here since the set never changes.
    """

    def __init__(self, landmarks: Iterable[Landmark] = ()):
        self._landmarks: Tuple[Landmark, ...] = tuple(landmarks)
        self._index: Dict[int, int] = {}
        for i, landmark in enumerate(self._landmarks):
            if landmark.id in self._index:
                raise ValueError(f"Duplicate landmark id {landmark.id}")
            self._index[landmark.id] = i

        n = len(self._landmarks)
        if n:
            positions = np.array([lm.position for lm in self._landmarks], dtype=np.float64)
            normals = np.array([lm.normal for lm in self._landmarks], dtype=np.float64)
        else:
            positions = np.empty((0, 3), dtype=np.float64)
            normals = np.empty((0, 3), dtype=np.float64)
        min_distances = np.array([lm.min_distance for lm in self._landmarks], dtype=np.float64)
        max_distances = np.array([lm.max_distance for lm in self._landmarks], dtype=np.float64)

        for arr in (positions, normals, min_distances, max_distances):
            arr.setflags(write=False)
        self.positions = positions
        self.normals = normals
        self.min_distances = min_distances
        self.max_distances = max_distances

    def __len__(self) -> int:
        return len(self._landmarks)

    def __iter__(self) -> Iterator[Landmark]:
        return iter(self._landmarks)

    def __getitem__(self, index: int) -> Landmark:
        return self._landmarks[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, LandmarkSet):
            return NotImplemented
        return self._landmarks == other._landmarks

    def __repr__(self) -> str:
        return f"LandmarkSet({len(self)} landmarks)"

    @property
    def ids(self) -> Tuple[int, ...]:
        return tuple(lm.id for lm in self._landmarks)

    def get(self, landmark_id: int) -> Optional[Landmark]:
        i = self._index.get(landmark_id)
        return None if i is None else self._landmarks[i]

    def __contains__(self, landmark_id) -> bool:
        return landmark_id in self._index

    def subset(self, landmark_ids: Iterable[int]) -> "LandmarkSet":
        """Landmarks whose id is in ``landmark_ids``, in this set's order."""
        wanted = set(landmark_ids)
        return LandmarkSet(lm for lm in self._landmarks if lm.id in wanted)

    def appended(self, landmarks: Iterable[Landmark]) -> "LandmarkSet":
        return LandmarkSet(self._landmarks + tuple(landmarks))


@dataclass
class LoadReport:
    """Outcome of reading a landmark file."""

    path: str
    loaded: int = 0
    dropped: int = 0
    errors: List[Tuple[int, str]] = field(default_factory=list)
    format_version: Optional[int] = None


# ---------------------------------------------------------------------- #
# Row codec
# ---------------------------------------------------------------------- #
def _parse_float(token: str, name: str) -> float:
    try:
        value = float(token)
    except ValueError:
        raise MalformedRecord(f"{name} is not a number: {token!r}") from None
    if not math.isfinite(value):
        raise MalformedRecord(f"{name} is not finite: {token!r}")
    return value


def _parse_frame_id(token: str) -> int:
    try:
        return int(token)
    except ValueError:
        pass
    value = _parse_float(token, "frameId")
    if not value.is_integer():
        raise MalformedRecord(f"frameId is not an integer: {token!r}")
    return int(value)


def parse_landmark_row(line: str, landmark_id: int) -> Landmark:
    """Parse one CSV row into a :class:`Landmark`.

    Raises:
        MalformedRecord: If the numeric prefix is short or unparsable, the
            observation fields do not form whole triples, or the distance
            range breaks ``0 <= min <= max`` (``min > 0`` once observed).
    """
    tokens = [t.strip() for t in line.strip().split(",")]
    if tokens and tokens[-1] == "":
        tokens.pop()

    if len(tokens) < PREFIX_FIELDS:
        raise MalformedRecord(
            f"expected at least {PREFIX_FIELDS} fields, got {len(tokens)}"
        )

    names = ("x", "y", "z", "minDistance", "maxDistance", "normalX", "normalY", "normalZ")
    prefix = [_parse_float(tok, name) for tok, name in zip(tokens[:PREFIX_FIELDS], names)]

    rest = tokens[PREFIX_FIELDS:]
    if len(rest) % OBSERVATION_FIELDS:
        raise MalformedRecord(
            f"trailing partial observation: {len(rest)} fields after the prefix"
        )

    observations = []
    for i in range(0, len(rest), OBSERVATION_FIELDS):
        frame_id = _parse_frame_id(rest[i])
        x = _parse_float(rest[i + 1], "kpX")
        y = _parse_float(rest[i + 2], "kpY")
        observations.append(Observation(frame_id, x, y))

    min_distance, max_distance = prefix[3], prefix[4]
    if min_distance < 0.0 or min_distance > max_distance:
        raise MalformedRecord(
            f"distance range [{min_distance!r}, {max_distance!r}] is not a valid interval"
        )
    if observations and min_distance <= 0.0:
        raise MalformedRecord("observed landmark needs a positive distance range")

    return Landmark(
        id=landmark_id,
        position=(prefix[0], prefix[1], prefix[2]),
        min_distance=prefix[3],
        max_distance=prefix[4],
        normal=(prefix[5], prefix[6], prefix[7]),
        observations=tuple(observations),
    )


def format_landmark_row(landmark: Landmark) -> str:
    """Inverse of :func:`parse_landmark_row`, without the trailing newline."""
    values = [
        *landmark.position,
        landmark.min_distance,
        landmark.max_distance,
        *landmark.normal,
    ]
    fields = [repr(float(v)) for v in values]
    for obs in landmark.observations:
        fields.extend((str(int(obs.frame_id)), repr(float(obs.x)), repr(float(obs.y))))
    return ",".join(fields)


# ---------------------------------------------------------------------- #
# File I/O
# ---------------------------------------------------------------------- #
def _parse_version_marker(line: str) -> Optional[int]:
    if not line.startswith(VERSION_MARKER):
        return None
    try:
        return int(line[len(VERSION_MARKER):].strip())
    except ValueError:
        return None


def read_landmarks(path: PathLike) -> Tuple[LandmarkSet, LoadReport]:
    """Load a landmark file.

    Malformed rows are skipped and reported; ids run 0..N-1 over the rows
    that parsed.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    report = LoadReport(path=str(path))
    landmarks: List[Landmark] = []

    try:
        # undecodable bytes become U+FFFD and fail that row only
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line_number, raw in enumerate(f, start=1):
                line = raw.strip()
                if not line:
                    continue
                if line.startswith("#"):
                    version = _parse_version_marker(line)
                    if version is not None and report.format_version is None:
                        report.format_version = version
                        if version > FORMAT_VERSION:
                            LOGGER.warning(
                                "%s declares format version %d, newer than %d",
                                path, version, FORMAT_VERSION,
                            )
                    continue
                try:
                    landmarks.append(parse_landmark_row(line, len(landmarks)))
                except MalformedRecord as e:
                    e.line_number = line_number
                    report.dropped += 1
                    report.errors.append((line_number, str(e)))
                    LOGGER.warning("Skipping malformed row %d in %s: %s", line_number, path, e)
    except OSError as e:
        LOGGER.error("Failed to read landmarks from %s: %s", path, e)
        raise

    report.loaded = len(landmarks)
    LOGGER.info(
        "Loaded %d landmarks from %s (%d rows dropped)",
        report.loaded, path, report.dropped,
    )
    return LandmarkSet(landmarks), report


def write_landmarks(
    landmarks: Iterable[Landmark],
    path: PathLike,
    write_version_header: bool = False,
) -> int:
    """Write landmarks in iteration order, truncating ``path``.

    Returns:
        Number of rows written.

    Raises:
        OSError: If the file cannot be created or written.
    """
    count = 0
    try:
        with open(path, "w", encoding="utf-8", newline="\n") as f:
            if write_version_header:
                f.write(f"{VERSION_MARKER}{FORMAT_VERSION}\n")
            for landmark in landmarks:
                f.write(format_landmark_row(landmark))
                f.write("\n")
                count += 1
    except OSError as e:
        LOGGER.error("Failed to write landmarks to %s: %s", path, e)
        raise

    LOGGER.info("Saved %d landmarks to %s", count, path)
    return count


class PointCloudStore:
    """
    Session owner of the landmark set.

    Queries only ever read ``landmarks``; ``load``/``replace``/``append``
    swap in a new :class:`LandmarkSet` instead of editing the current one.
    ``save`` must not run concurrently with a load or query on the same store.
    """

    def __init__(self, landmarks: Optional[LandmarkSet] = None, write_version_header: bool = False):
        self.landmarks: LandmarkSet = landmarks if landmarks is not None else LandmarkSet()
        self.path: Optional[Path] = None
        self.last_report: Optional[LoadReport] = None
        self.write_version_header = write_version_header

    def load(self, path: PathLike) -> LandmarkSet:
        landmarks, report = read_landmarks(path)
        self.landmarks = landmarks
        self.path = Path(path)
        self.last_report = report
        return landmarks

    def save(self, path: Optional[PathLike] = None) -> int:
        target = path if path is not None else self.path
        if target is None:
            raise ValueError("No path given and the store was not loaded from a file")
        return write_landmarks(self.landmarks, target, self.write_version_header)

    def replace(self, landmarks: Union[LandmarkSet, Sequence[Landmark]]):
        self.landmarks = landmarks if isinstance(landmarks, LandmarkSet) else LandmarkSet(landmarks)

    def append(self, landmarks: Iterable[Landmark]) -> LandmarkSet:
        """Append landmarks, renumbering them after the current last id."""
        next_id = max(self.landmarks.ids, default=-1) + 1
        renumbered = [lm.with_id(next_id + i) for i, lm in enumerate(landmarks)]
        self.landmarks = self.landmarks.appended(renumbered)
        return self.landmarks

    def get_statistics(self) -> Dict:
        observations = sum(len(lm.observations) for lm in self.landmarks)
        unknown_normals = sum(1 for lm in self.landmarks if not lm.has_normal)
        return {
            "landmarks": len(self.landmarks),
            "observations": observations,
            "unknown_normals": unknown_normals,
            "dropped_rows": self.last_report.dropped if self.last_report else 0,
            "path": str(self.path) if self.path else None,
        }
