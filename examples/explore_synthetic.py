#!/usr/bin/env python3
"""
Demo: exploring a synthetic landmark cloud

Builds a ring of landmarks around the origin, writes it in the map CSV
format, then turns the virtual camera on the spot and reports how many
landmarks each step reveals. The seen cloud is exported next to the map.

Usage:
    python examples/explore_synthetic.py [output_dir]
"""

import logging
import math
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import numpy as np

from cloudsim.exploration import ExplorationAccumulator, poses_from_keys  # type: ignore
from cloudsim.mapping import Landmark, LandmarkSet, PointCloudStore, write_landmarks  # type: ignore
from cloudsim.pose import CameraModel, CameraPose  # type: ignore
from cloudsim.utils import get_config, setup_logging  # type: ignore
from cloudsim.visibility import VisibilityConfig, VisibilityEngine  # type: ignore

LOGGER = logging.getLogger(__name__)


def make_ring(count=360, radius=6.0, seed=0) -> LandmarkSet:
    """Landmarks on a noisy cylinder, normals facing the axis."""
    rng = np.random.default_rng(seed)
    landmarks = []
    for i in range(count):
        angle = float(rng.uniform(0.0, 2.0 * math.pi))
        height = float(rng.uniform(-1.5, 1.5))
        r = radius + float(rng.normal(0.0, 0.2))
        position = (r * math.sin(angle), height, r * math.cos(angle))
        normal = (-math.sin(angle), 0.0, -math.cos(angle))
        landmarks.append(Landmark(i, position, 1.0, 12.0, normal))
    return LandmarkSet(landmarks)


def main():
    setup_logging()
    config = get_config()
    output_dir = sys.argv[1] if len(sys.argv) > 1 else config["output_dir"]
    os.makedirs(output_dir, exist_ok=True)

    store = PointCloudStore(make_ring())
    store.save(os.path.join(output_dir, "cloud1.csv"))

    camera = CameraModel.from_config(config["camera"])
    engine = VisibilityEngine(camera, VisibilityConfig.from_config(config["visibility"]))
    session = ExplorationAccumulator(store.landmarks, engine)

    # twelve 30 degree turns to the right bring the camera full circle
    poses = poses_from_keys(CameraPose(), "d" * 12, rotate_scale=math.pi / 6, moving_scale=0.0)
    for result in session.replay(poses):
        print(f"step {result.index:2d}  yaw {math.degrees(result.pose.yaw):6.1f}  "
              f"visible {len(result.visible):3d}  new {result.new_count:3d}  total {result.total_seen:3d}")
    session.finish()

    seen_path = os.path.join(output_dir, "seen.csv")
    write_landmarks(session.seen_landmarks(), seen_path)
    LOGGER.info("Seen cloud written to %s", seen_path)

    stats = session.get_statistics()
    print(f"Coverage: {stats['seen']}/{len(store.landmarks)} ({stats['coverage'] * 100:.1f}%)")


if __name__ == "__main__":
    main()
