"""
Command-line driver for cloudsim.

Usage:
    cloudsim query --map cloud1.csv --position 0 0 0 --yaw 0.3
    cloudsim explore --map cloud1.csv --keys "iiiddddiii" --export-seen seen.csv
    cloudsim explore --map cloud1.csv --trajectory path.csv --verbose
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .exploration import ExplorationAccumulator, KEY_BINDINGS, load_trajectory, poses_from_keys
from .mapping import LandmarkSet, PointCloudStore, write_landmarks
from .pose import CameraModel, CameraPose, load_transform
from .utils import CloudSimError, get_config, setup_logging, validate_config
from .visibility import VisibilityConfig, VisibilityEngine

LOGGER = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    key_help = "\n".join(f"  {k}  - {v}" for k, v in KEY_BINDINGS.items())
    parser = argparse.ArgumentParser(
        prog="cloudsim",
        description="cloudsim - replay a SLAM point cloud from a virtual camera",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  cloudsim query --map cloud1.csv --position 0 0 -2
  cloudsim explore --map cloud1.csv --keys "iiiddd" --export-seen seen.csv

Keys (explore --keys):
{key_help}
        """,
    )
    parser.add_argument("--config", "-c", help="JSON settings file")
    parser.add_argument("--verbose", "-V", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p):
        p.add_argument("--map", "-m", help="Landmark CSV (defaults to map_path from config)")
        p.add_argument("--position", nargs=3, type=float, metavar=("X", "Y", "Z"))
        p.add_argument("--yaw", type=float, help="Radians")
        p.add_argument("--pitch", type=float, help="Radians")
        p.add_argument("--roll", type=float, help="Radians")
        p.add_argument("--max-view-angle", type=float, help="Viewing angle threshold in degrees")

    query = sub.add_parser("query", help="List landmarks visible from one pose")
    add_common(query)
    query.add_argument("--transform", "-t", help="4x4 alignment matrix CSV applied to the pose")
    query.add_argument("--output", "-o", help="Write visible landmarks to this CSV")

    explore = sub.add_parser("explore", help="Accumulate seen landmarks over a pose sequence")
    add_common(explore)
    source = explore.add_mutually_exclusive_group(required=True)
    source.add_argument("--trajectory", help="CSV of x,y,z,yaw,pitch,roll rows")
    source.add_argument("--keys", help="Key script, see the list below")
    explore.add_argument("--export-seen", help="Write every seen landmark to this CSV")
    explore.add_argument("--export-new", help="Write the last step's new landmarks to this CSV")

    return parser.parse_args(argv)


def _start_pose(args: argparse.Namespace, config: dict) -> CameraPose:
    position = args.position if args.position is not None else config["start_position"]
    return CameraPose(
        tuple(position),
        args.yaw if args.yaw is not None else config["start_yaw"],
        args.pitch if args.pitch is not None else config["start_pitch"],
        args.roll if args.roll is not None else config["start_roll"],
    )


def _build_engine(args: argparse.Namespace, config: dict) -> VisibilityEngine:
    visibility = dict(config["visibility"])
    if args.max_view_angle is not None:
        visibility["max_view_angle_deg"] = args.max_view_angle
    return VisibilityEngine(
        CameraModel.from_config(config["camera"]),
        VisibilityConfig.from_config(visibility),
    )


def _load_map(args: argparse.Namespace, config: dict) -> PointCloudStore:
    map_path = args.map or config.get("map_path")
    if not map_path:
        raise CloudSimError("No landmark map given (use --map or map_path in the config)")
    store = PointCloudStore(write_version_header=config["map_format"]["write_version_header"])
    store.load(map_path)
    if store.last_report.dropped:
        print(f"dropped rows: {store.last_report.dropped}")
    return store


def run_query(args: argparse.Namespace, config: dict) -> int:
    store = _load_map(args, config)
    engine = _build_engine(args, config)
    pose = _start_pose(args, config)
    if args.transform:
        pose = pose.transformed(load_transform(args.transform))
        LOGGER.info("Pose after alignment: %s", pose.as_dict())

    visible = engine.query_pose(store.landmarks, pose)
    print(f"visible: {len(visible)} / {len(store.landmarks)}")
    for point in visible:
        u, v = point.image_point
        print(f"  #{point.landmark_id}: uv=({u:.1f}, {v:.1f}) dist={point.distance:.3f}")

    if args.output:
        ids = [p.landmark_id for p in visible]
        write_landmarks(store.landmarks.subset(ids), args.output, store.write_version_header)
    return 0


def run_explore(args: argparse.Namespace, config: dict) -> int:
    store = _load_map(args, config)
    engine = _build_engine(args, config)

    if args.trajectory:
        poses = load_trajectory(args.trajectory)
    else:
        poses = poses_from_keys(
            _start_pose(args, config),
            args.keys,
            rotate_scale=config["rotate_scale"],
            moving_scale=config["moving_scale"],
        )

    session = ExplorationAccumulator(store.landmarks, engine)
    last_new = LandmarkSet()
    for result in session.replay(poses):
        print(f"new: {result.new_count}")
        print(f"total: {result.total_seen}")
        x, y, z = result.pose.position
        print(f"Position: ({x:.3f}, {y:.3f}, {z:.3f})")
        print(f"Yaw: {result.pose.yaw:.3f}, Pitch: {result.pose.pitch:.3f}, Roll: {result.pose.roll:.3f}")
        last_new = session.new_landmarks()
    session.finish()

    if args.export_seen:
        write_landmarks(session.seen_landmarks(), args.export_seen, store.write_version_header)
    if args.export_new:
        write_landmarks(last_new, args.export_new, store.write_version_header)

    stats = session.get_statistics()
    LOGGER.info("Coverage: %d/%d landmarks (%.1f%%)",
                stats["seen"], len(store.landmarks), stats["coverage"] * 100)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(level=log_level)

    try:
        config = get_config(args.config)
        validate_config(config)
        if args.command == "query":
            return run_query(args, config)
        return run_explore(args, config)
    except (CloudSimError, OSError, ValueError) as e:
        LOGGER.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
