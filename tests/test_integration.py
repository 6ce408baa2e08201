"""
End-to-end tests of the command-line driver.
"""

import json
import math
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from cloudsim.exploration import save_trajectory  # type: ignore
from cloudsim.main import main  # type: ignore
from cloudsim.mapping import Landmark, LandmarkSet, read_landmarks, write_landmarks  # type: ignore
from cloudsim.pose import CameraPose  # type: ignore


@pytest.fixture
def map_path(tmp_path):
    path = tmp_path / "cloud1.csv"
    write_landmarks(LandmarkSet([
        Landmark(0, (0.0, 0.0, 5.0), 1.0, 10.0, (0.0, 0.0, -1.0)),
        Landmark(1, (-5.0, 0.0, 5.0), 1.0, 10.0, (0.0, 0.0, 0.0)),
        Landmark(2, (0.0, 0.0, -5.0), 1.0, 10.0, (0.0, 0.0, 1.0)),
    ]), path)
    return path


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"rotateScale": math.pi / 4, "movingScale": 1.0}))
    return path


def test_query_prints_visible_count(map_path, tmp_path, capsys):
    output = tmp_path / "visible.csv"
    assert main(["query", "--map", str(map_path), "--output", str(output)]) == 0
    assert "visible: 1 / 3" in capsys.readouterr().out
    visible, _ = read_landmarks(output)
    assert [lm.position for lm in visible] == [(0.0, 0.0, 5.0)]


def test_query_far_away_sees_nothing(map_path, capsys):
    assert main(["query", "--map", str(map_path), "--position", "0", "0", "20"]) == 0
    assert "visible: 0 / 3" in capsys.readouterr().out


def test_query_with_alignment_transform(map_path, tmp_path, capsys):
    transform = tmp_path / "frames_transformation_matrix.csv"
    # shifts the camera to z = 20, past every landmark
    transform.write_text("1,0,0,0\n0,1,0,0\n0,0,1,20\n0,0,0,1\n")
    assert main(["query", "--map", str(map_path), "--transform", str(transform)]) == 0
    assert "visible: 0 / 3" in capsys.readouterr().out


def test_explore_with_keys(map_path, config_path, tmp_path, capsys):
    seen = tmp_path / "seen.csv"
    new = tmp_path / "new.csv"
    code = main([
        "--config", str(config_path), "explore", "--map", str(map_path),
        "--keys", "a", "--export-seen", str(seen), "--export-new", str(new),
    ])
    assert code == 0

    out = capsys.readouterr().out
    assert out.count("new: 1") == 2
    assert "total: 2" in out
    assert "Yaw: -0.785" in out

    seen_landmarks, _ = read_landmarks(seen)
    assert [lm.position for lm in seen_landmarks] == [(0.0, 0.0, 5.0), (-5.0, 0.0, 5.0)]
    new_landmarks, _ = read_landmarks(new)
    assert [lm.position for lm in new_landmarks] == [(-5.0, 0.0, 5.0)]


def test_explore_with_trajectory(map_path, tmp_path, capsys):
    trajectory = tmp_path / "trajectory.csv"
    poses = [CameraPose(), CameraPose(), CameraPose((0.0, 0.0, 0.0), -math.pi / 4)]
    save_trajectory(poses, trajectory)
    assert main(["explore", "--map", str(map_path), "--trajectory", str(trajectory)]) == 0
    out = capsys.readouterr().out
    assert [line for line in out.splitlines() if line.startswith("new:")] == ["new: 1", "new: 0", "new: 1"]


def test_dropped_rows_are_reported(map_path, capsys):
    with open(map_path, "a") as f:
        f.write("broken,row\n")
    assert main(["query", "--map", str(map_path)]) == 0
    out = capsys.readouterr().out
    assert "dropped rows: 1" in out
    assert "visible: 1 / 3" in out


def test_missing_map_fails(tmp_path):
    assert main(["query", "--map", str(tmp_path / "missing.csv")]) == 1


def test_no_map_given_fails():
    assert main(["query"]) == 1


def test_invalid_config_fails(map_path, tmp_path):
    config = tmp_path / "bad.json"
    config.write_text(json.dumps({"visibility": {"max_view_angle_deg": 270}}))
    assert main(["--config", str(config), "query", "--map", str(map_path)]) == 1


def test_unparsable_camera_settings_fails(map_path, tmp_path):
    settings = tmp_path / "drone.yaml"
    settings.write_text("%YAML:1.0\n---\nCamera.fx: [600.0\n  Camera.fy: {\n")
    config = tmp_path / "legacy.json"
    config.write_text(json.dumps({"DroneYamlPathSlam": str(settings)}))
    assert main(["--config", str(config), "query", "--map", str(map_path)]) == 1


def test_narrow_view_angle_from_command_line(map_path, capsys):
    # landmark 0 faces the camera head on, so it survives any threshold
    assert main(["query", "--map", str(map_path), "--max-view-angle", "1"]) == 0
    assert "visible: 1 / 3" in capsys.readouterr().out


def test_keys_and_trajectory_are_exclusive(map_path):
    with pytest.raises(SystemExit):
        main(["explore", "--map", str(map_path), "--keys", "a", "--trajectory", "t.csv"])
