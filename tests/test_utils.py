"""
Tests for configuration loading and validation.
"""

import json
import os
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from cloudsim.utils import (  # type: ignore
    DEFAULT_CONFIG,
    ConfigError,
    get_config,
    save_config,
    translate_legacy_settings,
    validate_config,
)


class TestConfig(unittest.TestCase):
    """Defaults, file loading and legacy keys."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "settings.json")

    def tearDown(self):
        self.tmpdir.cleanup()

    def write(self, data):
        with open(self.path, "w") as f:
            json.dump(data, f)

    def test_defaults(self):
        config = get_config()
        self.assertEqual(config["visibility"]["max_view_angle_deg"], 60.0)
        self.assertFalse(config["map_format"]["write_version_header"])
        self.assertTrue(validate_config(config))

    def test_defaults_are_copied(self):
        config = get_config()
        config["camera"]["fx"] = 1.0
        self.assertEqual(DEFAULT_CONFIG["camera"]["fx"], 535.0)

    def test_nested_override_keeps_siblings(self):
        self.write({"camera": {"fx": 700.0}, "rotate_scale": 0.2})
        config = get_config(self.path)
        self.assertEqual(config["camera"]["fx"], 700.0)
        self.assertEqual(config["camera"]["fy"], 535.0)
        self.assertEqual(config["rotate_scale"], 0.2)

    def test_legacy_settings(self):
        self.write({
            "mapInputDir": "/data/run1",
            "startingCameraPosX": 1.0,
            "startingCameraPosZ": -2.0,
            "yawRad": 0.3,
            "movingScale": 0.5,
            "DroneYamlPathSlam": "/data/drone.yaml",
        })
        config = get_config(self.path)
        self.assertEqual(config["map_path"], os.path.join("/data/run1", "cloud1.csv"))
        self.assertEqual(config["start_position"], [1.0, 0.0, -2.0])
        self.assertEqual(config["start_yaw"], 0.3)
        self.assertEqual(config["moving_scale"], 0.5)
        self.assertEqual(config["camera"]["settings_file"], "/data/drone.yaml")
        self.assertEqual(config["camera"]["fx"], 535.0)

    def test_translate_passes_unknown_keys(self):
        self.assertEqual(translate_legacy_settings({"foo": 1}), {"foo": 1})

    def test_invalid_json(self):
        with open(self.path, "w") as f:
            f.write("{not json")
        with self.assertRaises(ConfigError):
            get_config(self.path)

    def test_non_object_json(self):
        self.write([1, 2, 3])
        with self.assertRaises(ConfigError):
            get_config(self.path)

    def test_missing_file(self):
        with self.assertRaises(OSError):
            get_config(os.path.join(self.tmpdir.name, "missing.json"))

    def test_save_and_reload(self):
        config = get_config()
        config["start_yaw"] = 1.25
        save_config(config, self.path)
        self.assertEqual(get_config(self.path), config)


class TestValidateConfig(unittest.TestCase):
    """Range checks."""

    def test_non_positive_focal_length(self):
        config = get_config()
        config["camera"]["fx"] = 0
        with self.assertRaises(ConfigError):
            validate_config(config)

    def test_settings_file_skips_intrinsics(self):
        config = get_config()
        config["camera"]["fx"] = None
        config["camera"]["settings_file"] = "drone.yaml"
        self.assertTrue(validate_config(config))

    def test_view_angle_range(self):
        for angle in (0.0, 181.0, None):
            config = get_config()
            config["visibility"]["max_view_angle_deg"] = angle
            with self.assertRaises(ConfigError):
                validate_config(config)

    def test_start_position_length(self):
        config = get_config()
        config["start_position"] = [0.0, 0.0]
        with self.assertRaises(ConfigError):
            validate_config(config)

    def test_config_error_is_value_error(self):
        self.assertTrue(issubclass(ConfigError, ValueError))


if __name__ == "__main__":
    unittest.main()
