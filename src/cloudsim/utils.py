"""
Shared helper functions and utilities.

Logging setup plus the configuration layer used by the command-line driver:
defaults, JSON loading (including the legacy simulator settings keys),
saving and validation.
"""

from __future__ import annotations

import copy
import json
import logging
import math
import os
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER = logging.getLogger(__name__)


class CloudSimError(Exception):
    """Base class for all errors raised by cloudsim."""


class ConfigError(CloudSimError, ValueError):
    """Raised when a configuration value is missing or out of range."""


DEFAULT_CONFIG: Dict[str, Any] = {
    # Map input/output
    "map_path": None,
    "output_dir": "output",

    # Starting pose (radians)
    "start_position": [0.0, 0.0, 0.0],
    "start_yaw": 0.0,
    "start_pitch": 0.0,
    "start_roll": 0.0,

    # Key motion
    "rotate_scale": 0.05,  # radians per rotate key
    "moving_scale": 0.1,  # world units per move key

    # Camera model
    "camera": {
        "settings_file": None,  # Optional ORB-SLAM style YAML with Camera.fx etc.
        "fx": 535.0,
        "fy": 535.0,
        "cx": 320.0,
        "cy": 240.0,
        "width": 640,
        "height": 480,
        "dist_coeffs": [0.0, 0.0, 0.0, 0.0, 0.0],
        "near_plane": 0.0,
        "far_plane": None,
    },

    # Admissibility tests
    "visibility": {
        "max_view_angle_deg": 60.0,
        "normal_points_to_camera": True,
    },

    # Persistence
    "map_format": {
        "write_version_header": False,
    },
}

# Keys used by the original simulator settings JSON.
_LEGACY_KEYS = {
    "rotateScale": "rotate_scale",
    "movingScale": "moving_scale",
    "yawRad": "start_yaw",
    "pitchRad": "start_pitch",
    "rollRad": "start_roll",
    "simulatorOutputDir": "output_dir",
}


def setup_logging(level=logging.INFO):
    """Set up logging configuration.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    LOGGER.debug("Logging initialized")


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def translate_legacy_settings(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map the original simulator's camelCase settings onto cloudsim keys.

    Unknown keys are passed through untouched so newer-style files can mix
    both spellings.
    """
    translated: Dict[str, Any] = {}
    position = list(DEFAULT_CONFIG["start_position"])
    has_position = False

    for key, value in data.items():
        if key in _LEGACY_KEYS:
            translated[_LEGACY_KEYS[key]] = value
        elif key in ("startingCameraPosX", "startingCameraPosY", "startingCameraPosZ"):
            position["XYZ".index(key[-1])] = float(value)
            has_position = True
        elif key == "mapInputDir":
            translated["map_path"] = os.path.join(value, "cloud1.csv")
        elif key == "DroneYamlPathSlam":
            translated.setdefault("camera", {})["settings_file"] = value
        else:
            translated[key] = value

    if has_position:
        translated["start_position"] = position
    return translated


def get_config(config_path=None) -> Dict[str, Any]:
    """Load configuration from file or return defaults.

    Args:
        config_path: Path to a JSON configuration file (optional)

    Returns:
        dict: Configuration dictionary

    Raises:
        OSError: If the file exists but cannot be read.
        ConfigError: If the file is not valid JSON.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path is None:
        return config

    path = Path(config_path)
    try:
        with path.open("r", encoding="utf-8") as f:
            loaded = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
    except OSError as e:
        LOGGER.error("Failed to read config %s: %s", config_path, e)
        raise

    if not isinstance(loaded, dict):
        raise ConfigError(f"Top level of {config_path} must be an object")

    unknown = set(loaded) - set(DEFAULT_CONFIG) - set(_LEGACY_KEYS) - {
        "startingCameraPosX", "startingCameraPosY", "startingCameraPosZ",
        "mapInputDir", "DroneYamlPathSlam",
    }
    for key in sorted(unknown):
        LOGGER.warning("Unknown config key ignored by cloudsim: %s", key)

    _merge(config, translate_legacy_settings(loaded))
    LOGGER.info("Configuration loaded from %s", config_path)
    return config


def save_config(config, config_path):
    """Save configuration to file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration file
    """
    with open(config_path, 'w', encoding="utf-8") as f:
        json.dump(config, f, indent=4)
    LOGGER.info("Configuration saved to %s", config_path)


def _require_positive(value, name):
    if value is None or not math.isfinite(float(value)) or float(value) <= 0:
        raise ConfigError(f"{name} must be a positive number, got {value!r}")


def validate_config(config) -> bool:
    """Validate configuration parameters.

    Args:
        config: Configuration dictionary

    Returns:
        bool: True if valid

    Raises:
        ConfigError: On the first invalid value.
    """
    camera = config.get("camera")
    if not isinstance(camera, dict):
        raise ConfigError("Missing required config section: camera")

    if not camera.get("settings_file"):
        for key in ("fx", "fy", "width", "height"):
            _require_positive(camera.get(key), f"camera.{key}")
        for key in ("cx", "cy"):
            if camera.get(key) is None:
                raise ConfigError(f"Missing required config key: camera.{key}")

    _require_positive(config.get("rotate_scale"), "rotate_scale")
    _require_positive(config.get("moving_scale"), "moving_scale")

    position = config.get("start_position")
    if position is None or len(position) != 3:
        raise ConfigError("start_position must have three components")

    angle = config.get("visibility", {}).get("max_view_angle_deg")
    if angle is None or not 0.0 < float(angle) <= 180.0:
        raise ConfigError(f"visibility.max_view_angle_deg must be in (0, 180], got {angle!r}")

    LOGGER.debug("Configuration validated successfully")
    return True
