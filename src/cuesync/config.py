# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Configuration management for cuesync.
Handles loading and saving settings from a YAML config file.
"""

import logging
from pathlib import Path
from typing import Any, TypedDict

import yaml

from .tuning import LEGACY_AGGRESSIVENESS, PidParams, TuningProfile

logger = logging.getLogger(__name__)

CONFIG_FILENAME: str = ".cuesync.yaml"


class TuningSettings(TypedDict):
    """Type definition for tuning configuration settings."""
    aggressiveness: str
    smoothness: str
    marker_percent: float
    hybrid_lock: bool
    nudge_freeze_batches: int


class PidSettings(TypedDict):
    """Type definition for bias controller settings."""
    kp: float
    kd: float
    max_bias: float
    conf_min: float
    decay_ms: float
    lost_ms: float


class SessionSettings(TypedDict):
    """Type definition for host scheduling settings."""
    interim_throttle_ms: float
    tick_ms: float
    frame_hz: float


class DisplaySinkSettings(TypedDict):
    """Type definition for the WebSocket display mirror."""
    enabled: bool
    host: str
    port: int


class Config(TypedDict):
    """Type definition for the complete configuration."""
    tuning: TuningSettings
    pid: PidSettings
    session: SessionSettings
    display_sink: DisplaySinkSettings


# Default configuration values
DEFAULT_CONFIG: Config = {
    "tuning": {
        # conservative, normal, aggressive, aggressive-live
        "aggressiveness": "normal",
        # stable, balanced, responsive
        "smoothness": "balanced",
        # Fraction of viewport height where the active line should sit
        "marker_percent": 0.4,
        # Let the bias controller steer constant-speed autoscroll
        "hybrid_lock": False,
        # Batches with soft-advance suppressed after a manual scroll
        "nudge_freeze_batches": 3,
    },

    "pid": {
        "kp": 0.022,
        "kd": 0.0025,
        "max_bias": 0.12,
        "conf_min": 0.6,
        "decay_ms": 550.0,
        "lost_ms": 1800.0,
    },

    "session": {
        "interim_throttle_ms": 120.0,
        "tick_ms": 250.0,
        "frame_hz": 60.0,
    },

    "display_sink": {
        "enabled": False,
        "host": "127.0.0.1",
        "port": 8765,
    },
}


def get_config_path() -> Path:
    """Get the path to the config file in the current working directory."""
    return Path.cwd() / CONFIG_FILENAME


def _deep_merge(base, override):
    """
    Deep merge two dictionaries, with override taking precedence.
    Returns a new dictionary without modifying the originals.

    Args:
        base: Base dictionary to merge from.
        override: Dictionary with values that take precedence over base.

    Returns:
        New dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        elif isinstance(value, dict):
            result[key] = _deep_merge({}, value)
        else:
            result[key] = value
    return result


def migrate_config(config: dict[str, Any]) -> dict[str, Any]:
    """
    Migrate old configuration values to the current format.

    Older files stored aggressiveness as "1", "2" or "3" (or the bare
    integers); these become conservative, normal and aggressive.

    Args:
        config: Configuration dictionary (may contain legacy values)

    Returns:
        Migrated configuration dictionary
    """
    tuning: dict[str, Any] = dict(config.get("tuning") or {})
    value: Any = tuning.get("aggressiveness")
    if value is not None and str(value) in LEGACY_AGGRESSIVENESS:
        tuning["aggressiveness"] = LEGACY_AGGRESSIVENESS[str(value)]
        config["tuning"] = tuning
        logger.info("Migrated legacy aggressiveness %r to %r", value, tuning["aggressiveness"])
    return config


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, merged with defaults.

    Automatically migrates legacy values.

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        Configuration dictionary with all values (defaults + overrides from file).
    """
    if config_path is None:
        config_path = get_config_path()

    # Start with defaults
    config: dict[str, Any] = _deep_merge({}, DEFAULT_CONFIG)

    # Load from file if it exists
    if config_path.exists():
        try:
            with open(config_path, encoding='utf-8') as f:
                file_config: dict[str, Any] | None = yaml.safe_load(f)
                if isinstance(file_config, dict):
                    config = _deep_merge(config, file_config)
                elif file_config is not None:
                    logger.warning("Ignoring config %s: top level is not a mapping", config_path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not load config from %s: %s", config_path, e)

    config = migrate_config(config)

    return config  # type: ignore[return-value]


def save_config(config: Config, config_path: Path | None = None) -> bool:
    """
    Save configuration to file.

    Args:
        config: Configuration dictionary to save.
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        True if save was successful, False otherwise.
    """
    if config_path is None:
        config_path = get_config_path()

    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(dict(config), f, default_flow_style=False, sort_keys=False)
        return True
    except (OSError, yaml.YAMLError) as e:
        logger.error("Error saving config to %s: %s", config_path, e)
        return False


def get_session_settings(config: Config) -> SessionSettings:
    """
    Extract session scheduling settings from config.

    Args:
        config: Configuration dictionary.

    Returns:
        Session settings dictionary.
    """
    return config.get("session", DEFAULT_CONFIG["session"]).copy()  # type: ignore[return-value]


def get_display_sink_settings(config: Config) -> DisplaySinkSettings:
    """Extract display mirror settings from config."""
    return config.get("display_sink",
                      DEFAULT_CONFIG["display_sink"]
                      ).copy()  # type: ignore[return-value]


def profile_from_config(config: Config) -> TuningProfile:
    """
    Build a validated TuningProfile from config.

    Raises:
        TuningError: If any tuning or PID value is invalid.
    """
    tuning: dict[str, Any] = _deep_merge(DEFAULT_CONFIG["tuning"], config.get("tuning") or {})
    pid: dict[str, Any] = _deep_merge(DEFAULT_CONFIG["pid"], config.get("pid") or {})
    return TuningProfile(
        marker_percent=float(tuning["marker_percent"]),
        aggressiveness=str(LEGACY_AGGRESSIVENESS.get(str(tuning["aggressiveness"]),
                                                     tuning["aggressiveness"])),
        smoothness=str(tuning["smoothness"]),
        hybrid_lock=bool(tuning["hybrid_lock"]),
        pid=PidParams(
            kp=float(pid["kp"]),
            kd=float(pid["kd"]),
            max_bias=float(pid["max_bias"]),
            conf_min=float(pid["conf_min"]),
            decay_ms=float(pid["decay_ms"]),
            lost_ms=float(pid["lost_ms"]),
        ),
        nudge_freeze_batches=int(tuning["nudge_freeze_batches"]),
    )


def update_config_tuning(config: Config, profile: TuningProfile) -> Config:
    """
    Write a profile's values back into the tuning and pid sections.
    Returns a new config dict.
    """
    new_config: dict[str, Any] = _deep_merge({}, config)
    new_config["tuning"] = _deep_merge(new_config.get("tuning", {}), {
        "aggressiveness": profile.aggressiveness,
        "smoothness": profile.smoothness,
        "marker_percent": profile.marker_percent,
        "hybrid_lock": profile.hybrid_lock,
        "nudge_freeze_batches": profile.nudge_freeze_batches,
    })
    new_config["pid"] = {
        "kp": profile.pid.kp,
        "kd": profile.pid.kd,
        "max_bias": profile.pid.max_bias,
        "conf_min": profile.pid.conf_min,
        "decay_ms": profile.pid.decay_ms,
        "lost_ms": profile.pid.lost_ms,
    }
    return new_config  # type: ignore[return-value]
