"""Config loading and validation for stageflow.

Loads stageflow.config.json, validates required fields, and expands ~ in paths.
"""

import json
import logging
from pathlib import Path
from typing import Any


class ConfigError(Exception):
    """Raised when configuration is invalid or missing required fields."""


CONFIG_FILENAME = "stageflow.config.json"

REQUIRED_FIELDS = ["db_path"]

PATH_FIELDS = ["db_path"]

DEFAULTS: dict[str, Any] = {
    "host": "127.0.0.1",
    "port": 8000,
    "log_level": "INFO",
    "allow_unvalidated_transitions": True,
}


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load and validate stageflow.config.json.

    Args:
        config_path: Path to config file. Defaults to ./stageflow.config.json.

    Returns:
        Validated config dict with paths expanded and defaults applied.

    Raises:
        ConfigError: If file is missing, unreadable, or has invalid content.
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        raw = config_path.read_text()
        config = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"Config in {config_path} must be a JSON object")

    _validate(config)
    _apply_defaults(config)
    _check_types(config)
    _expand_paths(config)

    return config


def _validate(config: dict[str, Any]) -> None:
    """Validate required fields are present."""
    for field in REQUIRED_FIELDS:
        if field not in config:
            raise ConfigError(
                f"Missing required config field: '{field}'. "
                f"Run `stageflow init` to generate a starter config."
            )


def _apply_defaults(config: dict[str, Any]) -> None:
    """Apply default values for optional fields."""
    for key, default in DEFAULTS.items():
        if key not in config:
            config[key] = default


def _check_types(config: dict[str, Any]) -> None:
    if not isinstance(config["port"], int) or isinstance(config["port"], bool):
        raise ConfigError(f"'port' must be an integer, got {config['port']!r}")
    if not isinstance(config["allow_unvalidated_transitions"], bool):
        raise ConfigError("'allow_unvalidated_transitions' must be true or false")
    level = str(config["log_level"]).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f"Unknown log_level '{config['log_level']}'")
    config["log_level"] = level


def _expand_paths(config: dict[str, Any]) -> None:
    """Expand ~ in path fields to the user's home directory."""
    for field in PATH_FIELDS:
        if field in config and isinstance(config[field], str):
            config[field] = str(Path(config[field]).expanduser())
