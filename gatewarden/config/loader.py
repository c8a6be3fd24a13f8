"""Configuration loading utilities."""

import json
import os
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from gatewarden.config.schema import Config


def get_config_path() -> Path:
    """Get the default configuration file path."""
    override = os.environ.get("GATEWARDEN_CONFIG")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".gatewarden" / "config.json"


def get_data_dir(config: Config | None = None) -> Path:
    """Get the gatewarden data directory (created if missing)."""
    from gatewarden.utils.helpers import ensure_dir
    return ensure_dir((config or load_config()).data_path)


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Environment variables (GATEWARDEN_ prefix, ``__`` for nesting) fill in
    whatever the file leaves unset.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return Config(**data)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            logger.warning("Using default configuration.")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.model_dump(), f, indent=2)
