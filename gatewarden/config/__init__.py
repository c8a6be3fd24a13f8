"""Configuration module for gatewarden."""

from gatewarden.config.loader import get_config_path, load_config, save_config
from gatewarden.config.schema import Config

__all__ = ["Config", "load_config", "save_config", "get_config_path"]
