"""Uploader configuration resolved from defaults, environment and overrides."""

from replay_uploader.config_manager.config import ConfigManager
from replay_uploader.config_manager.helpers import parse_bytes
from replay_uploader.config_manager.uploader_config import UploaderConfig

__all__ = ["ConfigManager", "UploaderConfig", "parse_bytes"]
