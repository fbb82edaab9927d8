"""Configuration module for agentgate."""

from agentgate.config.loader import build_group_settings, get_config_path, load_config, save_config
from agentgate.config.schema import Config, TelegramConfig

__all__ = ["Config", "TelegramConfig", "build_group_settings", "get_config_path", "load_config", "save_config"]
