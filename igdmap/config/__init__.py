"""Configuration loading for igdmap."""

from igdmap.config.config import ConfigManager, get_config, init_config

__all__ = ["ConfigManager", "get_config", "init_config"]
