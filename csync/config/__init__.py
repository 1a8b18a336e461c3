"""Configuration loading for csync."""

from csync.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader
from csync.config.settings import AccountConfig, Settings, load_settings

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "AccountConfig",
    "ConfigError",
    "ConfigLoader",
    "Settings",
    "load_settings",
]
