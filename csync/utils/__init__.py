"""Utility modules for csync."""

from csync.utils.paths import DEFAULT_CONFIG_DIR, resolve_config_dir

__all__ = ["DEFAULT_CONFIG_DIR", "resolve_config_dir"]
