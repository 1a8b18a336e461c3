"""
Location of the csync configuration directory.

The directory holds config.yaml, the OAuth client secrets and tokens of
every account, the sync database, snapshots and logs.
"""

from __future__ import annotations

import os
from pathlib import Path

DEFAULT_CONFIG_DIR = Path.home() / ".csync"

CONFIG_DIR_ENV_VAR = "CSYNC_CONFIG_DIR"

# A file with this name in the working directory switches to portable mode
PORTABLE_MARKER = "PORTABLE.md"

# Relative to the working directory
PORTABLE_CONFIG_DIR = "conf"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. CSYNC_CONFIG_DIR environment variable
        3. ./conf when a PORTABLE.md marker file exists in the working directory
        4. Default directory (~/.csync)

    Returns:
        Resolved Path to the configuration directory
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    if (Path.cwd() / PORTABLE_MARKER).exists():
        return (Path.cwd() / PORTABLE_CONFIG_DIR).resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()
