"""CLI package for csync."""

from csync.cli.main import (
    EXIT_ERROR,
    EXIT_PRECONDITION,
    cli,
    get_config_dir,
    get_config_file,
)

__all__ = [
    "EXIT_ERROR",
    "EXIT_PRECONDITION",
    "cli",
    "get_config_dir",
    "get_config_file",
]
