"""
Entry point for running csync as a module.

Usage:
    python -m csync --help
    python -m csync sync --init
    python -m csync sync
"""

from csync.cli import cli

if __name__ == "__main__":
    cli()
