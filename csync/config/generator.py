"""
Configuration file generator for csync.

Writes a commented configuration template that the user completes with
their own accounts before the first sync.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate the default YAML configuration with all options documented.

    The single account is the FIXME placeholder, which load_settings()
    refuses until it is replaced.
    """
    return """# csync configuration
# ===================
#
# CLI arguments always override these values.

# Accounts
# --------
# Every account listed here is kept identical to the others.
#   user:     e-mail address of the Google account
#   keyfile:  OAuth client secrets (Desktop app) downloaded from
#             Google Cloud Console, relative to this directory
#   credfile: where the account's token is stored (default token_<user>.json)
accounts:
  - user: FIXME
    keyfile: client_secret.json
#  - user: second.account@example.com
#    keyfile: client_secret.json


# Backups
# -------

# Number of numbered snapshots (1.bak is the newest) kept in backup_dir.
# A snapshot of every account is written at the start of each sync.
# 0 disables snapshots.
# Default: 0
# backup_days: 7

# Default: <config dir>/backups
# backup_dir: /path/to/backups


# Google API
# ----------

# Hard timeout for a single API call, in seconds
# Default: 60
# api_timeout: 60

# Backoff for rate limited or failing calls, in seconds.
# Retries never give up; the delay doubles up to retry_max_delay.
# retry_initial_delay: 0.5
# retry_max_delay: 30

# Seconds to wait between contacts during the one-time --init pass
# Default: 0
# rate_limit: 0


# Authentication
# --------------

# local:  open a browser and catch the redirect on a localhost port
# manual: print the URL and paste the redirected address back
# Default: local
# auth_mode: local

# Seconds to wait for consent in local mode
# Default: 180
# auth_timeout: 180

# open_browser: true


# Logging
# -------

# verbose: false

# Default: <config dir>/logs
# log_dir: /path/to/logs

# Number of daily log files to keep, 0 keeps all
# log_retention_count: 10
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save the default configuration file to the given path.

    Returns:
        (True, None) on success, (False, error_message) on failure
    """
    config_path = config_path.expanduser().resolve()

    if config_path.exists() and not overwrite:
        return (
            False,
            f"Configuration file already exists: {config_path}\n"
            "Use --force to overwrite.",
        )

    try:
        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        config_path.chmod(0o600)
    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)

    logger.info(f"Created configuration file: {config_path}")
    return (True, None)
