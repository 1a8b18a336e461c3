"""
Typed settings for csync.

Turns the validated YAML dictionary produced by ConfigLoader into
dataclasses the rest of the application consumes.

Configuration file format (config.yaml):

    accounts:
      - user: alice@example.com
        keyfile: client_secret.json
        credfile: token_alice.json
      - user: bob@example.com
    backup_days: 7
    api_timeout: 60
    auth_mode: local
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from csync.api.people_api import DEFAULT_API_TIMEOUT
from csync.api.retry import DEFAULT_INITIAL_DELAY, DEFAULT_MAX_DELAY, BackoffPolicy
from csync.auth.google_auth import AUTH_MODE_LOCAL, DEFAULT_AUTH_TIMEOUT
from csync.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader
from csync.utils.paths import resolve_config_dir

# Placeholder user written by the configuration template
PLACEHOLDER_USER = "FIXME"

# Client secrets file shared by accounts that don't name their own
DEFAULT_KEYFILE = "client_secret.json"

logger = logging.getLogger(__name__)


@dataclass
class AccountConfig:
    """
    One Google account taking part in synchronization.

    Attributes:
        user: E-mail address of the account
        keyfile: OAuth client secrets file
        credfile: File the account's OAuth token is stored in
    """

    user: str
    keyfile: str = DEFAULT_KEYFILE
    credfile: str = ""

    def __post_init__(self) -> None:
        if not self.credfile:
            self.credfile = f"token_{self.user}.json"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountConfig:
        return cls(
            user=data["user"].strip(),
            keyfile=data.get("keyfile") or DEFAULT_KEYFILE,
            credfile=data.get("credfile") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {"user": self.user, "keyfile": self.keyfile, "credfile": self.credfile}


@dataclass
class Settings:
    """Application settings with defaults for every optional key."""

    config_dir: Path
    accounts: list[AccountConfig] = field(default_factory=list)
    backup_days: int = 0
    backup_dir: Path | None = None
    api_timeout: float = DEFAULT_API_TIMEOUT
    auth_timeout: int = DEFAULT_AUTH_TIMEOUT
    auth_mode: str = AUTH_MODE_LOCAL
    open_browser: bool = True
    rate_limit: float = 0.0
    retry_initial_delay: float = DEFAULT_INITIAL_DELAY
    retry_max_delay: float = DEFAULT_MAX_DELAY
    verbose: bool = False
    log_dir: Path | None = None
    log_retention_count: int = 10

    @property
    def database_path(self) -> Path:
        return self.config_dir / "sync.db"

    @property
    def backups_path(self) -> Path:
        return self.backup_dir or self.config_dir / "backups"

    @property
    def retry_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            initial_delay=self.retry_initial_delay, max_delay=self.retry_max_delay
        )

    def find_account(self, user: str) -> AccountConfig | None:
        """Look up a configured account by e-mail, case-insensitively."""
        for account in self.accounts:
            if account.user.lower() == user.lower():
                return account
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_dir: Path) -> Settings:
        """
        Build settings from a validated configuration dictionary.

        Raises:
            ConfigError: If an account is still the template placeholder
                or is listed twice
        """
        accounts = [AccountConfig.from_dict(a) for a in data.get("accounts") or []]

        seen: set[str] = set()
        for account in accounts:
            if account.user.upper() == PLACEHOLDER_USER:
                raise ConfigError(
                    "The configuration still contains the FIXME placeholder "
                    "account. Edit config.yaml and list your accounts."
                )
            if account.user.lower() in seen:
                raise ConfigError(f"Account listed twice: {account.user}")
            seen.add(account.user.lower())

        def optional_path(key: str) -> Path | None:
            value = data.get(key)
            return Path(value).expanduser() if value else None

        return cls(
            config_dir=config_dir,
            accounts=accounts,
            backup_days=data.get("backup_days", 0),
            backup_dir=optional_path("backup_dir"),
            api_timeout=data.get("api_timeout", DEFAULT_API_TIMEOUT),
            auth_timeout=data.get("auth_timeout", DEFAULT_AUTH_TIMEOUT),
            auth_mode=data.get("auth_mode", AUTH_MODE_LOCAL),
            open_browser=data.get("open_browser", True),
            rate_limit=data.get("rate_limit", 0.0),
            retry_initial_delay=data.get("retry_initial_delay", DEFAULT_INITIAL_DELAY),
            retry_max_delay=data.get("retry_max_delay", DEFAULT_MAX_DELAY),
            verbose=data.get("verbose", False),
            log_dir=optional_path("log_dir"),
            log_retention_count=data.get("log_retention_count", 10),
        )


def load_settings(
    config_dir: Path | str | None = None, config_file: Path | str | None = None
) -> Settings:
    """
    Load and validate settings.

    Args:
        config_dir: Configuration directory (resolved like everywhere else)
        config_file: Explicit configuration file, defaults to
                     <config_dir>/config.yaml

    Raises:
        ConfigError: If the file cannot be parsed or is invalid
    """
    resolved_dir = resolve_config_dir(config_dir)
    loader = ConfigLoader(config_dir=resolved_dir)
    path = Path(config_file) if config_file else resolved_dir / DEFAULT_CONFIG_FILE

    data = loader.load_from_file(path)
    if data:
        loader.validate(data)

    settings = Settings.from_dict(data, resolved_dir)
    logger.debug(f"Loaded settings with {len(settings.accounts)} account(s)")
    return settings
