"""
Configuration loader module for csync.

Reads config.yaml with yaml.safe_load and checks the type and range of
every known key, including each entry of the accounts list. A missing
file is not an error: it yields an empty configuration.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from csync.auth.google_auth import AUTH_MODES
from csync.utils.paths import resolve_config_dir

DEFAULT_CONFIG_FILE = "config.yaml"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    # Known keys and their expected types
    VALID_KEYS: dict[str, type[Any] | tuple[type[Any], ...]] = {
        "accounts": list,
        "backup_days": int,
        "backup_dir": str,
        "api_timeout": (int, float),
        "auth_timeout": int,
        "auth_mode": str,
        "open_browser": bool,
        "rate_limit": (int, float),
        "retry_initial_delay": (int, float),
        "retry_max_delay": (int, float),
        "verbose": bool,
        "log_dir": str,
        "log_retention_count": int,
    }

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    def _get_config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Configuration values, or an empty dict if the file doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        return self.load_from_file(self._get_config_path())

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Returns:
            Configuration values, or an empty dict if the file doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)

            if config is None:
                logger.debug(f"Configuration file is empty: {path}")
                return {}

            if not isinstance(config, dict):
                raise ConfigError(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(config).__name__}"
                )

            logger.debug(f"Loaded configuration from {path}")
            return config

        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration structure and values.

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            expected_type = self.VALID_KEYS.get(key)
            if expected_type is None:
                logger.warning(f"Unknown configuration key ignored: {key}")
                continue
            # bool is an int subclass, don't accept it for numeric settings
            if isinstance(value, bool) and expected_type is not bool:
                raise ConfigError(f"Invalid type for '{key}': got bool")
            if not isinstance(value, expected_type):
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        if "auth_mode" in config and config["auth_mode"] not in AUTH_MODES:
            raise ConfigError(
                f"Invalid auth_mode '{config['auth_mode']}'. "
                f"Must be one of: {', '.join(AUTH_MODES)}"
            )

        for key in ("backup_days", "log_retention_count", "rate_limit"):
            if key in config and config[key] < 0:
                raise ConfigError(f"{key} must be >= 0, got {config[key]}")

        for key in (
            "api_timeout",
            "auth_timeout",
            "retry_initial_delay",
            "retry_max_delay",
        ):
            if key in config and config[key] <= 0:
                raise ConfigError(f"{key} must be > 0, got {config[key]}")

        for index, account in enumerate(config.get("accounts") or []):
            self._validate_account(index, account)

    def _validate_account(self, index: int, account: Any) -> None:
        if not isinstance(account, dict):
            raise ConfigError(f"accounts[{index}] must be a mapping")
        user = account.get("user")
        if not isinstance(user, str) or not user.strip():
            raise ConfigError(f"accounts[{index}] needs a 'user' e-mail address")
        for key in ("keyfile", "credfile"):
            if key in account and not isinstance(account[key], str):
                raise ConfigError(f"accounts[{index}].{key} must be a string")

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config
