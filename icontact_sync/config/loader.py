"""
YAML configuration for icontact-sync.

Settings live in config.yaml inside the configuration directory. Command
line flags override them; credentials may also come from the environment.
"""

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from icontact_sync.utils.paths import CONFIG_DIR_ENV_VAR, DEFAULT_CONFIG_DIR

CONFIG_FILE_NAME = "config.yaml"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / CONFIG_FILE_NAME

DEFAULT_SERVER_URL = "https://contacts.icloud.com"

USERNAME_ENV_VAR = "ICONTACT_SYNC_USERNAME"
DEFAULT_PASSWORD_ENV_VAR = "ICONTACT_SYNC_APP_PASSWORD"

# Run period; the original cron fired every 120 minutes
DEFAULT_DAEMON_INTERVAL = "2h"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


_NUMBER = (int, float)

# Known keys and their accepted types; unknown keys pass through untouched
VALID_KEYS: dict[str, type[Any] | tuple[type[Any], ...]] = {
    "dry_run": bool,
    "verbose": bool,
    "server_url": str,
    "username": str,
    "password": str,
    "password_env": str,
    "request_timeout": _NUMBER,
    "max_retries": int,
    "initial_retry_delay": _NUMBER,
    "max_retry_delay": _NUMBER,
    "db_path": str,
    "log_dir": str,
    "log_retention_count": int,
    "daemon_interval": (str, int),
    "daemon_pid_file": str,
}

# key -> (predicate, requirement shown in the error)
RANGE_RULES: dict[str, tuple[Callable[[Any], bool], str]] = {
    "max_retries": (lambda v: v >= 1, ">= 1"),
    "request_timeout": (lambda v: v > 0, "> 0"),
    "initial_retry_delay": (lambda v: v > 0, "> 0"),
    "max_retry_delay": (lambda v: v > 0, "> 0"),
    "log_retention_count": (lambda v: v >= 0, ">= 0"),
    "server_url": (
        lambda v: v.startswith(("http://", "https://")),
        "an http:// or https:// URL",
    ),
}


def _type_label(expected: type[Any] | tuple[type[Any], ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _has_type(value: Any, expected: type[Any] | tuple[type[Any], ...]) -> bool:
    # bool is an int subclass but never a valid number here
    if isinstance(value, bool):
        return expected is bool
    return isinstance(value, expected)


class ConfigLoader:
    """
    Reads config.yaml from the configuration directory.

    A missing or empty file is an empty configuration. The directory comes
    from the constructor, then $ICONTACT_SYNC_CONFIG_DIR, then
    ~/.icontact-sync.

    Usage:
        config = ConfigLoader().load_and_validate()
        config = ConfigLoader().load_from_file("/etc/icontact-sync.yaml")
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = CONFIG_FILE_NAME
    ):
        if config_dir is None:
            env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
            config_dir = Path(env_dir) if env_dir else DEFAULT_CONFIG_DIR
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / config_file

    def load(self) -> dict[str, Any]:
        """Load config.yaml from the configuration directory."""
        return self.load_from_file(self.config_file)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load one YAML configuration file.

        Returns:
            The mapping in the file; {} when it is missing or empty

        Raises:
            ConfigError: On unreadable files, YAML syntax errors, or a
                         top level that is not a mapping
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"No configuration file at {path}")
            return {}
        except OSError as e:
            raise ConfigError(f"Cannot read configuration file {path}: {e}") from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML in {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"{path} must contain a YAML dictionary, not {type(data).__name__}"
            )
        logger.debug(f"Loaded {len(data)} settings from {path}")
        return data

    def validate(self, config: dict[str, Any]) -> None:
        """
        Check the types and ranges of known keys.

        Raises:
            ConfigError: On the first invalid value
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, not {type(config).__name__}"
            )

        for key, expected in VALID_KEYS.items():
            if key not in config:
                continue
            value = config[key]
            if not _has_type(value, expected):
                raise ConfigError(
                    f"Invalid type for '{key}': expected {_type_label(expected)}, "
                    f"got {type(value).__name__}"
                )
            rule = RANGE_RULES.get(key)
            if rule is not None and not rule[0](value):
                raise ConfigError(f"{key} must be {rule[1]}, got {value!r}")

    def load_and_validate(self) -> dict[str, Any]:
        """Load config.yaml and validate it."""
        config = self.load()
        self.validate(config)
        return config


def resolve_credentials(config: dict[str, Any]) -> tuple[str | None, str | None]:
    """
    Resolve the CardDAV username and app password.

    Priority for the password:
        1. ``password`` in config (direct value, not recommended)
        2. The environment variable named by ``password_env``
           (default ICONTACT_SYNC_APP_PASSWORD)

    The username comes from ``username`` in config or ICONTACT_SYNC_USERNAME.

    Returns:
        Tuple of (username, password); either may be None
    """
    username = config.get("username") or os.environ.get(USERNAME_ENV_VAR)

    password = config.get("password")
    if not password:
        env_var_name = config.get("password_env", DEFAULT_PASSWORD_ENV_VAR)
        password = os.environ.get(env_var_name)

    return username, password
