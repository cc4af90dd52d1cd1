"""
icontact_sync.config - Configuration management module

Contains configuration loading, validation, and default settings.
"""

from icontact_sync.config.generator import generate_default_config, save_config_file
from icontact_sync.config.loader import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_DAEMON_INTERVAL,
    DEFAULT_SERVER_URL,
    ConfigError,
    ConfigLoader,
    resolve_credentials,
)

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_DAEMON_INTERVAL",
    "DEFAULT_SERVER_URL",
    "generate_default_config",
    "resolve_credentials",
    "save_config_file",
]
