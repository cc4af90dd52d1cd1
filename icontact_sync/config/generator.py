"""
Configuration file generator for iCloud contacts reconciliation.

Writes a commented YAML template documenting every supported option.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate the default YAML configuration with all options documented.

    Every option is commented out, so loading the template yields an
    empty configuration and the built-in defaults apply.

    Returns:
        String containing the YAML template
    """
    return """# iCloud Contacts Sync Configuration
# ==================================
#
# Default options for icontact-sync. CLI arguments override these values.
# Save as ~/.icontact-sync/config.yaml and uncomment what you need.

# Remote Address Book
# -------------------

# CardDAV server to read contacts from
# Default: https://contacts.icloud.com
# server_url: https://contacts.icloud.com

# Apple ID used for HTTP Basic authentication
# Can also be set with ICONTACT_SYNC_USERNAME
# username: someone@icloud.com

# App-specific password. Prefer keeping it out of this file and naming
# the environment variable that holds it instead.
# Default variable: ICONTACT_SYNC_APP_PASSWORD
# password_env: ICONTACT_SYNC_APP_PASSWORD

# Connect/read timeout for each request, in seconds
# Default: 30
# request_timeout: 30

# Retries for rate-limited (429) or failing (5xx) requests
# Default: 5
# max_retries: 5
# initial_retry_delay: 1.0
# max_retry_delay: 60.0


# Contact Store
# -------------

# SQLite database holding contacts and the sync run history
# Default: ~/.icontact-sync/contacts.db
# db_path: ~/.icontact-sync/contacts.db


# Sync Behavior
# -------------

# Compute the write plan without applying it
# Default: false
# dry_run: false


# Logging
# -------

# Default: false
# verbose: true

# Directory for daily log files
# Default: ~/.icontact-sync/logs
# log_dir: ~/.icontact-sync/logs

# Number of daily log files to keep (0 keeps everything)
# Default: 10
# log_retention_count: 10


# Daemon
# ------

# Interval between runs ('30s', '15m', '2h', '1d' or seconds)
# Default: 2h
# daemon_interval: 2h

# Default: daemon.pid in the configuration directory
# daemon_pid_file: ~/.icontact-sync/daemon.pid
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save the default configuration file to the given path.

    Parent directories are created with mode 0700 and the file is
    written with mode 0600 since it may end up holding credentials.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If False, fail when the file already exists

    Returns:
        Tuple of (success, error_message)
    """
    try:
        config_path = config_path.expanduser().resolve()

        if config_path.exists() and not overwrite:
            return (
                False,
                f"Configuration file already exists: {config_path}\n"
                "Use --force to overwrite.",
            )

        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        config_path.chmod(0o600)

        logger.info(f"Created configuration file: {config_path}")
        return (True, None)

    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)
