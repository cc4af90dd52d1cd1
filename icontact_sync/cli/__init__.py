"""CLI package for icontact_sync."""

from icontact_sync.cli.formatters import (
    format_sync_run,
    show_contacts,
    show_plan_details,
    show_sync_runs,
)
from icontact_sync.cli.main import (
    DEFAULT_CONFIG_FILE,
    build_client,
    cli,
    get_config_dir,
    get_config_file,
    get_pid_file,
    open_store,
)
from icontact_sync.utils import DEFAULT_CONFIG_DIR

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_FILE",
    "build_client",
    "cli",
    "format_sync_run",
    "get_config_dir",
    "get_config_file",
    "get_pid_file",
    "open_store",
    "show_contacts",
    "show_plan_details",
    "show_sync_runs",
]
