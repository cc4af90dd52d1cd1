"""
icontact_sync.utils - Utility module

Common utilities including logging configuration and phone normalization.
"""

from icontact_sync.utils.normalization import normalize_phone
from icontact_sync.utils.paths import DEFAULT_CONFIG_DIR, resolve_config_dir

__all__ = ["normalize_phone", "resolve_config_dir", "DEFAULT_CONFIG_DIR"]
