"""
Logging setup for icontact_sync.

All package loggers hang below the "icontact_sync" logger, which gets two
handlers: a console handler on stderr (colored on a capable terminal) and
a daily file in the log directory that always records DEBUG. Levels can be
overridden from the environment:

    ICONTACT_SYNC_DEBUG=1          force DEBUG
    ICONTACT_SYNC_LOG_LEVEL=WARN   any standard level name
    ICONTACT_SYNC_LOG_FILE=path    explicit log file; "none" turns it off
"""

import copy
import logging
import os
import sys
from datetime import date
from pathlib import Path
from typing import Optional, TextIO

LOGGER_NAME = "icontact_sync"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_FORMAT = (
    "%(asctime)s %(levelname)-8s %(name)s [%(filename)s:%(lineno)d] %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ENV_LOG_LEVEL = "ICONTACT_SYNC_LOG_LEVEL"
ENV_DEBUG = "ICONTACT_SYNC_DEBUG"
ENV_LOG_FILE = "ICONTACT_SYNC_LOG_FILE"

LOG_FILE_PREFIX = "icontact_sync_"
DEFAULT_LOG_DIR = Path.home() / ".icontact-sync" / "logs"

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FILE_LOGGING_OFF = frozenset({"", "none", "disabled", "off"})

# ANSI SGR codes by level number
_LEVEL_COLORS = {
    logging.DEBUG: 36,
    logging.INFO: 32,
    logging.WARNING: 33,
    logging.ERROR: 31,
    logging.CRITICAL: 35,
}


def _color_enabled(stream: TextIO) -> bool:
    isatty = getattr(stream, "isatty", None)
    if isatty is None or not isatty():
        return False
    if os.environ.get("NO_COLOR"):
        return False
    return os.environ.get("TERM") != "dumb"


class ColoredFormatter(logging.Formatter):
    """Formatter that wraps the level name and message in ANSI colors."""

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
        stream: Optional[TextIO] = None,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and _color_enabled(stream or sys.stdout)

    def format(self, record: logging.LogRecord) -> str:
        code = _LEVEL_COLORS.get(record.levelno)
        if not self.use_colors or code is None:
            return super().format(record)

        # Other handlers share the record, so color a copy
        tinted = copy.copy(record)
        start, end = f"\033[{code}m", "\033[0m"
        tinted.levelname = f"{start}{record.levelname}{end}"
        tinted.msg = f"{start}{record.getMessage()}{end}"
        tinted.args = None
        return super().format(tinted)


def get_log_level_from_env() -> int:
    """
    Level requested through the environment.

    ICONTACT_SYNC_DEBUG wins over ICONTACT_SYNC_LOG_LEVEL; an unknown level
    name means INFO.
    """
    if os.environ.get(ENV_DEBUG, "").strip().lower() in _TRUTHY:
        return logging.DEBUG

    name = os.environ.get(ENV_LOG_LEVEL, "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Where the log file goes, or None when file logging is switched off.

    ICONTACT_SYNC_LOG_FILE takes precedence over the daily file
    icontact_sync_YYYYMMDD.log in log_dir (default ~/.icontact-sync/logs).
    """
    override = os.environ.get(ENV_LOG_FILE)
    if override is not None:
        if override.strip().lower() in _FILE_LOGGING_OFF:
            return None
        return Path(override).expanduser()

    stamp = date.today().strftime("%Y%m%d")
    return (log_dir or DEFAULT_LOG_DIR) / f"{LOG_FILE_PREFIX}{stamp}.log"


def _console_handler(level: int, verbose: bool, use_colors: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    fmt = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    if use_colors:
        handler.setFormatter(ColoredFormatter(fmt, DATE_FORMAT, stream=sys.stderr))
    else:
        handler.setFormatter(logging.Formatter(fmt, DATE_FORMAT))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the icontact_sync logger.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: Console level; taken from the environment when None
        verbose: Force DEBUG and use the detailed console format
        log_dir: Directory for the daily log file
        enable_file_logging: Attach the file handler
        use_colors: Color console output when the terminal supports it

    Returns:
        The package logger
    """
    if verbose:
        level = logging.DEBUG
    elif level is None:
        level = get_log_level_from_env()

    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.setLevel(level)
    logger.propagate = False
    logger.addHandler(_console_handler(level, verbose, use_colors))

    path = get_log_file_path(log_dir) if enable_file_logging else None
    if path is None:
        return logger

    try:
        logger.addHandler(_file_handler(path))
    except OSError as e:
        logger.warning(f"Could not create log file {path}: {e}")
        return logger

    # The file handler records DEBUG whatever the console shows
    logger.setLevel(logging.DEBUG)
    logger.debug(f"Logging to {path}")
    return logger


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Delete all but the newest keep_count icontact_sync_*.log files.

    keep_count <= 0 disables cleanup. Returns the number of files removed.
    """
    directory = log_dir or DEFAULT_LOG_DIR
    if keep_count <= 0 or not directory.is_dir():
        return 0

    newest_first = sorted(
        directory.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    removed = 0
    for stale in newest_first[keep_count:]:
        try:
            stale.unlink()
        except OSError as e:
            logging.getLogger(LOGGER_NAME).debug(f"Could not remove {stale}: {e}")
            continue
        removed += 1
    return removed


def get_logger(name: str) -> logging.Logger:
    """Logger for name, placed under the icontact_sync hierarchy."""
    if name != LOGGER_NAME and not name.startswith(LOGGER_NAME + "."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)


__all__ = [
    "setup_logging",
    "get_logger",
    "cleanup_old_logs",
    "ColoredFormatter",
    "get_log_level_from_env",
    "get_log_file_path",
    "LOGGER_NAME",
    "DEFAULT_LOG_DIR",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
]
