"""
Periodic scheduler for reconciliation runs.

The daemon stays in the foreground: it reconciles once on start (unless
told not to), then once per interval until SIGTERM or SIGINT arrives.
Runs execute on the scheduler's own thread so they can never overlap, and
a PID file keeps a second daemon from starting against the same store.
"""

import logging
import os
import signal
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


DEFAULT_PID_FILE = Path.home() / ".icontact-sync" / "daemon.pid"


class DaemonError(Exception):
    """Base exception for daemon errors."""

    pass


class PIDFileError(DaemonError):
    """Raised when the PID file cannot be read or written."""

    pass


class DaemonAlreadyRunningError(DaemonError):
    """Raised when another live daemon holds the PID file."""

    pass


@dataclass
class DaemonStats:
    """Counters for the runs made since the daemon started."""

    started_at: datetime = field(default_factory=datetime.now)
    runs: int = 0
    succeeded: int = 0
    failed: int = 0
    consecutive_failures: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def record(self, success: bool, error: Optional[str] = None) -> None:
        self.runs += 1
        self.last_run_at = datetime.now()
        if success:
            self.succeeded += 1
            self.consecutive_failures = 0
            self.last_error = None
        else:
            self.failed += 1
            self.consecutive_failures += 1
            self.last_error = error


def process_alive(pid: int) -> bool:
    """Return True if a process with this PID exists."""
    try:
        # Signal 0 checks existence without delivering anything
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Alive, owned by another user
        return True
    return True


class PIDFileManager:
    """
    Single-daemon lock backed by a PID file.

    The file is created exclusively, so two daemons racing to start cannot
    both win. A file left behind by a dead process is stale and replaced.
    """

    def __init__(self, pid_file: Optional[Path] = None):
        self.pid_file = Path(pid_file) if pid_file else DEFAULT_PID_FILE

    def read(self) -> Optional[int]:
        """
        Read the recorded PID.

        Returns:
            The PID, or None if there is no PID file

        Raises:
            PIDFileError: If the file exists but holds no valid PID
        """
        try:
            content = self.pid_file.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PIDFileError(f"Cannot read PID file {self.pid_file}: {e}") from e

        try:
            return int(content)
        except ValueError as e:
            raise PIDFileError(f"Invalid PID in {self.pid_file}: {content!r}") from e

    def running_pid(self) -> Optional[int]:
        """PID of the live daemon holding this file, or None."""
        pid = self.read()
        if pid is not None and process_alive(pid):
            return pid
        return None

    def acquire(self) -> None:
        """
        Record this process as the running daemon.

        Raises:
            DaemonAlreadyRunningError: If a live daemon holds the file
            PIDFileError: If the file cannot be written
        """
        try:
            holder = self.running_pid()
        except PIDFileError as e:
            logger.warning(f"{e}; treating it as stale")
            holder = None
        if holder is not None:
            raise DaemonAlreadyRunningError(f"Daemon already running with PID {holder}")
        if self.pid_file.exists():
            logger.warning(f"Removing stale PID file {self.pid_file}")
            self.release()

        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.pid_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError as e:
            raise DaemonAlreadyRunningError(
                f"Another daemon claimed {self.pid_file} while starting"
            ) from e
        except OSError as e:
            raise PIDFileError(f"Cannot create PID file {self.pid_file}: {e}") from e

        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        logger.debug(f"Acquired PID file {self.pid_file} (PID {os.getpid()})")

    def release(self) -> None:
        """Remove the PID file; a missing file is fine."""
        try:
            self.pid_file.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise PIDFileError(f"Cannot remove PID file {self.pid_file}: {e}") from e
        logger.debug(f"Released PID file {self.pid_file}")


class DaemonScheduler:
    """
    Fixed-interval scheduler for reconciliation runs.

    The interval is measured from the end of one run to the start of the
    next. A run that fails or raises is logged and counted; the schedule
    continues.

    Usage:
        scheduler = DaemonScheduler(interval=7200)
        scheduler.set_sync_callback(lambda: engine.run().success)
        scheduler.run()  # blocks until SIGTERM/SIGINT
    """

    def __init__(
        self,
        interval: int = 7200,
        pid_file: Optional[Path] = None,
        run_immediately: bool = True,
    ):
        """
        Initialize the scheduler.

        Args:
            interval: Seconds between runs (default: 7200 = 2 hours)
            pid_file: PID file path, default ~/.icontact-sync/daemon.pid
            run_immediately: Reconcile once before the first wait

        Raises:
            ValueError: If interval is not positive
        """
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        self.interval = interval
        self.run_immediately = run_immediately
        self.pid_lock = PIDFileManager(pid_file)
        self.stats = DaemonStats()
        self._callback: Optional[Callable[[], bool]] = None
        self._stop_event = threading.Event()
        self._running = False
        self._previous_handlers: dict[int, Any] = {}

    @property
    def pid_file(self) -> Path:
        return self.pid_lock.pid_file

    def set_sync_callback(self, callback: Callable[[], bool]) -> None:
        """Set the run function; it returns True when the run succeeded."""
        self._callback = callback

    def _install_signal_handlers(self) -> None:
        for signum in (signal.SIGTERM, signal.SIGINT):
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame: object) -> None:
        logger.info(
            f"Received {signal.Signals(signum).name}, stopping after the current run"
        )
        self._stop_event.set()

    def run_once(self) -> bool:
        """
        Execute one scheduled run.

        Returns:
            True if the run succeeded. Exceptions from the callback are
            logged and reported as False.
        """
        if self._callback is None:
            logger.warning("No sync callback configured, skipping run")
            return False

        logger.info(f"Starting scheduled sync (run #{self.stats.runs + 1})")
        try:
            success = bool(self._callback())
        except Exception as e:
            logger.exception(f"Scheduled sync raised: {e}")
            self.stats.record(False, str(e))
            return False

        self.stats.record(success, None if success else "sync run failed")
        if not success:
            logger.warning(
                f"Scheduled sync failed ({self.stats.consecutive_failures} in a row)"
            )
        return success

    def wait(self, seconds: float) -> bool:
        """
        Wait until the next run is due.

        Returns:
            True when the wait ran out, False if a stop was requested
        """
        return not self._stop_event.wait(seconds)

    def run(self) -> None:
        """
        Run until SIGTERM, SIGINT or stop().

        Raises:
            DaemonAlreadyRunningError: If another daemon holds the PID file
            PIDFileError: If the PID file cannot be managed
        """
        self.pid_lock.acquire()
        logger.info(
            f"Daemon started (PID {os.getpid()}, interval {self.interval}s, "
            f"PID file {self.pid_file})"
        )

        self._stop_event.clear()
        self.stats = DaemonStats()
        self._install_signal_handlers()
        self._running = True
        try:
            if self.run_immediately:
                self.run_once()
            while self.wait(self.interval):
                self.run_once()
        finally:
            self._running = False
            self._restore_signal_handlers()
            self.pid_lock.release()
            logger.info(
                f"Daemon stopped after {self.stats.runs} runs "
                f"({self.stats.failed} failed)"
            )

    def stop(self) -> None:
        """Request shutdown; an in-flight run is allowed to finish."""
        self._stop_event.set()

    def is_running(self) -> bool:
        return self._running

    @staticmethod
    def running_pid(pid_file: Optional[Path] = None) -> Optional[int]:
        """PID of a live daemon for this PID file, or None."""
        return PIDFileManager(pid_file).running_pid()

    @staticmethod
    def signal_running_daemon(pid_file: Optional[Path] = None) -> bool:
        """
        Ask the running daemon to stop with SIGTERM.

        Returns:
            True if the signal was delivered
        """
        pid = PIDFileManager(pid_file).running_pid()
        if pid is None:
            logger.info("No running daemon found")
            return False

        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.warning(f"Daemon process {pid} exited before it could be signalled")
            return False
        except PermissionError:
            logger.error(f"Permission denied signalling PID {pid}")
            return False
        logger.info(f"Sent SIGTERM to daemon (PID {pid})")
        return True


__all__ = [
    "DaemonScheduler",
    "DaemonStats",
    "DaemonError",
    "PIDFileError",
    "DaemonAlreadyRunningError",
    "PIDFileManager",
    "DEFAULT_PID_FILE",
    "process_alive",
]
