import logging
from pathlib import Path
from typing import Optional
from logging.handlers import RotatingFileHandler

log = logging.getLogger(__name__)


class StateStore:
    """
    Persisted supervisor state: the PID record and the operator-facing
    monitor log. Tests substitute an in-memory implementation.
    """

    def read_pid(self) -> Optional[int]:
        raise NotImplementedError

    def write_pid(self, pid: int) -> None:
        """:raises OSError: If the record could not be persisted."""
        raise NotImplementedError

    def clear_pid(self) -> None:
        raise NotImplementedError

    def append_log(self, level: str, message: str) -> None:
        raise NotImplementedError


class FileStateStore(StateStore):
    """Keeps the PID in a text file and the monitor log in a size-rotated file."""

    def __init__(self, pid_path: Path, monitor_log_path: Path, max_bytes: int = 1024 * 1024, backup_count: int = 5):
        """
        :param pid_path: File holding the decimal PID of the managed process.
        :param monitor_log_path: Rolling log appended to on every monitor tick.
        :param max_bytes: Size at which the monitor log is rotated.
        :param backup_count: Number of rotated monitor logs to keep.
        """
        self.pid_path = Path(pid_path)
        self.monitor_log_path = Path(monitor_log_path)
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self._monitor_logger: Optional[logging.Logger] = None

    def read_pid(self) -> Optional[int]:
        """
        Reads the PID record.

        :return: The recorded PID, or None if the file is absent or unreadable.
        """
        if not self.pid_path.exists():
            return None
        try:
            pid = int(self.pid_path.read_text().strip())
        except ValueError:
            log.warning(f"PID file '{self.pid_path}' is corrupt. Removing it.")
            self.clear_pid()
            return None
        except OSError as e:
            log.error(f"Failed to read PID file '{self.pid_path}': {e}")
            return None
        if pid <= 0:
            self.clear_pid()
            return None
        return pid

    def write_pid(self, pid: int) -> None:
        """Atomically writes the PID record."""
        self.pid_path.parent.mkdir(parents=True, exist_ok=True)
        temp_pid_path = self.pid_path.with_suffix(".tmp")
        try:
            temp_pid_path.write_text(f"{pid}\n")
            temp_pid_path.replace(self.pid_path)
        finally:
            temp_pid_path.unlink(missing_ok=True)

    def clear_pid(self) -> None:
        try:
            self.pid_path.unlink(missing_ok=True)
        except OSError as e:
            log.error(f"Failed to remove PID file '{self.pid_path}': {e}")

    def _get_monitor_logger(self) -> logging.Logger:
        if self._monitor_logger is None:
            self.monitor_log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                self.monitor_log_path, maxBytes=self.max_bytes, backupCount=self.backup_count, encoding="utf-8"
            )
            handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", "%Y-%m-%d %H:%M:%S"))
            monitor_logger = logging.getLogger(f"ets2_manager.monitor_log.{id(self)}")
            monitor_logger.propagate = False
            monitor_logger.setLevel(logging.DEBUG)
            monitor_logger.addHandler(handler)
            self._monitor_logger = monitor_logger
        return self._monitor_logger

    def append_log(self, level: str, message: str) -> None:
        try:
            self._get_monitor_logger().info(f"{level.upper():<7} {message}")
        except OSError as e:
            log.error(f"Failed to append to monitor log '{self.monitor_log_path}': {e}")

    def tail_log(self, lines: int) -> list:
        """Returns the last `lines` lines of the current monitor log."""
        if not self.monitor_log_path.exists():
            return []
        with self.monitor_log_path.open("r", encoding="utf-8", errors="replace") as f:
            return [line.rstrip("\n") for line in f.readlines()[-lines:]]

    def close(self) -> None:
        if self._monitor_logger is not None:
            for handler in list(self._monitor_logger.handlers):
                self._monitor_logger.removeHandler(handler)
                handler.close()
            self._monitor_logger = None
