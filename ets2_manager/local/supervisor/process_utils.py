import os
import sys
import enum
import shlex
import psutil
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Tuple
from ets2_manager.local.supervisor.results import MisconfigurationError

log = logging.getLogger(__name__)


class SignalKind(enum.Enum):
    TERM = "term"
    KILL = "kill"


class ManagedProcess(NamedTuple):
    """The external server executable the supervisor owns. Immutable once built."""
    executable: Path
    args: Tuple[str, ...]
    pattern: str
    working_dir: Path
    log_path: Path
    library_dirs: Tuple[Path, ...] = ()

    @property
    def command(self) -> List[str]:
        return [str(self.executable), *self.args]


class ProcessInfo(NamedTuple):
    pid: int
    name: str
    status: str
    cpu_percent: float
    memory_rss: int
    create_time: float


def managed_process_from_settings(settings: Any) -> ManagedProcess:
    """
    Builds the ManagedProcess from the static configuration.

    :param settings: The settings object (normally app_globals).
    :raises MisconfigurationError: If the executable or the discovery pattern is not configured.
    """
    executable = str(settings.SERVER_EXECUTABLE or "").strip()
    if not executable:
        raise MisconfigurationError("SERVER_EXECUTABLE is not configured (set ETS2_SERVER_EXECUTABLE).")
    pattern = str(settings.PROCESS_PATTERN or "").strip()
    if not pattern:
        raise MisconfigurationError("PROCESS_PATTERN is empty; the server could not be discovered.")

    executable_path = Path(executable).expanduser()
    server_dir = Path(settings.SERVER_DIR)
    return ManagedProcess(
        executable=executable_path,
        args=tuple(shlex.split(settings.SERVER_ARGS or "", posix=sys.platform != "win32")),
        pattern=pattern,
        # The server resolves its data files relative to its own directory.
        working_dir=executable_path.parent,
        log_path=Path(settings.SERVER_LOG_PATH),
        library_dirs=tuple(server_dir / d for d in settings.LIBRARY_DIRS),
    )


#* --- Process Table Capability ---
class ProcessTable:
    """
    Access to the OS process table. All supervisor logic is written against
    this interface; platform implementations are picked by get_process_table().
    """

    def list_by_name(self, pattern: str) -> List[int]:
        """Returns the PIDs of live processes whose name or command line contains `pattern`, ascending."""
        raise NotImplementedError

    def is_alive(self, pid: int) -> bool:
        raise NotImplementedError

    def signal(self, pid: int, kind: SignalKind) -> bool:
        """
        Delivers a termination signal.

        :return: True if the signal was delivered or the process is already gone,
                 False if the OS refused it.
        """
        raise NotImplementedError

    def spawn(self, process: ManagedProcess, env: Optional[Dict[str, str]] = None) -> int:
        """
        Launches the process detached from the caller's session.

        :return: The PID of the new process.
        :raises OSError: If the process could not be created.
        """
        raise NotImplementedError

    def describe(self, pid: int) -> Optional[ProcessInfo]:
        return None


def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific keyword arguments that detach a child from this session."""
    if sys.platform == "win32":
        return {
            "creationflags": subprocess.DETACHED_PROCESS
            | subprocess.CREATE_NEW_PROCESS_GROUP
            | subprocess.CREATE_NO_WINDOW
        }
    return {"start_new_session": True}


class PsutilProcessTable(ProcessTable):
    """Process table backed by psutil, using POSIX signals."""

    def _own_pids(self) -> set:
        return {os.getpid(), os.getppid()}

    def list_by_name(self, pattern: str) -> List[int]:
        own_pids = self._own_pids()
        matches = []
        for proc in psutil.process_iter(["pid", "name", "cmdline", "status"]):
            info = proc.info
            if info["pid"] in own_pids or info.get("status") == psutil.STATUS_ZOMBIE:
                continue
            name = info.get("name") or ""
            cmdline = " ".join(info.get("cmdline") or [])
            if pattern in name or pattern in cmdline:
                matches.append(info["pid"])
        return sorted(matches)

    def is_alive(self, pid: int) -> bool:
        try:
            proc = psutil.Process(pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # The process exists but belongs to someone else.
            return True

    def signal(self, pid: int, kind: SignalKind) -> bool:
        try:
            proc = psutil.Process(pid)
            if kind is SignalKind.TERM:
                proc.terminate()
            else:
                proc.kill()
            return True
        except psutil.NoSuchProcess:
            return True
        except psutil.AccessDenied:
            log.error(f"Permission denied sending {kind.value} to PID {pid}.")
            return False

    def spawn(self, process: ManagedProcess, env: Optional[Dict[str, str]] = None) -> int:
        with open(process.log_path, "ab") as server_log:
            p = subprocess.Popen(
                process.command,
                cwd=str(process.working_dir),
                stdin=subprocess.DEVNULL,
                stdout=server_log,
                stderr=subprocess.STDOUT,
                env=env,
                **_get_popen_creation_flags(),
            )
        return p.pid

    def describe(self, pid: int) -> Optional[ProcessInfo]:
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                return ProcessInfo(
                    pid=pid,
                    name=proc.name(),
                    status=proc.status(),
                    cpu_percent=proc.cpu_percent(interval=0.1),
                    memory_rss=proc.memory_info().rss,
                    create_time=proc.create_time(),
                )
        except psutil.NoSuchProcess:
            return None
        except psutil.AccessDenied:
            log.debug(f"Access denied reading details of PID {pid}.")
            return None


class WindowsProcessTable(PsutilProcessTable):
    """Windows variant: graceful stop goes through `taskkill` without /F."""

    def signal(self, pid: int, kind: SignalKind) -> bool:
        if kind is SignalKind.KILL:
            return super().signal(pid, kind)
        try:
            result = subprocess.run(["taskkill", "/PID", str(pid)], capture_output=True, text=True, timeout=10)
        except (OSError, subprocess.TimeoutExpired) as e:
            log.error(f"taskkill failed for PID {pid}: {e}")
            return False
        if result.returncode == 0 or not self.is_alive(pid):
            return True
        log.error(f"taskkill refused PID {pid} (rc={result.returncode}): {result.stderr.strip()}")
        return False


def get_process_table() -> ProcessTable:
    """Returns the process table implementation for the current platform."""
    return WindowsProcessTable() if sys.platform == "win32" else PsutilProcessTable()
