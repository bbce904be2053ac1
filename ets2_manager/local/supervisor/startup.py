import os
import sys
import stat
import shutil
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional
from ets2_manager.log import log_success
from ets2_manager.local.supervisor.process_utils import ManagedProcess
from ets2_manager.local.supervisor.results import ErrorKind, OperationResult

if TYPE_CHECKING:
    from .supervisor import ServerSupervisor

log = logging.getLogger(__name__)


def ensure_executable(process: ManagedProcess) -> Optional[str]:
    """
    Verifies the server executable exists, adding the execute bit on POSIX if missing.

    :return: None if the executable can be launched, otherwise the reason it cannot.
    """
    exe = process.executable
    if not exe.is_file():
        return f"Server executable not found at '{exe}'."
    if sys.platform != "win32" and not os.access(exe, os.X_OK):
        try:
            exe.chmod(exe.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            log.info(f"Added execute permission to '{exe}'.")
        except OSError as e:
            return f"Server executable '{exe}' is not executable and chmod failed: {e}"
    return None


def build_launch_env(process: ManagedProcess) -> Dict[str, str]:
    """Returns the environment for the server, with its library directories on the loader path."""
    env = os.environ.copy()
    if sys.platform == "win32" or not process.library_dirs:
        return env
    paths = [str(d) for d in process.library_dirs]
    if env.get("LD_LIBRARY_PATH"):
        paths.append(env["LD_LIBRARY_PATH"])
    env["LD_LIBRARY_PATH"] = os.pathsep.join(paths)
    log.debug(f"LD_LIBRARY_PATH set to: {env['LD_LIBRARY_PATH']}")
    return env


def sync_server_packages(source_dir: Path, pattern: str, targets: List[Path]) -> int:
    """
    Copies the server_packages files exported from the game client next to the
    server binary and into the game data directory. Failures are only logged.

    :return: The number of files copied.
    """
    files = sorted(p for p in Path(source_dir).glob(pattern) if p.is_file())
    if not files:
        log.warning(f"No '{pattern}' files found in '{source_dir}'. The server may refuse to start.")
        return 0

    copied = 0
    for target in targets:
        try:
            target.mkdir(parents=True, exist_ok=True)
            for f in files:
                if f.parent.resolve() == target.resolve():
                    continue
                shutil.copy2(f, target / f.name)
                copied += 1
        except OSError as e:
            log.warning(f"Could not copy server packages to '{target}': {e}")
    log.debug(f"Copied {copied} server package file(s).")
    return copied


def write_server_log_header(process: ManagedProcess, timestamp: str) -> None:
    try:
        process.log_path.parent.mkdir(parents=True, exist_ok=True)
        with process.log_path.open("a", encoding="utf-8") as f:
            f.write(f"Starting ETS2 server at {timestamp}\n")
            f.write(f"Command: {' '.join(process.command)} (cwd: {process.working_dir})\n")
    except OSError as e:
        log.warning(f"Could not write to server log '{process.log_path}': {e}")


def find_running(supervisor: "ServerSupervisor") -> List[int]:
    """Returns the live PIDs matching the managed process pattern."""
    return supervisor.table.list_by_name(supervisor.process.pattern)


def start_server(supervisor: "ServerSupervisor") -> OperationResult:
    """
    Launches the managed server if it is not already running.
    The caller must hold the supervisor lock.

    :param supervisor: The ServerSupervisor instance.
    """
    process, store, table = supervisor.process, supervisor.store, supervisor.table

    problem = ensure_executable(process)
    if problem:
        log.error(problem)
        return OperationResult.failure(ErrorKind.EXECUTABLE_MISSING, problem)

    running = find_running(supervisor)
    if running:
        pid = running[0]
        if store.read_pid() not in running:
            supervisor.record_pid(pid)
        message = f"ETS2 server is already running (PID {pid}). Use 'stop' or 'restart'."
        log.warning(message)
        return OperationResult.success(message, pid=pid, noop=True)

    # Nothing matches, so any record left behind is stale.
    if store.read_pid() is not None:
        log.debug("Clearing stale PID record before launch.")
        store.clear_pid()

    settings = supervisor.settings
    if settings.SYNC_SERVER_PACKAGES:
        sync_server_packages(
            Path(settings.SERVER_DIR),
            settings.SERVER_PACKAGES_GLOB,
            [process.working_dir, Path(settings.GAME_DATA_DIR)],
        )

    write_server_log_header(process, supervisor.clock.now())
    log.info(f"Starting ETS2 server: {' '.join(process.command)}")
    try:
        pid = table.spawn(process, build_launch_env(process))
    except OSError as e:
        message = f"Failed to launch ETS2 server: {e}"
        log.error(message)
        return OperationResult.failure(ErrorKind.SPAWN_FAILED, message)

    log.info(f"Server started with PID: {pid}. Output is written to '{process.log_path}'.")
    pid_written = supervisor.record_pid(pid)

    supervisor.clock.sleep(supervisor.startup_grace)
    if not table.is_alive(pid):
        store.clear_pid()
        message = f"Server process {pid} has already terminated! Check '{process.log_path}' for errors."
        log.error(message)
        return OperationResult.failure(ErrorKind.PROCESS_TERMINATED_IMMEDIATELY, message, pid=pid)

    if not pid_written:
        return OperationResult.failure(
            ErrorKind.PID_RECORD_WRITE_FAILED,
            f"Server is running (PID {pid}) but its PID record could not be written.",
            pid=pid,
        )

    message = f"ETS2 server is running (PID {pid})."
    log_success(log, message)
    return OperationResult.success(message, pid=pid)
