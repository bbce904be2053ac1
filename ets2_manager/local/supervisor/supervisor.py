import logging
from typing import Any, Callable, List, NamedTuple, Optional
from filelock import FileLock, Timeout
from ets2_manager.local import app_globals
from ets2_manager.log import log_success
from ets2_manager.local.supervisor import monitor, shutdown, startup
from ets2_manager.local.supervisor.persistence import FileStateStore, StateStore
from ets2_manager.local.supervisor.results import Clock, ErrorKind, OperationResult, PollPolicy
from ets2_manager.local.supervisor.schedule import (ScheduleEntry, Scheduler, build_monitor_command,
                                                   get_scheduler, validate_period)
from ets2_manager.local.supervisor.process_utils import (ManagedProcess, ProcessInfo, ProcessTable,
                                                        get_process_table, managed_process_from_settings)

log = logging.getLogger(__name__)


class StatusReport(NamedTuple):
    running: bool
    recorded_pid: Optional[int]
    pids: List[int]
    details: List[ProcessInfo]


class ServerSupervisor:
    """
    Keeps exactly one instance of the ETS2 dedicated server running.

    The supervisor owns the server's lifecycle but never its internals. Every
    lifecycle operation runs while holding an inter-process file lock, so a
    scheduled monitor tick cannot interleave with a manual stop or restart.
    Operations report their outcome as an OperationResult instead of raising.
    """

    def __init__(
        self,
        process: ManagedProcess,
        store: StateStore,
        table: ProcessTable,
        scheduler: Scheduler,
        settings: Any = app_globals,
        clock: Optional[Clock] = None,
        lock: Optional[Any] = None,
    ) -> None:
        """
        :param process: The managed server process.
        :param store: Where the PID record and the monitor log live.
        :param table: Access to the OS process table.
        :param scheduler: The host's recurring-task registry.
        :param settings: Settings object providing the timing values.
        :param clock: Sleep/time source; a real clock if omitted.
        :param lock: Context manager guarding lifecycle operations; a FileLock if omitted.
        """
        self.process = process
        self.store = store
        self.table = table
        self.scheduler = scheduler
        self.settings = settings
        self.clock = clock or Clock()
        self.lock = lock if lock is not None else FileLock(str(settings.LOCK_FILE_PATH), timeout=settings.LOCK_TIMEOUT)

        self.startup_grace = float(settings.STARTUP_GRACE_SECONDS)
        self.stop_policy = PollPolicy(int(settings.STOP_POLL_ATTEMPTS), float(settings.STOP_POLL_INTERVAL))
        self.kill_policy = PollPolicy(int(settings.KILL_POLL_ATTEMPTS), float(settings.KILL_POLL_INTERVAL))
        self.restart_settle = float(settings.RESTART_SETTLE_SECONDS)
        self.monitor_policy = PollPolicy(int(settings.MONITOR_RESTART_ATTEMPTS), float(settings.MONITOR_VERIFY_SECONDS))

    @classmethod
    def from_settings(cls, settings: Any = app_globals) -> "ServerSupervisor":
        """
        Builds a supervisor wired to the real platform services.

        :raises MisconfigurationError: If the server executable is not configured.
        """
        store = FileStateStore(
            settings.PID_FILE_PATH,
            settings.MONITOR_LOG_PATH,
            max_bytes=settings.MONITOR_LOG_MAX_BYTES,
            backup_count=settings.MONITOR_LOG_BACKUP_COUNT,
        )
        return cls(managed_process_from_settings(settings), store, get_process_table(), get_scheduler(), settings)

    def _run_locked(self, operation: str, func: Callable[[], OperationResult]) -> OperationResult:
        try:
            with self.lock:
                return func()
        except Timeout:
            message = f"Another manager operation is in progress; '{operation}' was not run."
            log.error(message)
            if operation == "monitor":
                self.store.append_log("warning", message)
            return OperationResult.failure(ErrorKind.SUPERVISOR_BUSY, message)

    def record_pid(self, pid: int) -> bool:
        """Persists the PID record, logging instead of raising on failure."""
        try:
            self.store.write_pid(pid)
            return True
        except OSError as e:
            log.error(f"Failed to write PID record for PID {pid}: {e}")
            return False

    #* --- Lifecycle operations ---
    def start(self) -> OperationResult:
        """Starts the server unless a matching process is already running."""
        return self._run_locked("start", lambda: startup.start_server(self))

    def stop(self) -> OperationResult:
        """Stops the server and any stray instances, removing the PID record."""
        return self._run_locked("stop", lambda: shutdown.stop_server(self))

    def restart(self) -> OperationResult:
        """Stops, waits for the settle delay, then starts the server."""
        return self._run_locked("restart", self.restart_unlocked)

    def check_and_restart(self) -> OperationResult:
        """Runs one monitor tick."""
        return self._run_locked("monitor", lambda: monitor.check_and_restart(self))

    def restart_unlocked(self) -> OperationResult:
        """
        Restart sequence without taking the lock. A failed stop does not
        prevent the start, but it is reported in the result.
        """
        stop_result = shutdown.stop_server(self)
        stop_note = ""
        if not stop_result.ok:
            stop_note = f" Stop reported a failure: {stop_result.message}"
            log.warning(f"Stop failed during restart; starting anyway.{stop_note}")

        self.clock.sleep(self.restart_settle)
        start_result = startup.start_server(self)

        if start_result.noop and not stop_result.ok:
            return OperationResult.failure(
                stop_result.error,
                f"The previous server instance is still running; restart did not happen.{stop_note}",
                pid=start_result.pid,
            )
        if not start_result.ok:
            return OperationResult.failure(start_result.error, f"{start_result.message}{stop_note}", pid=start_result.pid)

        running = startup.find_running(self)
        if not running:
            return OperationResult.failure(
                ErrorKind.PROCESS_TERMINATED_IMMEDIATELY,
                f"ETS2 server was not found running after restart.{stop_note}",
                pid=start_result.pid,
            )

        pid = start_result.pid if start_result.pid in running else running[0]
        message = f"ETS2 server restarted (PID {pid}).{stop_note}"
        log_success(log, "ETS2 server restart complete.")
        return OperationResult(True, message, stop_result.error, pid)

    #* --- Schedule ---
    def monitor_entry(self, period_minutes: Optional[int] = None) -> ScheduleEntry:
        if period_minutes is None:
            period_minutes = self.settings.MONITOR_PERIOD_MINUTES
        period = validate_period(period_minutes)
        return ScheduleEntry(self.settings.MONITOR_SCHEDULE_ID, build_monitor_command(self.settings), period)

    def install_schedule(self, period_minutes: Optional[int] = None) -> OperationResult:
        """
        Registers the recurring monitor tick. Repeated calls never create a second registration.

        :param period_minutes: Interval between ticks; MONITOR_PERIOD_MINUTES if omitted.
        :raises ValueError: If the period is outside 1-59 minutes.
        """
        entry = self.monitor_entry(period_minutes)
        try:
            changed = self.scheduler.upsert(entry)
        except Exception as e:
            message = f"Failed to register the monitor schedule: {e}"
            log.error(message)
            return OperationResult.failure(ErrorKind.SCHEDULE_INSTALL_FAILED, message)

        if not changed:
            message = f"Monitor is already scheduled every {entry.period_minutes} minute(s)."
            log.info(message)
            return OperationResult.success(message, noop=True)
        message = f"Monitor scheduled every {entry.period_minutes} minute(s)."
        log_success(log, message)
        return OperationResult.success(message)

    def remove_schedule(self) -> OperationResult:
        """Removes every monitor registration, whatever period it was installed with."""
        entry = ScheduleEntry(self.settings.MONITOR_SCHEDULE_ID, build_monitor_command(self.settings), 0)
        try:
            removed = self.scheduler.remove(entry)
        except Exception as e:
            message = f"Failed to remove the monitor schedule: {e}"
            log.error(message)
            return OperationResult.failure(ErrorKind.SCHEDULE_INSTALL_FAILED, message)
        if not removed:
            return OperationResult.success("No monitor schedule was installed.", noop=True)
        message = f"Removed {removed} monitor schedule entr{'y' if removed == 1 else 'ies'}."
        log_success(log, message)
        return OperationResult.success(message)

    #* --- Status ---
    def status(self) -> StatusReport:
        """Reports the running state without changing anything."""
        pids = startup.find_running(self)
        details = [info for info in (self.table.describe(pid) for pid in pids) if info is not None]
        return StatusReport(bool(pids), self.store.read_pid(), pids, details)
