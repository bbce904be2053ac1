import logging
from typing import TYPE_CHECKING, List
from ets2_manager.log import log_success
from ets2_manager.local.supervisor.startup import find_running
from ets2_manager.local.supervisor.results import ErrorKind, OperationResult

if TYPE_CHECKING:
    from .supervisor import ServerSupervisor

log = logging.getLogger(__name__)


def _heal_pid_record(supervisor: "ServerSupervisor", matches: List[int]) -> int:
    """
    Makes sure the PID record names one of the running server processes.

    :return: The PID the record names afterwards.
    """
    recorded = supervisor.store.read_pid()
    if recorded in matches:
        return recorded

    pid = matches[0]
    if recorded is None:
        reason = "PID record missing"
    else:
        reason = f"PID record {recorded} is stale"
    log.warning(f"{reason}; recording running server PID {pid}.")
    if supervisor.record_pid(pid):
        supervisor.store.append_log("warning", f"{reason}. Recorded running server PID {pid}.")
    return pid


def check_and_restart(supervisor: "ServerSupervisor") -> OperationResult:
    """
    One monitor tick: restarts the server if no matching process is running.
    The caller must hold the supervisor lock.

    :param supervisor: The ServerSupervisor instance.
    """
    store = supervisor.store
    matches = find_running(supervisor)

    if matches:
        pid = _heal_pid_record(supervisor, matches)
        if len(matches) > 1:
            log.warning(f"Multiple server processes are running: {matches}.")
            store.append_log("warning", f"Multiple server processes are running: {matches}.")
        if supervisor.settings.MONITOR_HEARTBEAT:
            store.append_log("info", f"ETS2 server is running (PID {pid}).")
        log.debug(f"Monitor tick: server running (PID {pid}).")
        return OperationResult.success(f"ETS2 server is running (PID {pid}).", pid=pid, noop=True)

    log.warning("ETS2 server not running. Restarting...")
    store.append_log("warning", "ETS2 server not running. Restarting...")

    policy = supervisor.monitor_policy
    last = OperationResult.failure(ErrorKind.SPAWN_FAILED, "No restart attempted.")
    for attempt in range(1, max(policy.attempts, 1) + 1):
        last = supervisor.restart_unlocked()
        supervisor.clock.sleep(policy.interval)

        matches = find_running(supervisor)
        if matches:
            pid = _heal_pid_record(supervisor, matches)
            message = f"Restart attempt {attempt} succeeded. ETS2 server is running (PID {pid})."
            log_success(log, message)
            store.append_log("success", message)
            return OperationResult.success(message, pid=pid)

        log.error(f"Restart attempt {attempt}/{policy.attempts} failed: {last.message}")
        store.append_log("error", f"Restart attempt {attempt} failed: {last.message}")

    message = f"ETS2 server could not be restarted after {policy.attempts} attempt(s): {last.message}"
    store.append_log("error", message)
    return OperationResult.failure(last.error or ErrorKind.PROCESS_TERMINATED_IMMEDIATELY, message)
