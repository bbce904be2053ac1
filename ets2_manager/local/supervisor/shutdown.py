import logging
from typing import TYPE_CHECKING, Iterable, List, Optional
from ets2_manager.log import log_success
from ets2_manager.local.supervisor.process_utils import SignalKind
from ets2_manager.local.supervisor.results import ErrorKind, OperationResult, PollPolicy

if TYPE_CHECKING:
    from .supervisor import ServerSupervisor

log = logging.getLogger(__name__)


def identify_target(supervisor: "ServerSupervisor") -> Optional[int]:
    """
    Picks the process to stop: the recorded PID if it still names a live
    server process, otherwise the first process matching the pattern.

    :param supervisor: The ServerSupervisor instance.
    :return: The PID to stop, or None if no server process is running.
    """
    matches = supervisor.table.list_by_name(supervisor.process.pattern)
    recorded = supervisor.store.read_pid()
    if recorded is not None:
        if recorded in matches:
            log.debug(f"Found PID record with live PID: {recorded}")
            return recorded
        log.info(f"PID {recorded} from the PID record is not a running server. Ignoring it.")
    else:
        log.info("No PID record found. Trying to find the process.")
    if matches:
        log.info(f"Found server with PID: {matches[0]}")
        return matches[0]
    return None


def wait_for_exit(supervisor: "ServerSupervisor", pids: Iterable[int], policy: PollPolicy) -> List[int]:
    """
    Polls until every PID has exited or the policy is exhausted.

    :return: The PIDs still alive when polling stopped.
    """
    alive = [pid for pid in pids if supervisor.table.is_alive(pid)]
    attempt = 0
    while alive and attempt < policy.attempts:
        attempt += 1
        log.debug(f"Waiting for {len(alive)} process(es) to exit ({attempt}/{policy.attempts})...")
        supervisor.clock.sleep(policy.interval)
        alive = [pid for pid in alive if supervisor.table.is_alive(pid)]
    return alive


def _terminate_target(supervisor: "ServerSupervisor", pid: int) -> bool:
    """
    Sends a graceful termination to `pid`, escalating to a forceful kill.

    :return: False if the OS refused a signal.
    """
    table = supervisor.table
    log.info(f"Stopping ETS2 server (PID: {pid})...")
    delivered = table.signal(pid, SignalKind.TERM)

    if wait_for_exit(supervisor, [pid], supervisor.stop_policy):
        log.warning(f"Server (PID {pid}) not responding. Force stopping...")
        delivered = table.signal(pid, SignalKind.KILL) and delivered
    return delivered


def _sweep_strays(supervisor: "ServerSupervisor") -> bool:
    """
    Forcefully kills every remaining process matching the pattern.

    :return: False if the OS refused a signal.
    """
    strays = supervisor.table.list_by_name(supervisor.process.pattern)
    if not strays:
        return True
    log.warning(f"Found {len(strays)} additional server process(es): {strays}. Cleaning up...")
    delivered = True
    for pid in strays:
        if not supervisor.table.signal(pid, SignalKind.KILL):
            delivered = False
    return delivered


def stop_server(supervisor: "ServerSupervisor") -> OperationResult:
    """
    Runs the full shutdown sequence for the managed server.
    The caller must hold the supervisor lock.

    :param supervisor: The ServerSupervisor instance.
    """
    table, pattern = supervisor.table, supervisor.process.pattern
    try:
        target = identify_target(supervisor)
        delivered = True
        if target is not None:
            delivered = _terminate_target(supervisor, target)

        delivered = _sweep_strays(supervisor) and delivered
        remaining = wait_for_exit(supervisor, table.list_by_name(pattern), supervisor.kill_policy)
    finally:
        supervisor.store.clear_pid()

    if remaining:
        if delivered:
            error = ErrorKind.STILL_ALIVE_AFTER_FORCE_KILL
            message = f"Server process(es) {remaining} survived a forceful kill."
        else:
            error = ErrorKind.SIGNAL_FAILED
            message = f"Permission denied stopping server process(es) {remaining}."
        message += " Manual intervention may be required."
        log.error(message)
        return OperationResult.failure(error, message, pid=remaining[0])

    if not delivered:
        # Everything is gone regardless, e.g. the process exited on its own.
        log.warning("A termination signal was refused, but no server process remains.")

    if target is None:
        message = "No ETS2 server process found."
        log.info(message)
        return OperationResult.success(message, noop=True)

    message = f"ETS2 server stopped (PID {target})."
    log_success(log, message)
    return OperationResult.success(message, pid=target)
