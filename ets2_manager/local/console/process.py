import logging
from typing import Callable, Dict, List, Optional
from ets2_manager.local import app_globals
from ets2_manager.local.supervisor import MisconfigurationError, OperationResult, ServerSupervisor
from ets2_manager.local.supervisor.config_utils import check_configuration
from ets2_manager.local.console.handler import (display_status, handle_config_command, handle_logs_command,
                                                print_help, toggle_verbose_logging)

log = logging.getLogger(__name__)

#* --- Exit codes ---
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_ALREADY_RUNNING = 2
EXIT_NOT_RUNNING = 3
EXIT_MISCONFIGURED = 5

_supervisor: Optional[ServerSupervisor] = None


def get_supervisor() -> ServerSupervisor:
    """Returns the process-wide supervisor, building it from the settings on first use."""
    global _supervisor
    if _supervisor is None:
        _supervisor = ServerSupervisor.from_settings(app_globals)
    return _supervisor


def reset_supervisor() -> None:
    """Drops the cached supervisor so the next command is built from the current settings."""
    global _supervisor
    _supervisor = None


def _exit_code(result: OperationResult) -> int:
    if not result.ok:
        log.error(f"{result.error.value if result.error else 'Failure'}: {result.message}")
        return EXIT_FAILURE
    return EXIT_OK


def _start(supervisor: ServerSupervisor, args: List[str]) -> int:
    result = supervisor.start()
    if result.noop:
        return EXIT_ALREADY_RUNNING
    return _exit_code(result)


def _install_monitor(supervisor: ServerSupervisor, args: List[str]) -> int:
    try:
        period = int(args[0]) if args else None
        return _exit_code(supervisor.install_schedule(period))
    except ValueError as e:
        print(f"Usage: install-monitor [minutes]  ({e})")
        return EXIT_MISCONFIGURED


def execute_command(command: str, args: List[str], supervisor: Optional[ServerSupervisor] = None) -> int:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'start', 'config').
    :param args: A list of arguments for the command.
    :param supervisor: Supervisor to act on; the settings-based one if omitted.
    :return int: The process exit code for the command.
    """
    log.debug(f"Executing command: {command}, args: {args}")

    # Commands that do not touch the server.
    if command == "help":
        print_help()
        return EXIT_OK
    if command == "verbose":
        toggle_verbose_logging()
        return EXIT_OK
    if command == "config":
        if not handle_config_command(args):
            return EXIT_MISCONFIGURED
        if args and args[0].lower() == "set":
            reset_supervisor()
        return EXIT_OK
    if command == "check-config":
        return EXIT_OK if check_configuration(app_globals) else EXIT_FAILURE

    command_map: Dict[str, Callable[[ServerSupervisor, List[str]], int]] = {
        "start": _start,
        "stop": lambda s, a: _exit_code(s.stop()),
        "restart": lambda s, a: _exit_code(s.restart()),
        "monitor": lambda s, a: _exit_code(s.check_and_restart()),
        "install-monitor": _install_monitor,
        "uninstall-monitor": lambda s, a: _exit_code(s.remove_schedule()),
        "status": lambda s, a: EXIT_OK if display_status(s) else EXIT_NOT_RUNNING,
        "logs": lambda s, a: EXIT_OK if handle_logs_command(s, a) else EXIT_FAILURE,
    }
    if command not in command_map:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return EXIT_MISCONFIGURED

    try:
        return command_map[command](supervisor or get_supervisor(), args)
    except MisconfigurationError as e:
        log.critical(f"Misconfiguration: {e}")
        return EXIT_MISCONFIGURED
