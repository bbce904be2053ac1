import time
import logging
from typing import List
from ets2_manager.local import app_globals
from ets2_manager.log import set_console_level
from ets2_manager.local.supervisor import ServerSupervisor

log = logging.getLogger(__name__)


def _config_show() -> None:
    """Displays the current value of every modifiable setting."""
    print("\n--- Current Manager Configuration ---")
    print(f"(Overrides file: {app_globals.OVERRIDES_JSON_PATH})")
    for key, value in app_globals.modifiable_values().items():
        print(f"  {key} = {value}")
    print("---")
    print("Use 'config set <KEY> <VALUE>' to change a setting.")
    print("-------------------------------------\n")


def _config_set(args: List[str]) -> bool:
    """Sets a configuration setting and persists it to the overrides file."""
    if len(args) < 2:
        print("Usage: config set <SETTING_NAME> <VALUE>")
        return False

    key, value_str = args[0].upper(), " ".join(args[1:])
    success, message = app_globals.update_setting(key, value_str)
    print(message)
    return success


def _config_help() -> None:
    """Displays help for the config command."""
    print("\nConfig Command Help:")
    print("  config show                - Display all modifiable settings.")
    print("  config set KEY VALUE       - Change a setting. Takes effect on the next command.")
    print("  config help                - Show this help message.")
    print("Use 'check-config' to validate the server executable and paths.")


def handle_config_command(args: List[str]) -> bool:
    """
    Handles all sub-commands for the 'config' command-line interface.

    :param args: A list of string arguments following the 'config' command.
    :return: False if the sub-command failed or was not recognised.
    """
    sub_command = args[0].lower() if args else "show"

    if sub_command == "show":
        _config_show()
    elif sub_command == "set":
        return _config_set(args[1:])
    elif sub_command == "help":
        _config_help()
    else:
        print(f"Unknown config sub-command: '{sub_command}'. Type 'config help' for available commands.")
        return False
    return True


def display_status(supervisor: ServerSupervisor) -> bool:
    """
    Prints the state of the managed server, including resource usage.

    :return: True if a server process is running.
    """
    report = supervisor.status()
    print("\n--- ETS2 Server Status ---")
    if report.recorded_pid is None:
        print("  PID record      : none")
    else:
        stale = "" if report.recorded_pid in report.pids else " (stale)"
        print(f"  PID record      : {report.recorded_pid}{stale}")

    if not report.running:
        print("  Server          : STOPPED")
        print("-" * 26 + "\n")
        return False

    print(f"  Server          : RUNNING ({len(report.pids)} process{'es' if len(report.pids) > 1 else ''})")
    for info in report.details:
        uptime = time.strftime('%H:%M:%S', time.gmtime(max(time.time() - info.create_time, 0)))
        print(
            f"  - {info.name:<24} : PID {info.pid:<8} | Status: {info.status.upper()} "
            f"| CPU: {info.cpu_percent:.1f}% | MEM: {info.memory_rss/1024/1024:.1f} MB | Uptime: {uptime}"
        )
    if len(report.pids) > 1:
        print("\nWARNING: More than one server process is running. Run 'stop' to clean up.")
    print("-" * 26 + "\n")
    return True


def handle_logs_command(supervisor: ServerSupervisor, args: List[str]) -> bool:
    """Prints the tail of the monitor log."""
    try:
        count = int(args[0]) if args else int(app_globals.LOG_TAIL_LINES)
    except ValueError:
        print("Usage: logs [lines]")
        return False

    tail_log = getattr(supervisor.store, "tail_log", None)
    if tail_log is None:
        print("The monitor log is not available for this state store.")
        return False
    try:
        lines = tail_log(count)
    except OSError as e:
        log.error(f"Failed to read the monitor log: {e}")
        return False

    if not lines:
        print("The monitor log is empty.")
        return True
    print(f"\n--- Last {len(lines)} monitor log entries ---")
    for line in lines:
        print(line)
    print()
    return True


def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    app_globals.VERBOSE_LOGGING = not app_globals.VERBOSE_LOGGING
    new_level = logging.DEBUG if app_globals.VERBOSE_LOGGING else logging.INFO

    status = "ON" if app_globals.VERBOSE_LOGGING else "OFF"
    if set_console_level(new_level):
        print(f"Verbose console logging is now {status}.")
        log.debug("Debug logging test: This message should only appear when verbose is ON.")
    else:
        print("Could not find console handler to modify level.")


def print_help() -> None:
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  start                    - Start the ETS2 server.")
    print("  stop                     - Stop the ETS2 server gracefully (force after a timeout).")
    print("  restart                  - Stop and then start the server.")
    print("  monitor                  - Check the server once and restart it if it is not running.")
    print("  install-monitor [mins]   - Schedule 'monitor' to run every N minutes (default 5).")
    print("  uninstall-monitor        - Remove the scheduled monitor.")
    print("  status                   - Show the current status of the server.")
    print("  logs [lines]             - Show the latest monitor log entries.")
    print("  check-config             - Validate the server executable and paths.")
    print("  config <cmd>             - Manage configuration. Use 'config help' for more details.")
    print("  verbose                  - Toggle detailed DEBUG log output in the console.")
    print("  exit                     - Exit the management console.")
    print()
