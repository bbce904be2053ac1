"""
Entry point run by the scheduler for one monitor tick.

It names the process so operators can tell scheduled ticks apart in the
process list, runs a single check-and-restart and exits with its code.
"""
import sys
import logging
import setproctitle
from ets2_manager.local import app_globals
from ets2_manager.log import setup_logging
from ets2_manager.local.console import execute_command


def main() -> int:
    setproctitle.setproctitle(app_globals.MONITOR_PROCESS_TITLE)
    setup_logging(logging.WARNING)
    return execute_command("monitor", [])


if __name__ == "__main__":
    sys.exit(main())
