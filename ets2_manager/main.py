import sys
import logging

import ets2_manager.local.console as console
from ets2_manager.local import app_globals
from ets2_manager.log import setup_logging

log = logging.getLogger("console")


def main() -> int:
    """The main entry point for the console application."""
    args = sys.argv[1:]
    if "--verbose" in args:
        app_globals.VERBOSE_LOGGING = True
        args.remove("--verbose")

    setup_logging(logging.DEBUG if app_globals.VERBOSE_LOGGING else logging.INFO)

    # Non-interactive mode for one-off commands
    if args:
        command, command_args = args[0].lower(), args[1:]
        return console.execute_command(command, command_args)

    # Interactive mode
    print("--- ETS2 Server Management Console ---")
    print("Type 'help' for a list of commands.")
    exit_code = 0
    while True:
        try:
            command_line = input("> ").strip().split()
            if not command_line:
                continue

            command, command_args = command_line[0].lower(), command_line[1:]
            log.debug(f"Received command: {command}, args: {command_args}")
            if command in ("exit", "quit"):
                break
            exit_code = console.execute_command(command, command_args)

        except (KeyboardInterrupt, EOFError):
            log.warning("\nExiting console.")
            break
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
