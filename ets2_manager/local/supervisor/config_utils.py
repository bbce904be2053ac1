import os
import sys
import logging
from pathlib import Path
from typing import Any
from ets2_manager.local.supervisor.process_utils import managed_process_from_settings
from ets2_manager.local.supervisor.results import MisconfigurationError

log = logging.getLogger(__name__)


def check_configuration(settings: Any) -> bool:
    """
    Validates that the server executable and the directories the manager
    writes to are usable.

    :param settings: The settings object to validate.
    :return: True if every check passed, otherwise False.
    """
    log.info("Performing configuration and path validation...")
    try:
        process = managed_process_from_settings(settings)
    except MisconfigurationError as e:
        log.error(f"CONFIG CHECK FAILED: {e}")
        return False

    all_ok = True
    exe = process.executable
    if not exe.is_file():
        log.error(f"CONFIG CHECK FAILED: Server executable not found at '{exe}'.")
        all_ok = False
    elif sys.platform != "win32" and not os.access(exe, os.X_OK):
        # Only reported; 'start' adds the execute bit.
        log.warning(f"Config Check: '{exe}' is not executable yet. 'start' will add the execute permission.")
    else:
        log.info(f"Config Check OK: Found server executable at '{exe}'")

    for d in process.library_dirs:
        if not d.is_dir():
            log.warning(f"Config Check: library directory '{d}' does not exist.")

    if settings.SYNC_SERVER_PACKAGES and not any(Path(settings.SERVER_DIR).glob(settings.SERVER_PACKAGES_GLOB)):
        log.warning(
            f"Config Check: no '{settings.SERVER_PACKAGES_GLOB}' files in '{settings.SERVER_DIR}'. "
            "Export them from the game client with 'export_server_packages'."
        )

    for name, path in (("PID file", settings.PID_FILE_PATH), ("Monitor log", settings.MONITOR_LOG_PATH)):
        parent = Path(path).parent
        if not parent.is_dir():
            log.error(f"CONFIG CHECK FAILED: {name} directory '{parent}' does not exist.")
            all_ok = False
        else:
            log.info(f"Config Check OK: {name} at '{path}'")
    return all_ok
