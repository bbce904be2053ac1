import sys
import logging
from pathlib import Path
from typing import Optional
from logging.handlers import RotatingFileHandler

from ets2_manager.local import app_globals
from ets2_manager.log.handler import LokiHandler

# Between INFO and WARNING, used for "operation completed" messages.
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'


class MainFormatter(logging.Formatter):
    """Formatter shared by the console and the manager log file."""

    def __init__(self) -> None:
        super().__init__(LOG_FORMAT)


def log_success(logger: logging.Logger, message: str) -> None:
    """Logs a message at the SUCCESS level."""
    logger.log(SUCCESS, message)


def setup_logging(console_level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """
    Configures the root logger for the application.
    This sets up handlers for the console, the rotating manager log file and
    optionally Loki, clearing any previously configured handlers to prevent
    duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param log_file: Manager log file, defaults to MANAGER_LOG_PATH.
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    if root_logger.hasHandlers():
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # --- Rotating File Handler (always enabled for all levels) ---
    log_file = Path(log_file or app_globals.MANAGER_LOG_PATH)
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=app_globals.MANAGER_LOG_MAX_BYTES,
            backupCount=app_globals.MANAGER_LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(MainFormatter())
        root_logger.addHandler(file_handler)
    except OSError as e:
        root_logger.error(f"Failed to open manager log file '{log_file}': {e}. File logging is disabled.")

    # --- Loki Handler (conditional) ---
    if app_globals.LOKI_ENABLED:
        try:
            loki_handler = LokiHandler(
                url=app_globals.LOKI_URL,
                org_id=app_globals.LOKI_ORG_ID or None,
                flush_interval=app_globals.LOG_BUFFER_FLUSH_INTERVAL,
            )
            loki_handler.setLevel(logging.INFO) # Avoid spamming Loki with DEBUG logs
            loki_handler.setFormatter(MainFormatter())
            root_logger.addHandler(loki_handler)
            root_logger.debug(f"Grafana Loki logging handler initialized for {app_globals.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")


def set_console_level(level: int) -> bool:
    """
    Changes the level of the console handler installed by setup_logging.

    :return: True if a console handler was found.
    """
    for handler in logging.getLogger().handlers:
        if type(handler) is logging.StreamHandler:
            handler.setLevel(level)
            return True
    return False
