"""
This module contains the configuration settings for the ETS2 server manager.
It defines paths, the managed server process, supervisor timings, logging
configuration and the monitor schedule. Values can be overridden through the
environment or a `.env` file in the manager's home directory.
"""

import os
import sys
import pathlib
from dotenv import load_dotenv

#* --- Core Paths ---
# The manager home holds the PID file, logs and overrides. Cron runs the
# monitor from this directory, so it defaults to the current working directory.
BASE_DIR = pathlib.Path(os.getenv("ETS2_HOME", os.getcwd())).resolve()

# Load environment variables from .env file
load_dotenv(BASE_DIR / ".env", override=True)

LOGS_DIR = BASE_DIR / "logs"
SERVER_DIR = pathlib.Path(os.getenv("ETS2_SERVER_DIR", str(BASE_DIR / "ets2server")))

#* --- Application File Paths ---
PID_FILE_PATH = BASE_DIR / "ets2_server.pid"
LOCK_FILE_PATH = BASE_DIR / "ets2_server.lock"
OVERRIDES_JSON_PATH = BASE_DIR / "overrides.json"
SERVER_LOG_PATH = BASE_DIR / "ets2_server.log"
MONITOR_LOG_PATH = BASE_DIR / "ets2_monitor.log"
MANAGER_LOG_PATH = LOGS_DIR / "ets2_manager.log"

#* --- Managed Server Process ---
_DEFAULT_BIN_REL = "bin/win_x64/eurotrucks2_server.exe" if sys.platform == "win32" else "bin/linux_x64/eurotrucks2_server"
SERVER_EXECUTABLE = os.getenv("ETS2_SERVER_EXECUTABLE", str(SERVER_DIR / _DEFAULT_BIN_REL))
SERVER_ARGS = os.getenv("ETS2_SERVER_ARGS", "")
PROCESS_PATTERN = os.getenv("ETS2_PROCESS_PATTERN", "eurotrucks2_server")
# Directories prepended to the loader path before launch (relative to SERVER_DIR).
LIBRARY_DIRS = ["linux64"]

# server_packages.sii/.dat exported from the game client must be visible to the server.
SYNC_SERVER_PACKAGES = os.getenv("ETS2_SYNC_SERVER_PACKAGES", "True").lower() in ('true', '1', 't')
SERVER_PACKAGES_GLOB = "server_packages.*"
GAME_DATA_DIR = pathlib.Path(os.getenv(
    "ETS2_GAME_DATA_DIR",
    str(pathlib.Path.home() / ".local" / "share" / "Euro Truck Simulator 2")
))

#* --- Supervisor Settings ---
STARTUP_GRACE_SECONDS = 2.0        # wait after spawn before the liveness check
STOP_POLL_ATTEMPTS = 10            # graceful shutdown polls before SIGKILL
STOP_POLL_INTERVAL = 2.0           # seconds
KILL_POLL_ATTEMPTS = 5             # polls after SIGKILL before giving up
KILL_POLL_INTERVAL = 0.5           # seconds
RESTART_SETTLE_SECONDS = 5.0       # delay between stop and start
MONITOR_VERIFY_SECONDS = 5.0       # delay before the monitor re-checks a restart
MONITOR_RESTART_ATTEMPTS = 2
LOCK_TIMEOUT = float(os.getenv("ETS2_LOCK_TIMEOUT", "60"))

#* --- Monitor Schedule ---
MONITOR_SCHEDULE_ID = "ets2-server-monitor"
MONITOR_PERIOD_MINUTES = 5
MONITOR_HEARTBEAT = True
MONITOR_PROCESS_TITLE = "ETS2 Manager - Monitor"
PYTHON_EXECUTABLE = os.getenv("PYTHON_EXECUTABLE", sys.executable)

#* --- Logging ---
MANAGER_LOG_MAX_BYTES = 5 * 1024 * 1024
MANAGER_LOG_BACKUP_COUNT = 3
MONITOR_LOG_MAX_BYTES = 1024 * 1024
MONITOR_LOG_BACKUP_COUNT = 5
LOG_TAIL_LINES = 50
LOG_BUFFER_FLUSH_INTERVAL = 10

# Grafana Loki (for observability)
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "")

#* --- Application variables ---
VERBOSE_LOGGING = False

#* --- MODIFIABLE SETTINGS (Changeable via the 'config' command) ---
MODIFIABLE_SETTINGS = {
    # Supervisor timings
    "STARTUP_GRACE_SECONDS", "STOP_POLL_ATTEMPTS", "STOP_POLL_INTERVAL",
    "KILL_POLL_ATTEMPTS", "KILL_POLL_INTERVAL", "RESTART_SETTLE_SECONDS",
    "MONITOR_VERIFY_SECONDS", "MONITOR_RESTART_ATTEMPTS", "LOCK_TIMEOUT",
    # Monitor
    "MONITOR_PERIOD_MINUTES", "MONITOR_HEARTBEAT",
    # Server
    "SERVER_ARGS", "SYNC_SERVER_PACKAGES",
    # Logging
    "LOG_TAIL_LINES", "LOKI_ENABLED",
}

# Inclusive bounds enforced by 'config set'; None leaves that side open.
SETTING_RANGES = {
    "STARTUP_GRACE_SECONDS": (0, None),
    "STOP_POLL_ATTEMPTS": (0, None),
    "STOP_POLL_INTERVAL": (0, None),
    "KILL_POLL_ATTEMPTS": (0, None),
    "KILL_POLL_INTERVAL": (0, None),
    "RESTART_SETTLE_SECONDS": (0, None),
    "MONITOR_VERIFY_SECONDS": (0, None),
    "MONITOR_RESTART_ATTEMPTS": (1, None),
    "LOCK_TIMEOUT": (0, None),
    "MONITOR_PERIOD_MINUTES": (1, 59),
    "LOG_TAIL_LINES": (1, None),
}
