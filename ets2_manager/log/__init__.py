"""
Logging module for the application.
This module provides functionality to set up logging and the SUCCESS level
used by the supervisor's user-facing messages.
"""

from .setup import SUCCESS, log_success, set_console_level, setup_logging

__all__ = ["SUCCESS", "log_success", "set_console_level", "setup_logging"]
