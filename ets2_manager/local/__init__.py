"""
Local package for the ETS2 server manager.

This package provides the application-level configuration through the
app_globals object, the supervisor and the management console.
"""

from .config import effective_settings as app_globals

__all__ = ["app_globals"]
