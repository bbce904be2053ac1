"""
The Supervisor package.
Manages the lifecycle of the ETS2 dedicated server process.

This package contains the central ServerSupervisor class and its helper
modules, which together handle starting, stopping, monitoring and scheduling
the health check of the managed server.
"""
from .results import ErrorKind, MisconfigurationError, OperationResult
from .supervisor import ServerSupervisor, StatusReport

__all__ = ['ErrorKind', 'MisconfigurationError', 'OperationResult', 'ServerSupervisor', 'StatusReport']
