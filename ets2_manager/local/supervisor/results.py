import enum
import time
from typing import NamedTuple, Optional


class MisconfigurationError(Exception):
    """Raised when required static configuration is missing or unusable."""


class ErrorKind(enum.Enum):
    """Reasons a supervisor operation can fail."""
    EXECUTABLE_MISSING = "ExecutableMissing"
    SPAWN_FAILED = "SpawnFailed"
    PROCESS_TERMINATED_IMMEDIATELY = "ProcessTerminatedImmediately"
    SIGNAL_FAILED = "SignalFailed"
    STILL_ALIVE_AFTER_FORCE_KILL = "StillAliveAfterForceKill"
    PID_RECORD_WRITE_FAILED = "PidRecordWriteFailed"
    SCHEDULE_INSTALL_FAILED = "ScheduleInstallFailed"
    SUPERVISOR_BUSY = "SupervisorBusy"


class OperationResult(NamedTuple):
    """
    Outcome of a supervisor operation.

    `noop` marks an idempotent operation that found nothing to do, e.g. a
    start while the server is already running or a stop with nothing running.
    """
    ok: bool
    message: str
    error: Optional[ErrorKind] = None
    pid: Optional[int] = None
    noop: bool = False

    @classmethod
    def success(cls, message: str, pid: Optional[int] = None, noop: bool = False) -> "OperationResult":
        return cls(True, message, None, pid, noop)

    @classmethod
    def failure(cls, error: ErrorKind, message: str, pid: Optional[int] = None) -> "OperationResult":
        return cls(False, message, error, pid, False)


class PollPolicy(NamedTuple):
    """A bounded polling loop: up to `attempts` checks, `interval` seconds apart."""
    attempts: int
    interval: float


class Clock:
    """Wall-clock access for the supervisor. Tests substitute a fake."""

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def now(self) -> str:
        return time.strftime("%Y-%m-%d %H:%M:%S")
