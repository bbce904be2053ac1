"""Shared pytest fixtures and in-memory fakes for the supervisor's capabilities."""

import os
import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from ets2_manager.local.config import MergedSettings
from ets2_manager.local.supervisor import ServerSupervisor
from ets2_manager.local.supervisor.persistence import StateStore
from ets2_manager.local.supervisor.results import Clock
from ets2_manager.local.supervisor.schedule import ScheduleEntry, Scheduler
from ets2_manager.local.supervisor.process_utils import (ManagedProcess, ProcessTable, SignalKind,
                                                        managed_process_from_settings)

PATTERN = "eurotrucks2_server"


class FakeProcessTable(ProcessTable):
    """In-memory process table. A process is alive while its PID is in `processes`."""

    def __init__(self) -> None:
        self.processes: Dict[int, str] = {}
        self.next_pid = 5000
        self.spawned: List[int] = []
        self.signals: List[tuple] = []
        self.ignore_term: set = set()
        self.unkillable: set = set()
        self.denied: set = set()
        self.spawn_error: Optional[OSError] = None
        self.die_on_spawn = False
        self.last_env: Optional[dict] = None

    def add(self, cmdline: str, pid: Optional[int] = None) -> int:
        if pid is None:
            pid = self.next_pid
            self.next_pid += 1
        self.processes[pid] = cmdline
        return pid

    def list_by_name(self, pattern: str) -> List[int]:
        return sorted(pid for pid, cmdline in self.processes.items() if pattern in cmdline)

    def is_alive(self, pid: int) -> bool:
        return pid in self.processes

    def signal(self, pid: int, kind: SignalKind) -> bool:
        self.signals.append((pid, kind))
        if pid in self.denied:
            return False
        if pid not in self.processes:
            return True
        if pid in self.unkillable or (kind is SignalKind.TERM and pid in self.ignore_term):
            return True
        del self.processes[pid]
        return True

    def spawn(self, process: ManagedProcess, env: Optional[dict] = None) -> int:
        if self.spawn_error is not None:
            raise self.spawn_error
        pid = self.next_pid
        self.next_pid += 1
        self.spawned.append(pid)
        self.last_env = env
        if not self.die_on_spawn:
            self.processes[pid] = " ".join(process.command)
        return pid

    def matching(self) -> List[int]:
        return self.list_by_name(PATTERN)


class MemoryStateStore(StateStore):
    def __init__(self) -> None:
        self.pid: Optional[int] = None
        self.log: List[tuple] = []
        self.write_error: Optional[OSError] = None

    def read_pid(self) -> Optional[int]:
        return self.pid

    def write_pid(self, pid: int) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.pid = pid

    def clear_pid(self) -> None:
        self.pid = None

    def append_log(self, level: str, message: str) -> None:
        self.log.append((level, message))


class FakeScheduler(Scheduler):
    def __init__(self) -> None:
        self.entries: List[ScheduleEntry] = []
        self.error: Optional[Exception] = None

    def _matches(self, existing: ScheduleEntry, entry: ScheduleEntry) -> bool:
        return existing.identifier == entry.identifier or existing.command == entry.command

    def find(self, entry: ScheduleEntry) -> List[ScheduleEntry]:
        return [e for e in self.entries if self._matches(e, entry)]

    def upsert(self, entry: ScheduleEntry) -> bool:
        if self.error is not None:
            raise self.error
        if self.find(entry) == [entry]:
            return False
        self.entries = [e for e in self.entries if not self._matches(e, entry)] + [entry]
        return True

    def remove(self, entry: ScheduleEntry) -> int:
        found = self.find(entry)
        self.entries = [e for e in self.entries if not self._matches(e, entry)]
        return len(found)


class FakeClock(Clock):
    def __init__(self) -> None:
        self.sleeps: List[float] = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def now(self) -> str:
        return "2026-01-01 00:00:00"


@pytest.fixture
def settings(tmp_path: Path) -> MergedSettings:
    s = MergedSettings(overrides_path=tmp_path / "overrides.json")
    server_dir = tmp_path / "ets2server"
    exe = server_dir / "bin" / "linux_x64" / "eurotrucks2_server"
    exe.parent.mkdir(parents=True)
    exe.write_text("#!/bin/sh\n")
    exe.chmod(0o755)

    s.BASE_DIR = tmp_path
    s.SERVER_DIR = server_dir
    s.SERVER_EXECUTABLE = str(exe)
    s.SERVER_ARGS = ""
    s.PROCESS_PATTERN = PATTERN
    s.SERVER_LOG_PATH = tmp_path / "ets2_server.log"
    s.PID_FILE_PATH = tmp_path / "ets2_server.pid"
    s.LOCK_FILE_PATH = tmp_path / "ets2_server.lock"
    s.MONITOR_LOG_PATH = tmp_path / "ets2_monitor.log"
    s.GAME_DATA_DIR = tmp_path / "game_data"
    s.SYNC_SERVER_PACKAGES = False
    s.PYTHON_EXECUTABLE = "/usr/bin/python3"
    return s


@pytest.fixture
def table() -> FakeProcessTable:
    return FakeProcessTable()


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def supervisor(settings, store, table, scheduler, clock) -> ServerSupervisor:
    return ServerSupervisor(
        managed_process_from_settings(settings),
        store,
        table,
        scheduler,
        settings=settings,
        clock=clock,
        lock=threading.RLock(),
    )


posix_only = pytest.mark.skipif(sys.platform == "win32" or os.name != "posix", reason="POSIX only")
