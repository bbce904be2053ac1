import sys
import time
import uuid
from pathlib import Path

import psutil
import pytest

from ets2_manager.local.supervisor import MisconfigurationError
from ets2_manager.local.supervisor.process_utils import (ManagedProcess, PsutilProcessTable, SignalKind,
                                                        managed_process_from_settings)

from conftest import posix_only


def test_managed_process_from_settings(settings):
    settings.SERVER_ARGS = '-homedir "/srv/ets2 data" -nosingle'

    process = managed_process_from_settings(settings)

    assert process.executable == Path(settings.SERVER_EXECUTABLE)
    assert process.working_dir == process.executable.parent
    assert process.pattern == "eurotrucks2_server"
    assert process.library_dirs == (settings.SERVER_DIR / "linux64",)
    if sys.platform != "win32":
        assert process.args == ("-homedir", "/srv/ets2 data", "-nosingle")
        assert process.command == [settings.SERVER_EXECUTABLE, "-homedir", "/srv/ets2 data", "-nosingle"]


@pytest.mark.parametrize("key", ["SERVER_EXECUTABLE", "PROCESS_PATTERN"])
def test_missing_required_setting(settings, key):
    setattr(settings, key, "")

    with pytest.raises(MisconfigurationError):
        managed_process_from_settings(settings)


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


@posix_only
def test_psutil_table_spawns_finds_and_stops(tmp_path):
    marker = f"ets2-test-{uuid.uuid4().hex}"
    process = ManagedProcess(
        executable=Path(sys.executable),
        args=("-c", f"import time; time.sleep(60)  # {marker}"),
        pattern=marker,
        working_dir=tmp_path,
        log_path=tmp_path / "server.log",
    )
    table = PsutilProcessTable()

    pid = table.spawn(process)
    try:
        assert _wait_until(lambda: table.list_by_name(marker) == [pid])
        assert table.is_alive(pid)
        info = table.describe(pid)
        assert info is not None and info.pid == pid

        assert table.signal(pid, SignalKind.TERM)
        assert _wait_until(lambda: not table.is_alive(pid))
        assert table.list_by_name(marker) == []
    finally:
        try:
            psutil.Process(pid).kill()
        except psutil.NoSuchProcess:
            pass


def test_psutil_table_handles_vanished_process():
    table = PsutilProcessTable()
    pid = 2 ** 22 + 12345

    assert not table.is_alive(pid)
    assert table.signal(pid, SignalKind.KILL)
    assert table.describe(pid) is None
