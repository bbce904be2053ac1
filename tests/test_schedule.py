import subprocess

import pytest

from ets2_manager.local.supervisor import ErrorKind
from ets2_manager.local.supervisor.schedule import (MONITOR_MODULE, CronScheduler, ScheduleEntry,
                                                   SchtasksScheduler, build_monitor_command, validate_period)

from conftest import posix_only


#* --- supervisor level ---
def test_install_twice_registers_once(supervisor, scheduler):
    first = supervisor.install_schedule()
    second = supervisor.install_schedule()

    assert first.ok and not first.noop
    assert second.ok and second.noop
    assert len(scheduler.entries) == 1
    assert scheduler.entries[0].period_minutes == 5


def test_install_with_new_period_replaces_entry(supervisor, scheduler):
    supervisor.install_schedule(5)
    supervisor.install_schedule(10)

    assert [e.period_minutes for e in scheduler.entries] == [10]


def test_install_rejects_invalid_period(supervisor, scheduler):
    with pytest.raises(ValueError):
        supervisor.install_schedule(0)
    with pytest.raises(ValueError):
        supervisor.install_schedule(60)
    assert scheduler.entries == []


def test_install_failure_is_reported(supervisor, scheduler):
    scheduler.error = OSError("crontab: permission denied")

    result = supervisor.install_schedule()

    assert not result.ok
    assert result.error is ErrorKind.SCHEDULE_INSTALL_FAILED


def test_remove_schedule(supervisor, scheduler):
    supervisor.install_schedule()

    assert supervisor.remove_schedule().ok
    assert scheduler.entries == []
    assert supervisor.remove_schedule().noop


def test_validate_period_bounds():
    assert validate_period(1) == 1
    assert validate_period("59") == 59
    with pytest.raises(ValueError):
        validate_period(-5)


@posix_only
def test_monitor_command_runs_from_base_dir(settings):
    command = build_monitor_command(settings)

    assert command.startswith(f"cd {settings.BASE_DIR} && ")
    assert f"-m {MONITOR_MODULE}" in command


#* --- cron ---
@pytest.fixture
def tabfile(tmp_path):
    path = tmp_path / "crontab"
    path.write_text("0 3 * * * /usr/local/bin/backup.sh # nightly-backup\n")
    return path


def _entry(period=5):
    return ScheduleEntry("ets2-server-monitor", "cd /srv/ets2 && /usr/bin/python3 -m monitor", period)


def _monitor_lines(path):
    return [line for line in path.read_text().splitlines() if "ets2" in line]


def test_cron_upsert_is_idempotent(tabfile):
    cron = CronScheduler(tabfile)

    assert cron.upsert(_entry()) is True
    assert cron.upsert(_entry()) is False

    lines = _monitor_lines(tabfile)
    assert len(lines) == 1
    assert lines[0].startswith("*/5 * * * *")
    assert "# ets2-server-monitor" in lines[0]
    assert "nightly-backup" in tabfile.read_text()


def test_cron_upsert_changes_period(tabfile):
    cron = CronScheduler(tabfile)
    cron.upsert(_entry(5))

    assert cron.upsert(_entry(1)) is True

    assert [e.period_minutes for e in cron.find(_entry())] == [1]
    assert _monitor_lines(tabfile)[0].startswith("* * * * *")


def test_cron_replaces_legacy_script_registration(tmp_path):
    path = tmp_path / "crontab"
    path.write_text(
        "*/5 * * * * /home/steam/monitor_ets2_server.sh\n"
        "*/5 * * * * /home/steam/monitor_ets2_server.sh\n"
    )
    cron = CronScheduler(path)

    cron.upsert(_entry())

    content = path.read_text()
    assert "monitor_ets2_server.sh" not in content
    assert len(cron.find(_entry())) == 1


def test_cron_remove_keeps_unrelated_jobs(tabfile):
    cron = CronScheduler(tabfile)
    cron.upsert(_entry())

    assert cron.remove(_entry()) == 1
    assert cron.remove(_entry()) == 0
    assert cron.find(_entry()) == []
    assert "nightly-backup" in tabfile.read_text()


#* --- schtasks ---
_TASK_XML = """<?xml version="1.0" encoding="UTF-16"?>
<Task>
  <Triggers><TimeTrigger><Repetition><Interval>PT5M</Interval></Repetition></TimeTrigger></Triggers>
  <Actions><Exec><Command>cmd</Command><Arguments>/c run-monitor</Arguments></Exec></Actions>
</Task>"""


class _FakeRun:
    def __init__(self, query_rc=0):
        self.query_rc = query_rc
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append(args)
        stdout = _TASK_XML if "/query" in args else ""
        rc = self.query_rc if "/query" in args else 0
        return subprocess.CompletedProcess(args, rc, stdout=stdout, stderr="")


def test_schtasks_creates_missing_task(monkeypatch):
    fake = _FakeRun(query_rc=1)
    monkeypatch.setattr(subprocess, "run", fake)
    entry = ScheduleEntry("ets2-server-monitor", "cmd /c run-monitor", 5)

    assert SchtasksScheduler().upsert(entry) is True

    create = fake.calls[-1]
    assert create[:2] == ["schtasks", "/create"]
    assert create[create.index("/mo") + 1] == "5"
    assert "/f" in create


def test_schtasks_leaves_matching_task(monkeypatch):
    fake = _FakeRun()
    monkeypatch.setattr(subprocess, "run", fake)
    entry = ScheduleEntry("ets2-server-monitor", "cmd /c run-monitor", 5)

    assert SchtasksScheduler().upsert(entry) is False
    assert all("/create" not in call for call in fake.calls)


def test_schtasks_replaces_task_with_other_period(monkeypatch):
    fake = _FakeRun()
    monkeypatch.setattr(subprocess, "run", fake)
    entry = ScheduleEntry("ets2-server-monitor", "cmd /c run-monitor", 10)

    assert SchtasksScheduler().upsert(entry) is True
    assert "/create" in fake.calls[-1]


def test_remove_schedule_ignores_configured_period(supervisor, settings, scheduler):
    supervisor.install_schedule(5)
    settings.MONITOR_PERIOD_MINUTES = 90

    result = supervisor.remove_schedule()

    assert result.ok and not result.noop
    assert scheduler.entries == []
