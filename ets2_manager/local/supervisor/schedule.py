import re
import sys
import shlex
import logging
import subprocess
from pathlib import Path
from typing import Any, List, NamedTuple, Optional
from crontab import CronTab

log = logging.getLogger(__name__)

MONITOR_MODULE = "ets2_manager.local.script_entry.monitor"
# Markers of monitor registrations written by the old shell-script setup.
LEGACY_MONITOR_MARKERS = ("monitor_ets2_server.sh",)


class ScheduleEntry(NamedTuple):
    """A recurring registration of a command, tagged with a stable identifier."""
    identifier: str
    command: str
    period_minutes: int


class Scheduler:
    """Recurring-task registry of the host (cron, Task Scheduler)."""

    def find(self, entry: ScheduleEntry) -> List[ScheduleEntry]:
        """Returns every registration equivalent to `entry` (same identifier or same command)."""
        raise NotImplementedError

    def upsert(self, entry: ScheduleEntry) -> bool:
        """
        Ensures exactly one registration equivalent to `entry` exists with its parameters.

        :return: True if the registry was changed, False if it already matched.
        """
        raise NotImplementedError

    def remove(self, entry: ScheduleEntry) -> int:
        """Removes every equivalent registration and returns how many were removed."""
        raise NotImplementedError


def build_monitor_command(settings: Any) -> str:
    """Builds the command line the scheduler runs for one monitor tick."""
    base_dir = str(settings.BASE_DIR)
    python = str(settings.PYTHON_EXECUTABLE)
    if sys.platform == "win32":
        return f'cmd /c cd /d "{base_dir}" && "{python}" -m {MONITOR_MODULE}'
    return f"cd {shlex.quote(base_dir)} && {shlex.quote(python)} -m {MONITOR_MODULE} >/dev/null 2>&1"


def validate_period(period_minutes: int) -> int:
    period_minutes = int(period_minutes)
    if not 1 <= period_minutes <= 59:
        raise ValueError(f"Monitor period must be between 1 and 59 minutes, got {period_minutes}.")
    return period_minutes


#* --- cron ---
class CronScheduler(Scheduler):
    """
    Registers the monitor in the user's crontab through python-crontab.
    The entry is tagged with the identifier as its cron comment.
    """

    def __init__(self, tabfile: Optional[Path] = None):
        """
        :param tabfile: Operate on a crontab file instead of the user's crontab.
        """
        self.tabfile = tabfile

    def _load(self) -> CronTab:
        if self.tabfile is not None:
            return CronTab(tabfile=str(self.tabfile))
        return CronTab(user=True)

    @staticmethod
    def _expression(period_minutes: int) -> str:
        return "* * * * *" if period_minutes == 1 else f"*/{period_minutes} * * * *"

    @staticmethod
    def _period_of(job) -> int:
        minute = str(job.minute)
        if minute == "*":
            return 1
        match = re.fullmatch(r"\*/(\d+)", minute)
        return int(match.group(1)) if match else 0

    @staticmethod
    def _matches(job, entry: ScheduleEntry) -> bool:
        if job.comment == entry.identifier or job.command == entry.command:
            return True
        return any(marker in (job.command or "") for marker in LEGACY_MONITOR_MARKERS)

    def find(self, entry: ScheduleEntry) -> List[ScheduleEntry]:
        cron = self._load()
        return [
            ScheduleEntry(job.comment, job.command, self._period_of(job))
            for job in cron if self._matches(job, entry)
        ]

    def upsert(self, entry: ScheduleEntry) -> bool:
        expression = self._expression(entry.period_minutes)
        cron = self._load()
        jobs = [job for job in cron if self._matches(job, entry)]

        if len(jobs) == 1:
            job = jobs[0]
            if (job.comment == entry.identifier and job.command == entry.command
                    and str(job.slices) == expression and job.is_enabled()):
                log.debug(f"Cron entry '{entry.identifier}' is already installed.")
                return False

        for job in jobs:
            log.debug(f"Removing cron entry: {job}")
            cron.remove(job)

        job = cron.new(command=entry.command, comment=entry.identifier)
        job.setall(expression)
        cron.write()
        log.info(f"Cron entry '{entry.identifier}' installed: {expression}")
        return True

    def remove(self, entry: ScheduleEntry) -> int:
        cron = self._load()
        jobs = [job for job in cron if self._matches(job, entry)]
        if not jobs:
            return 0
        for job in jobs:
            cron.remove(job)
        cron.write()
        return len(jobs)


#* --- Windows Task Scheduler ---
class SchtasksScheduler(Scheduler):
    """Registers the monitor as a Windows scheduled task named after the identifier."""

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        return subprocess.run(["schtasks", *args], capture_output=True, text=True, timeout=30)

    def find(self, entry: ScheduleEntry) -> List[ScheduleEntry]:
        result = self._run(["/query", "/tn", entry.identifier, "/xml"])
        if result.returncode != 0:
            return []
        xml = result.stdout
        command = re.search(r"<Command>(.*?)</Command>", xml, re.S)
        arguments = re.search(r"<Arguments>(.*?)</Arguments>", xml, re.S)
        interval = re.search(r"<Interval>PT(?:(\d+)H)?(?:(\d+)M)?</Interval>", xml)
        period = 0
        if interval:
            period = int(interval.group(1) or 0) * 60 + int(interval.group(2) or 0)
        task_to_run = " ".join(
            part.group(1).strip() for part in (command, arguments) if part
        ).replace("&amp;", "&").replace("&quot;", '"')
        return [ScheduleEntry(entry.identifier, task_to_run, period)]

    def upsert(self, entry: ScheduleEntry) -> bool:
        existing = self.find(entry)
        if existing and existing[0].period_minutes == entry.period_minutes and existing[0].command == entry.command:
            log.debug(f"Scheduled task '{entry.identifier}' is already installed.")
            return False

        # /f replaces a task with the same name, so this never duplicates.
        result = self._run([
            "/create", "/tn", entry.identifier, "/tr", entry.command,
            "/sc", "minute", "/mo", str(entry.period_minutes), "/f",
        ])
        if result.returncode != 0:
            raise OSError(f"schtasks /create failed (rc={result.returncode}): {result.stderr.strip()}")
        log.info(f"Scheduled task '{entry.identifier}' installed: every {entry.period_minutes} minutes")
        return True

    def remove(self, entry: ScheduleEntry) -> int:
        if not self.find(entry):
            return 0
        result = self._run(["/delete", "/tn", entry.identifier, "/f"])
        if result.returncode != 0:
            raise OSError(f"schtasks /delete failed (rc={result.returncode}): {result.stderr.strip()}")
        return 1


def get_scheduler() -> Scheduler:
    """Returns the scheduler implementation for the current platform."""
    return SchtasksScheduler() if sys.platform == "win32" else CronScheduler()
