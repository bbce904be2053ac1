import sys
import socket
import logging
import requests
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional


class LokiHandler(logging.Handler):
    """
    A logging handler that ships manager and monitor records to a Grafana Loki
    instance in batches from a background thread.

    Records are buffered in memory and pushed every `flush_interval` seconds,
    or immediately once `batch_size` records are waiting. Push failures are
    reported on stderr and never raised into the supervisor.
    """

    def __init__(self, url: str, org_id: Optional[str] = None, flush_interval: float = 10, batch_size: int = 200, job: str = "ets2-manager"):
        """
        Initializes the Loki handler.

        :param url: The base URL of the Loki instance.
        :param org_id: The tenant ID for Loki, sent as 'X-Scope-OrgID'.
        :param flush_interval: Seconds between background pushes.
        :param batch_size: Number of buffered records that forces a push.
        :param job: Value of the 'job' stream label.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.org_id = org_id
        self.job = job
        self.flush_interval = flush_interval
        self.batch_size = batch_size
        self.hostname = socket.gethostname() or "unknown-host"
        self.log_buffer: Deque[Dict[str, Any]] = deque()
        self.buffer_lock = threading.Lock()

        self.stop_event = threading.Event()
        self.flush_thread = threading.Thread(target=self._periodic_flush, daemon=True, name="LokiFlushThread")
        self.flush_thread.start()

    def _periodic_flush(self) -> None:
        """Flushes the buffer until the handler is closed, then flushes once more."""
        while not self.stop_event.wait(self.flush_interval):
            self.flush()
        self.flush()

    def emit(self, record: logging.LogRecord) -> None:
        """
        Formats a log record and adds it to the internal buffer.

        :param record: The log record to be processed.
        """
        try:
            entry = {
                "stream": {
                    "job": self.job,
                    "level": record.levelname.lower(),
                    "hostname": self.hostname,
                    "logger": record.name,
                },
                "values": [[str(int(record.created * 1e9)), self.format(record)]],
            }
            with self.buffer_lock:
                self.log_buffer.append(entry)
                should_flush = len(self.log_buffer) >= self.batch_size
            if should_flush:
                self.flush()
        except Exception:
            self.handleError(record)

    def _drain(self) -> List[Dict[str, Any]]:
        with self.buffer_lock:
            entries = list(self.log_buffer)
            self.log_buffer.clear()
        return entries

    def flush(self) -> None:
        """Pushes every buffered record to Loki in a single request."""
        entries = self._drain()
        if not entries:
            return

        headers = {"Content-Type": "application/json"}
        if self.org_id:
            headers["X-Scope-OrgID"] = self.org_id
        try:
            response = requests.post(self.url, json={"streams": entries}, headers=headers, timeout=5)
            # 204 No Content is the success status for Loki push
            if response.status_code != 204:
                print(f"ERROR: Loki returned status {response.status_code}: {response.text}", file=sys.stderr)
        except requests.RequestException as e:
            print(f"CRITICAL: Failed to send {len(entries)} logs to Loki: {e}", file=sys.stderr)

    def close(self) -> None:
        """Stops the flush thread, pushing any remaining records first."""
        self.stop_event.set()
        if self.flush_thread.is_alive():
            self.flush_thread.join(timeout=self.flush_interval + 2)
        super().close()
