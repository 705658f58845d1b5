# edumetrics/sweeper.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

log = logging.getLogger(__name__)


class CleanupSweeper:
    """
    Daemon thread that calls `task` every `interval_s` seconds until stopped.
    Waits on an Event, so stop() returns without sleeping out the interval.
    """

    def __init__(self, task: Callable[[], object], interval_s: float, name: str = "metrics-cleanup"):
        self.task = task
        self.interval_s = interval_s
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        t, self._thread = self._thread, None
        if t is not None and t is not threading.current_thread():
            t.join(timeout)

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            try:
                self.task()
            except Exception:
                # keep sweeping; a failed pass must not kill the thread
                log.exception("cleanup sweep failed", extra={"component": "CleanupSweeper"})
