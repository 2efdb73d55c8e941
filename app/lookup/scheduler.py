"""Periodic trigger that re-invokes the orchestrator on a fixed interval."""
from __future__ import annotations

import threading
from typing import Optional

from . import config
from .orchestrator import Orchestrator
from .utils import log_line


class PeriodicTrigger:
    """Call ``orchestrator.start_cycle()`` every ``interval_seconds``.

    Triggers that land while a cycle is running are ignored by the
    orchestrator, so a slow cycle never queues a backlog of runs.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        *,
        interval_seconds: Optional[float] = None,
        run_on_startup: Optional[bool] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.interval_seconds = (
            config.CRON_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        self.run_on_startup = config.RUN_ON_STARTUP if run_on_startup is None else run_on_startup
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.triggers = 0
        self.accepted = 0

    def _fire(self) -> None:
        self.triggers += 1
        if self.orchestrator.start_cycle():
            self.accepted += 1
        else:
            log_line("[SCHEDULER] Previous cycle still running; skipping this tick")

    def _loop(self) -> None:
        if self.run_on_startup:
            self._fire()
        while not self._stop.wait(self.interval_seconds):
            self._fire()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="lookup-scheduler")
        self._thread.start()
        log_line(
            f"[SCHEDULER] Started; interval={self.interval_seconds}s "
            f"run_on_startup={self.run_on_startup}"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


__all__ = ["PeriodicTrigger"]
