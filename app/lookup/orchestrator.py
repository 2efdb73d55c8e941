"""Single-cycle orchestration of the circle-code job queue.

One cycle claims PENDING jobs oldest first, one at a time, until none remain.
Only one cycle may be in flight per process; a trigger received while a cycle
runs is a no-op. A watchdog sets the cycle's abort signal after
``MAX_RUN_SECONDS`` and, if the cycle still has not finished after
``WATCHDOG_GRACE_SECONDS``, force-clears the running state so later triggers
are accepted again.
"""
from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from . import config, db
from .error_codes import ErrorCode, InvalidStatusTransition
from .logging_utils import _scraper_event
from .models import Job, JobOutcome, JobStatus
from .page_session import PageSessionManager
from .runner import JobRunner
from .utils import log_line, log_memory_usage, setup_run_logger, utc_now_iso

SessionFactory = Callable[[], Any]
RunnerFactory = Callable[[threading.Event], JobRunner]


@dataclass
class CycleSummary:
    cycle_id: int
    started_at: str = field(default_factory=utc_now_iso)
    finished_at: Optional[str] = None
    jobs: list[dict[str, Any]] = field(default_factory=list)
    aborted: bool = False
    force_cleared: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "jobs": list(self.jobs),
            "aborted": self.aborted,
            "force_cleared": self.force_cleared,
        }


class _Cycle:
    """Per-cycle coordination state; never shared between cycles."""

    def __init__(self, cycle_id: int) -> None:
        self.summary = CycleSummary(cycle_id)
        self.abort = threading.Event()
        self.watchdog: Optional[threading.Timer] = None
        self.grace: Optional[threading.Timer] = None

    @property
    def cycle_id(self) -> int:
        return self.summary.cycle_id

    def cancel_timers(self) -> None:
        for timer in (self.watchdog, self.grace):
            if timer is not None:
                timer.cancel()


def _default_session_factory() -> PageSessionManager:
    return PageSessionManager()


def _default_runner_factory(abort_event: threading.Event) -> JobRunner:
    return JobRunner(abort_event=abort_event)


class Orchestrator:
    def __init__(
        self,
        *,
        session_factory: Optional[SessionFactory] = None,
        runner_factory: Optional[RunnerFactory] = None,
        max_run_seconds: Optional[float] = None,
        grace_seconds: Optional[float] = None,
        rotate_logs: bool = True,
    ) -> None:
        self._session_factory = session_factory or _default_session_factory
        self._runner_factory = runner_factory or _default_runner_factory
        self.max_run_seconds = (
            config.MAX_RUN_SECONDS if max_run_seconds is None else max_run_seconds
        )
        self.grace_seconds = (
            config.WATCHDOG_GRACE_SECONDS if grace_seconds is None else grace_seconds
        )
        self.rotate_logs = rotate_logs
        self._lock = threading.Lock()
        self._current: Optional[_Cycle] = None
        self._next_cycle_id = 0
        self.last_summary: Optional[CycleSummary] = None

    # ------------------------------------------------------------------
    # Running state
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        with self._lock:
            return self._current is not None

    def status(self) -> dict[str, Any]:
        with self._lock:
            current = self._current
            last = self.last_summary
        return {
            "running": current is not None,
            "cycle_id": current.cycle_id if current else None,
            "started_at": current.summary.started_at if current else None,
            "abort_requested": current.abort.is_set() if current else False,
            "last_cycle": last.as_dict() if last else None,
        }

    def _begin(self) -> Optional[_Cycle]:
        with self._lock:
            if self._current is not None:
                return None
            self._next_cycle_id += 1
            cycle = _Cycle(self._next_cycle_id)
            self._current = cycle
        self._arm_watchdog(cycle)
        return cycle

    def _finish(self, cycle: _Cycle) -> None:
        cycle.cancel_timers()
        cycle.summary.finished_at = utc_now_iso()
        with self._lock:
            self.last_summary = cycle.summary
            if self._current is cycle:
                self._current = None
        _scraper_event("cycle", step="finished", **cycle.summary.as_dict())

    # ------------------------------------------------------------------
    # Watchdog
    # ------------------------------------------------------------------

    def _arm_watchdog(self, cycle: _Cycle) -> None:
        if self.max_run_seconds <= 0:
            return
        cycle.watchdog = threading.Timer(self.max_run_seconds, self._on_watchdog, args=(cycle,))
        cycle.watchdog.daemon = True
        cycle.watchdog.start()

    def _on_watchdog(self, cycle: _Cycle) -> None:
        with self._lock:
            if self._current is not cycle:
                return
        cycle.summary.aborted = True
        cycle.abort.set()
        _scraper_event(
            "error",
            phase="watchdog",
            error_code=ErrorCode.WATCHDOG_ABORT,
            cycle_id=cycle.cycle_id,
            max_run_seconds=self.max_run_seconds,
        )
        cycle.grace = threading.Timer(self.grace_seconds, self._force_clear, args=(cycle,))
        cycle.grace.daemon = True
        cycle.grace.start()

    def _force_clear(self, cycle: _Cycle) -> None:
        with self._lock:
            if self._current is not cycle:
                return
            self._current = None
            cycle.summary.force_cleared = True
            self.last_summary = cycle.summary
        log_line(
            f"[ORCH] Cycle {cycle.cycle_id} did not stop within {self.grace_seconds}s of "
            "abort; running flag force-cleared"
        )

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def start_cycle(self) -> bool:
        """Start a cycle on a background thread; ``False`` if one is running."""

        cycle = self._begin()
        if cycle is None:
            log_line("[ORCH] Cycle already running; trigger ignored")
            return False

        def _run() -> None:
            try:
                asyncio.run(self._execute(cycle))
            except Exception as exc:  # noqa: BLE001
                log_line(f"[ORCH] Cycle {cycle.cycle_id} crashed: {exc}")
            finally:
                self._finish(cycle)

        threading.Thread(target=_run, daemon=True, name=f"lookup-cycle-{cycle.cycle_id}").start()
        return True

    async def run_cycle(self) -> Optional[CycleSummary]:
        """Run one cycle in the current event loop; ``None`` if one is running."""

        cycle = self._begin()
        if cycle is None:
            log_line("[ORCH] Cycle already running; trigger ignored")
            return None
        try:
            await self._execute(cycle)
        finally:
            self._finish(cycle)
        return cycle.summary

    # ------------------------------------------------------------------
    # Job processing
    # ------------------------------------------------------------------

    async def _execute(self, cycle: _Cycle) -> None:
        log_line(f"[ORCH] Cycle {cycle.cycle_id} started")
        rotated = False
        while not cycle.abort.is_set():
            job = db.claim_next_pending_job()
            if job is None:
                log_line(f"[ORCH] No pending jobs remain; cycle {cycle.cycle_id} done")
                break
            # Idle cycles keep writing to the current file.
            if self.rotate_logs and not rotated:
                setup_run_logger()
                rotated = True
            result = await self._run_job(job, cycle.abort)
            cycle.summary.jobs.append(result)

    def _transition(self, job: Job, status: JobStatus, **fields: Any) -> bool:
        try:
            db.update_job_status(job.id, status, **fields)
        except InvalidStatusTransition as exc:
            _scraper_event(
                "error",
                phase="job_status",
                job_id=job.id,
                target=status.value,
                error=str(exc),
            )
            return False
        return True

    async def _run_job(self, job: Job, abort: threading.Event) -> dict[str, Any]:
        log_line(
            f"[ORCH] Processing job {job.id} circle={job.circle_code} digits={job.digit_width}"
        )
        log_memory_usage("[ORCH] before browser launch")
        runner = self._runner_factory(abort)
        try:
            async with self._session_factory() as session:
                outcome: JobOutcome = await runner.run(job, session)
        except Exception as exc:  # noqa: BLE001
            error_code = getattr(exc, "error_code", ErrorCode.INTERNAL)
            _scraper_event(
                "error",
                phase="job",
                job_id=job.id,
                circle_code=job.circle_code,
                error_code=error_code,
                error=str(exc),
            )
            self._transition(job, JobStatus.FAILED, remarks=f"{error_code}: {exc}")
            return {"job_id": job.id, "status": JobStatus.FAILED.value, "error": str(exc)}

        counts = {
            "total_services": outcome.processed,
            "successful_services": outcome.success,
            "failed_services": outcome.failed,
        }
        if outcome.aborted:
            remarks = (
                f"{ErrorCode.WATCHDOG_ABORT}: aborted after "
                f"{outcome.processed}/{outcome.total} lookups"
            )
            self._transition(job, JobStatus.FAILED, remarks=remarks, **counts)
            status = JobStatus.FAILED
        else:
            remarks = f"processed {outcome.processed}, success {outcome.success}, saved {outcome.saved}"
            self._transition(job, JobStatus.COMPLETED, remarks=remarks, **counts)
            status = JobStatus.COMPLETED

        log_line(f"[ORCH] Job {job.id} {status.value}: {remarks}")
        return {**outcome.as_dict(), "status": status.value}


__all__ = ["CycleSummary", "Orchestrator"]
