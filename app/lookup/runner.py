"""Job Runner: expand one circle-code job and drive every lookup in its range.

The range is processed in sub-batches of ``BATCH_SIZE`` items. Within a
sub-batch, items are either spread round-robin over a small set of worker
pages (one lane per page, lanes multiplexed on the event loop) or run one at a
time on a fresh page each. The abort signal is only polled between
sub-batches; an in-flight lookup always runs to completion.
"""
from __future__ import annotations

import asyncio
import dataclasses
import random
import threading
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from . import config, state
from .batcher import ResultBatcher
from .error_codes import ErrorCode, PageAcquisitionError
from .extractor import fetch_bill_amount, fetch_service_details
from .logging_utils import _scraper_event
from .models import ExtractionResult, Job, JobOutcome, LookupKey
from .page_session import BrowserPage
from .utils import log_line, log_memory_usage


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


@dataclass(frozen=True)
class RunnerSettings:
    """Snapshot of the runner knobs taken once per job."""

    worker_pages: int = 2
    batch_size: int = 250
    page_strategy: str = "round_robin"
    page_recycle_interval: int = 500
    browser_recycle_interval: int = 5000
    progress_every: int = 10
    min_delay_ms: int = 1000
    max_delay_ms: int = 2500
    start_index: Optional[int] = None
    end_index: Optional[int] = None
    resume: bool = True

    @classmethod
    def from_config(cls) -> "RunnerSettings":
        return cls(
            worker_pages=config.WORKER_PAGES,
            batch_size=config.BATCH_SIZE,
            page_strategy=config.PAGE_STRATEGY,
            page_recycle_interval=config.PAGE_RECYCLE_INTERVAL,
            browser_recycle_interval=config.BROWSER_RECYCLE_INTERVAL,
            progress_every=config.PROGRESS_EVERY,
            min_delay_ms=config.MIN_DELAY_MS,
            max_delay_ms=config.MAX_DELAY_MS,
            start_index=config.START_INDEX,
            end_index=config.END_INDEX,
            resume=config.RESUME_FROM_CHECKPOINT,
        )

    @property
    def fresh_pages(self) -> bool:
        return config.is_fresh_page_strategy(self.page_strategy)


def compute_range(
    job: Job, start_index: Optional[int] = None, end_index: Optional[int] = None
) -> range:
    """Return the indices to visit for ``job``.

    Both bounds default to the full ``[0, 10**digits - 1]`` span and are
    clamped into it. Traversal is descending when the start bound is larger.
    """

    max_number = job.max_number
    start = 0 if start_index is None else min(max(0, start_index), max_number)
    end = max_number if end_index is None else min(max(0, end_index), max_number)
    if start <= end:
        return range(start, end + 1)
    return range(start, end - 1, -1)


def _resume_range(indices: range, next_index: Optional[int]) -> range:
    if next_index is None or next_index not in indices:
        return indices
    return indices[indices.index(next_index):]


class _Lane:
    """A worker page slot plus how many lookups it has served."""

    def __init__(self, number: int) -> None:
        self.number = number
        self.page: Optional[BrowserPage] = None
        self.uses = 0
        self.broken = False


class JobRunner:
    def __init__(
        self,
        *,
        settings: Optional[RunnerSettings] = None,
        batcher: Optional[ResultBatcher] = None,
        abort_event: Optional[threading.Event] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings or RunnerSettings.from_config()
        self.batcher = batcher or ResultBatcher()
        self.abort_event = abort_event or threading.Event()
        self._rng = rng or random.Random()
        self._lanes: list[_Lane] = []
        self._since_browser_restart = 0
        self._saved_before = 0

    # ------------------------------------------------------------------
    # Page handling
    # ------------------------------------------------------------------

    async def _lane_page(self, session: Any, lane: _Lane) -> BrowserPage:
        """Return a usable page for ``lane``, recycling it when due."""

        interval = self.settings.page_recycle_interval
        if lane.page is not None and (
            lane.broken or lane.page.is_closed() or (interval > 0 and lane.uses >= interval)
        ):
            _scraper_event("session", step="recycle_page", lane=lane.number, uses=lane.uses)
            old_page, lane.page, lane.uses, lane.broken = lane.page, None, 0, False
            lane.page = await session.recycle_page(old_page)
        elif lane.page is None:
            lane.page = await session.new_worker_page()
            lane.uses = 0
        return lane.page

    async def _close_lanes(self) -> None:
        for lane in self._lanes:
            if lane.page is not None:
                try:
                    await lane.page.close()
                except Exception as exc:  # noqa: BLE001
                    log_line(f"[RUNNER] Error closing lane {lane.number} page: {exc}")
                lane.page = None
                lane.uses = 0

    async def _maybe_restart_browser(self, session: Any) -> None:
        interval = self.settings.browser_recycle_interval
        if interval <= 0 or self._since_browser_restart < interval:
            return
        await self._close_lanes()
        await session.restart_browser()
        self._since_browser_restart = 0
        log_memory_usage("[RUNNER] after browser restart")

    # ------------------------------------------------------------------
    # Per-item work
    # ------------------------------------------------------------------

    async def _lookup(self, page: BrowserPage, key: LookupKey) -> ExtractionResult:
        result = await fetch_service_details(page, key.circle_code, key.service_number)
        if result.is_success:
            amount = await fetch_bill_amount(page, result.unique_service_no)
            result = dataclasses.replace(result, bill_amount=amount)
        return result

    async def _delay(self) -> None:
        low = max(0, self.settings.min_delay_ms)
        high = max(low, self.settings.max_delay_ms)
        if high <= 0:
            return
        await _sleep(self._rng.uniform(low, high) / 1000)

    async def _record(self, outcome: JobOutcome, result: ExtractionResult) -> None:
        outcome.processed += 1
        if result.is_success:
            outcome.success += 1
        self._since_browser_restart += 1
        await self.batcher.enqueue(result)
        every = self.settings.progress_every
        if every > 0 and outcome.processed % every == 0:
            self._log_progress(outcome)

    async def _run_item(
        self, session: Any, lane: _Lane, key: LookupKey, outcome: JobOutcome
    ) -> None:
        try:
            page = await self._lane_page(session, lane)
        except PageAcquisitionError as exc:
            outcome.page_failures += 1
            _scraper_event(
                "error",
                phase="page_acquire",
                error_code=ErrorCode.PAGE_SETUP,
                lane=lane.number,
                key=key.composite,
                error=str(exc),
            )
            await self._record(outcome, ExtractionResult.failed(key))
            await self._delay()
            return

        try:
            result = await self._lookup(page, key)
        except Exception as exc:  # noqa: BLE001
            outcome.page_failures += 1
            _scraper_event(
                "error",
                phase="lookup",
                error_code=ErrorCode.PAGE_CRASH,
                lane=lane.number,
                key=key.composite,
                error=str(exc),
            )
            lane.broken = True
            result = ExtractionResult.failed(key)
        lane.uses += 1
        await self._record(outcome, result)
        await self._delay()

    async def _run_lane(
        self, session: Any, lane: _Lane, keys: Sequence[LookupKey], outcome: JobOutcome
    ) -> None:
        for key in keys:
            await self._run_item(session, lane, key, outcome)

    async def _run_fresh(
        self, session: Any, keys: Sequence[LookupKey], outcome: JobOutcome
    ) -> None:
        for key in keys:
            lane = _Lane(0)
            try:
                await self._run_item(session, lane, key, outcome)
            finally:
                if lane.page is not None:
                    await lane.page.close()

    async def _run_sub_batch(
        self, session: Any, keys: Sequence[LookupKey], outcome: JobOutcome
    ) -> None:
        if self.settings.fresh_pages:
            await self._run_fresh(session, keys, outcome)
            return
        lane_count = len(self._lanes)
        await asyncio.gather(
            *(
                self._run_lane(session, lane, keys[lane.number::lane_count], outcome)
                for lane in self._lanes
                if keys[lane.number::lane_count]
            )
        )

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def _log_progress(self, outcome: JobOutcome) -> None:
        _scraper_event(
            "progress",
            job_id=outcome.job_id,
            circle_code=outcome.circle_code,
            processed=outcome.processed,
            total=outcome.total,
            success=outcome.success,
            saved=self._saved_before + self.batcher.saved,
            dropped=self.batcher.dropped,
        )

    def _save_checkpoint(self, job: Job, outcome: JobOutcome) -> None:
        try:
            state.save_checkpoint(
                job,
                next_index=outcome.next_index,
                processed=outcome.processed,
                success=outcome.success,
                saved=self._saved_before + self.batcher.saved,
            )
        except OSError as exc:
            log_line(f"[STATE] Failed to save checkpoint for job {job.id}: {exc}")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, job: Job, session: Any) -> JobOutcome:
        """Process the full (or overridden) range of ``job``.

        Returns a partial outcome with ``aborted=True`` when the abort signal
        was observed between sub-batches. ``BrowserLaunchError`` from the
        session propagates to the caller.
        """

        settings = self.settings
        indices = compute_range(job, settings.start_index, settings.end_index)
        checkpoint = state.resume_point_for(job) if settings.resume else None
        remaining = _resume_range(indices, checkpoint["next_index"] if checkpoint else None)

        outcome = JobOutcome(job_id=job.id, circle_code=job.circle_code, total=len(indices))
        self._saved_before = 0
        if checkpoint and len(remaining) != len(indices):
            # Counts cover the whole range, including lookups done before the resume.
            outcome.processed = len(indices) - len(remaining)
            outcome.success = min(int(checkpoint.get("success") or 0), outcome.processed)
            self._saved_before = int(checkpoint.get("saved") or 0)
            log_line(
                f"[RUNNER] Resuming job {job.id} ({job.circle_code}) at index "
                f"{checkpoint['next_index']} (checkpoint from job {checkpoint.get('job_id')}); "
                f"{outcome.processed} already processed"
            )
        _scraper_event(
            "runner",
            step="expand",
            job_id=job.id,
            circle_code=job.circle_code,
            digits=job.digit_width,
            first=remaining[0] if remaining else None,
            last=remaining[-1] if remaining else None,
            total=len(indices),
            remaining=len(remaining),
            strategy="fresh" if settings.fresh_pages else "round_robin",
        )

        lane_count = max(1, min(settings.worker_pages, config.MAX_WORKER_PAGES))
        self._lanes = [_Lane(number) for number in range(lane_count)]
        batch_size = max(1, settings.batch_size)

        try:
            for offset in range(0, len(remaining), batch_size):
                if self.abort_event.is_set():
                    outcome.aborted = True
                    outcome.next_index = remaining[offset]
                    _scraper_event(
                        "runner",
                        step="abort",
                        job_id=job.id,
                        error_code=ErrorCode.WATCHDOG_ABORT,
                        processed=outcome.processed,
                        total=outcome.total,
                    )
                    break

                await self._maybe_restart_browser(session)
                chunk = remaining[offset:offset + batch_size]
                keys = [
                    LookupKey.from_index(job.circle_code, index, job.digit_width)
                    for index in chunk
                ]
                await self._run_sub_batch(session, keys, outcome)
                await self.batcher.drain()

                next_offset = offset + batch_size
                outcome.next_index = remaining[next_offset] if next_offset < len(remaining) else None
                self._log_progress(outcome)
                if outcome.next_index is not None:
                    self._save_checkpoint(job, outcome)
                log_memory_usage(f"[RUNNER] job={job.id} after {outcome.processed} lookups")
        finally:
            await self.batcher.drain()
            await self._close_lanes()

        outcome.saved = self._saved_before + self.batcher.saved
        outcome.dropped = self.batcher.dropped
        if not outcome.aborted:
            state.clear_checkpoint(job)
        _scraper_event("runner", step="done", **outcome.as_dict())
        return outcome


__all__ = ["JobRunner", "RunnerSettings", "compute_range"]
