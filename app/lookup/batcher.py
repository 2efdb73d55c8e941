"""Buffered result persistence.

Results accumulate in memory and are written to ``lookup_results`` in one
transaction per batch. A batch that still fails after the retry policy is
logged and dropped so a storage outage never stalls the lookup loop.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Mapping, Optional, Sequence

from . import config, db
from .error_codes import ErrorCode
from .logging_utils import _scraper_event
from .models import ExtractionResult
from .retry_policy import DB_WRITE_RETRY, RetryPolicy
from .utils import log_line

InsertFn = Callable[[Sequence[Mapping[str, Any]]], int]


class ResultBatcher:
    def __init__(
        self,
        *,
        batch_size: Optional[int] = None,
        save_only_success: Optional[bool] = None,
        retry_policy: Optional[RetryPolicy] = None,
        insert_fn: Optional[InsertFn] = None,
    ) -> None:
        self.batch_size = max(1, batch_size if batch_size is not None else config.DB_BATCH_SIZE)
        self.save_only_success = (
            config.SAVE_ONLY_SUCCESS if save_only_success is None else save_only_success
        )
        self.retry_policy = retry_policy or DB_WRITE_RETRY
        self._insert_fn: InsertFn = insert_fn or db.bulk_insert_results
        self._buffer: list[dict[str, Any]] = []
        self.saved = 0
        self.dropped = 0
        self.failed_batches = 0
        self.lost_rows = 0

    @property
    def pending(self) -> int:
        return len(self._buffer)

    async def enqueue(self, result: ExtractionResult) -> None:
        """Buffer ``result``; flushes once the buffer reaches the batch size."""

        if self.save_only_success and not result.is_success:
            self.dropped += 1
            return
        self._buffer.append(result.to_row())
        if len(self._buffer) >= self.batch_size:
            await self.flush()

    async def flush(self) -> int:
        """Write the buffered rows; returns how many were stored."""

        if not self._buffer:
            return 0
        rows, self._buffer = self._buffer, []
        try:
            written = await self.retry_policy.run(
                lambda: asyncio.to_thread(self._insert_fn, rows),
                label="db_bulk_insert",
                error_code=ErrorCode.DB_WRITE,
            )
        except Exception as exc:  # noqa: BLE001
            self.failed_batches += 1
            self.lost_rows += len(rows)
            _scraper_event(
                "error",
                phase="persist",
                error_code=ErrorCode.DB_WRITE,
                rows=len(rows),
                error=str(exc),
            )
            log_line(f"[DB] Dropped batch of {len(rows)} rows after retries: {exc}")
            return 0

        self.saved += written
        _scraper_event("persist", step="batch_written", rows=written, total_saved=self.saved)
        return written

    async def drain(self) -> int:
        """Flush whatever is buffered regardless of size."""

        return await self.flush()

    def counts(self) -> dict[str, int]:
        return {
            "saved": self.saved,
            "dropped": self.dropped,
            "failed_batches": self.failed_batches,
            "lost_rows": self.lost_rows,
            "pending": self.pending,
        }


__all__ = ["ResultBatcher"]
