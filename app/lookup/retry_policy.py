from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from . import config
from .error_codes import ErrorCode
from .logging_utils import _scraper_event

T = TypeVar("T")

NON_RETRYABLE_ERROR_CODES = {
    ErrorCode.SITE_STRUCTURE,
    ErrorCode.BROWSER_LAUNCH,
    ErrorCode.WATCHDOG_ABORT,
}


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with linear backoff (``backoff_seconds * attempt``)."""

    max_attempts: int = 3
    backoff_seconds: float = 1.5
    max_backoff_seconds: float = 30.0

    def compute_backoff_seconds(self, attempt_index: int) -> float:
        """Return the wait after the given failed attempt (1-based)."""

        return float(min(self.backoff_seconds * max(1, attempt_index), self.max_backoff_seconds))

    def decide_retry(
        self,
        attempt_index: int,
        error: BaseException | None = None,
        *,
        error_code: Optional[str] = None,
        label: Optional[str] = None,
    ) -> bool:
        """Decide whether a failed attempt should be retried."""

        max_attempts = max(1, self.max_attempts)
        code = (error_code or "").strip()

        if attempt_index >= max_attempts:
            kind, will_retry = "capped", False
        elif code in NON_RETRYABLE_ERROR_CODES:
            kind, will_retry = "non_retryable", False
        else:
            kind, will_retry = "retryable", True

        _scraper_event(
            "state",
            phase="retry_decision",
            kind=kind,
            retry_label=label,
            error_code=code or None,
            attempt=attempt_index,
            max_attempts=max_attempts,
            will_retry=will_retry,
            error_repr=repr(error) if error is not None else None,
        )
        return will_retry

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        label: str,
        error_code: str = ErrorCode.INTERNAL,
    ) -> T:
        """Await ``fn`` until it succeeds or attempts run out.

        The last exception is re-raised once the policy stops retrying.
        """

        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn()
            except Exception as exc:  # noqa: BLE001
                if not self.decide_retry(attempt, exc, error_code=error_code, label=label):
                    raise
                await _sleep(self.compute_backoff_seconds(attempt))


NAVIGATION_RETRY = RetryPolicy(
    max_attempts=config.NAV_ATTEMPTS, backoff_seconds=config.NAV_BACKOFF_SECONDS
)
DB_WRITE_RETRY = RetryPolicy(
    max_attempts=config.DB_WRITE_ATTEMPTS, backoff_seconds=config.DB_BACKOFF_SECONDS
)


__all__ = [
    "RetryPolicy",
    "NAVIGATION_RETRY",
    "DB_WRITE_RETRY",
    "NON_RETRYABLE_ERROR_CODES",
]
