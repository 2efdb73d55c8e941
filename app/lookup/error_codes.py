from __future__ import annotations

"""Centralised error code taxonomy for lookup failures.

These codes are included in structured logs and in job remarks so that we can
explain why a lookup, a batch write or a whole job failed. Keep them stable
for log-based reporting.
"""


class ErrorCode:
    NAVIGATION = "navigation_error"
    NAVIGATION_TIMEOUT = "navigation_timeout"
    SELECTOR_MISSING = "selector_missing"
    SITE_STRUCTURE = "site_structure_changed"
    PAGE_CRASH = "page_crash"
    PAGE_SETUP = "page_setup_failed"
    BROWSER_LAUNCH = "browser_launch_failed"
    DB_WRITE = "db_write_failed"
    WATCHDOG_ABORT = "watchdog_abort"
    INTERNAL = "internal_error"


class PageAcquisitionError(Exception):
    """Raised when a worker page cannot be opened or configured."""

    error_code = ErrorCode.PAGE_SETUP


class BrowserLaunchError(Exception):
    """Raised when the browser engine cannot be started; fatal for a job."""

    error_code = ErrorCode.BROWSER_LAUNCH


class InvalidStatusTransition(Exception):
    """Raised when a job status change violates the lifecycle graph."""

    def __init__(self, job_id: int, current: str | None, target: str) -> None:
        super().__init__(f"Job {job_id}: cannot move from {current!r} to {target!r}")
        self.job_id = job_id
        self.current = current
        self.target = target


__all__ = [
    "ErrorCode",
    "PageAcquisitionError",
    "BrowserLaunchError",
    "InvalidStatusTransition",
]
