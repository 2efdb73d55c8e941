"""Two-step lookup protocol against the service and bill lookup forms.

Both operations follow the same shape: navigate, locate the input, clear and
type the key, submit (button containing "submit", else Enter), wait for the
first of navigation or a results table, then parse. Neither operation raises;
every failure degrades to a sentinel value so one bad page never aborts a job.
"""
from __future__ import annotations

import asyncio
import urllib.parse
from typing import Optional

from . import config
from .error_codes import ErrorCode
from .logging_utils import _scraper_event
from .models import NOT_FOUND, ExtractionResult, LookupKey
from .page_session import BrowserPage
from .parser import parse_bill_amount, parse_service_details
from .retry_policy import NAVIGATION_RETRY, RetryPolicy

SERVICE_INPUT_SELECTOR = "#ukscno"
GENERIC_INPUT_SELECTOR = "input[type='text']"
BILL_INPUT_SELECTORS: tuple[str, ...] = (
    "#ukscno",
    "input[name='ukscno']",
    "input[id*='ukscno' i]",
    "input[id*='uksc' i]",
    GENERIC_INPUT_SELECTOR,
)
RESULTS_SELECTOR = "table tr"
SUBMIT_TEXT = "submit"


async def navigate_with_retry(
    page: BrowserPage,
    url: str,
    *,
    label: str,
    policy: Optional[RetryPolicy] = None,
) -> None:
    """Navigate to ``url``; raises the last error once retries run out."""

    policy = policy or NAVIGATION_RETRY
    _scraper_event("nav", step="goto", target=label, url=url)
    await policy.run(
        lambda: page.navigate(url, timeout_s=config.NAV_TIMEOUT_SECONDS),
        label=f"goto:{label}",
        error_code=ErrorCode.NAVIGATION,
    )


async def _first_truthy(tasks: set[asyncio.Task], timeout_s: float) -> Optional[asyncio.Task]:
    """Return the first task that finishes with a truthy result, else ``None``."""

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    pending = set(tasks)
    while pending:
        remaining = deadline - loop.time()
        if remaining <= 0:
            return None
        done, pending = await asyncio.wait(
            pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
        )
        if not done:
            return None
        for task in done:
            if task.exception() is None and task.result():
                return task
    return None


async def submit_and_wait(
    page: BrowserPage,
    *,
    label: str,
    results_selector: str = RESULTS_SELECTOR,
    timeout_s: Optional[float] = None,
) -> str:
    """Submit the current form and race navigation against the results table.

    Returns ``"navigation"``, ``"dom"`` or ``"timeout"``. A timeout is not an
    error: the caller parses whatever the page holds.
    """

    timeout_s = config.SUBMIT_WAIT_SECONDS if timeout_s is None else timeout_s
    nav_task = asyncio.ensure_future(page.wait_for_navigation(timeout_s=timeout_s))
    dom_task = asyncio.ensure_future(page.wait_for_selector(results_selector, timeout_s=timeout_s))
    signals = {nav_task: "navigation", dom_task: "dom"}
    try:
        if not await page.click_button_containing(SUBMIT_TEXT):
            await page.press_enter()
        winner = await _first_truthy(set(signals), timeout_s)
    finally:
        for task in signals:
            if not task.done():
                task.cancel()
        await asyncio.gather(*signals, return_exceptions=True)

    signal = signals[winner] if winner is not None else "timeout"
    if signal == "timeout":
        _scraper_event("state", phase="submit", target=label, kind="no_signal", timeout_s=timeout_s)
    return signal


async def fetch_service_details(
    page: BrowserPage, circle_code: str, service_number: str
) -> ExtractionResult:
    """Look up customer metadata for ``"{circle_code} {service_number}"``."""

    key = LookupKey(circle_code, service_number)
    try:
        await navigate_with_retry(page, config.SERVICE_LOOKUP_URL, label="service_lookup")

        input_selector: Optional[str] = SERVICE_INPUT_SELECTOR
        if not await page.wait_for_selector(
            SERVICE_INPUT_SELECTOR, timeout_s=config.INPUT_PROBE_SECONDS
        ):
            input_selector = (
                GENERIC_INPUT_SELECTOR if await page.has_selector(GENERIC_INPUT_SELECTOR) else None
            )
        if input_selector is None:
            _scraper_event(
                "error",
                phase="service_lookup",
                error_code=ErrorCode.SELECTOR_MISSING,
                key=key.composite,
            )
            return ExtractionResult.failed(key)

        await page.fill(input_selector, key.composite)
        await submit_and_wait(page, label="service_lookup")

        result = parse_service_details(await page.content(), key)
        if not result.is_success:
            _scraper_event(
                "state",
                phase="service_lookup",
                kind="no_result_row",
                error_code=ErrorCode.SITE_STRUCTURE,
                key=key.composite,
            )
        return result
    except Exception as exc:  # noqa: BLE001
        _scraper_event(
            "error",
            phase="service_lookup",
            error_code=ErrorCode.NAVIGATION,
            key=key.composite,
            error=str(exc),
        )
        return ExtractionResult.failed(key)


async def _locate_bill_input(page: BrowserPage) -> Optional[str]:
    for selector in BILL_INPUT_SELECTORS:
        try:
            if await page.has_selector(selector):
                return selector
        except Exception:  # noqa: BLE001
            continue
    return None


async def fetch_bill_amount(page: BrowserPage, unique_service_no: Optional[str]) -> str:
    """Return the raw bill amount text for ``unique_service_no``.

    The sentinel or an empty key short-circuits with no page interaction.
    """

    value = (unique_service_no or "").strip()
    if not value or value == NOT_FOUND:
        return NOT_FOUND

    try:
        await navigate_with_retry(page, config.BILL_LOOKUP_URL, label="bill_lookup")

        input_selector = await _locate_bill_input(page)
        if input_selector is not None:
            await page.fill(input_selector, value)
            await submit_and_wait(page, label="bill_lookup")
        else:
            direct_url = f"{config.BILL_INFO_URL}?ukscno={urllib.parse.quote(value)}"
            _scraper_event(
                "state",
                phase="bill_lookup",
                kind="direct_url_fallback",
                error_code=ErrorCode.SELECTOR_MISSING,
            )
            await navigate_with_retry(page, direct_url, label="bill_info")

        amount = parse_bill_amount(await page.content())
        return amount or NOT_FOUND
    except Exception as exc:  # noqa: BLE001
        _scraper_event(
            "error",
            phase="bill_lookup",
            error_code=ErrorCode.NAVIGATION,
            ukscno=value,
            error=str(exc),
        )
        return NOT_FOUND


__all__ = [
    "BILL_INPUT_SELECTORS",
    "fetch_service_details",
    "fetch_bill_amount",
    "navigate_with_retry",
    "submit_and_wait",
]
