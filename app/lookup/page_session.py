"""Browser engine session and worker page management (Playwright)."""
from __future__ import annotations

import random
import re
from typing import Any, Optional, Protocol

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PWError,
    Page,
    Playwright,
    Route,
    TimeoutError as PWTimeout,
    async_playwright,
)

from . import config
from .error_codes import BrowserLaunchError, ErrorCode, PageAcquisitionError
from .logging_utils import _scraper_event
from .utils import log_line


class BrowserPage(Protocol):
    """Capabilities the extractor needs from a live page.

    Keeping the extractor on this surface lets it run against the Playwright
    adapter below or against an in-memory fake in tests.
    """

    async def navigate(self, url: str, *, timeout_s: float) -> None: ...

    async def wait_for_selector(self, selector: str, *, timeout_s: float) -> bool: ...

    async def has_selector(self, selector: str) -> bool: ...

    async def fill(self, selector: str, text: str) -> None: ...

    async def click_button_containing(self, text: str) -> bool: ...

    async def press_enter(self) -> None: ...

    async def wait_for_navigation(self, *, timeout_s: float) -> bool: ...

    async def content(self) -> str: ...

    async def close(self) -> None: ...

    def is_closed(self) -> bool: ...


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in config.BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class PlaywrightPage:
    """``BrowserPage`` backed by a Playwright page in its own context."""

    def __init__(self, page: Page, context: BrowserContext, *, user_agent: str) -> None:
        self._page = page
        self._context = context
        self.user_agent = user_agent

    async def navigate(self, url: str, *, timeout_s: float) -> None:
        await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_s * 1000)

    async def wait_for_selector(self, selector: str, *, timeout_s: float) -> bool:
        try:
            await self._page.wait_for_selector(
                selector, state="attached", timeout=timeout_s * 1000
            )
            return True
        except PWTimeout:
            return False

    async def has_selector(self, selector: str) -> bool:
        try:
            return await self._page.query_selector(selector) is not None
        except PWError:
            return False

    async def fill(self, selector: str, text: str) -> None:
        locator = self._page.locator(selector).first
        await locator.fill("")
        await locator.press_sequentially(text, delay=0)

    async def click_button_containing(self, text: str) -> bool:
        buttons = self._page.locator("button", has_text=re.compile(re.escape(text), re.IGNORECASE))
        if await buttons.count() == 0:
            return False
        await buttons.first.click()
        return True

    async def press_enter(self) -> None:
        await self._page.keyboard.press("Enter")

    async def wait_for_navigation(self, *, timeout_s: float) -> bool:
        timeout_ms = timeout_s * 1000
        try:
            await self._page.wait_for_event(
                "framenavigated",
                predicate=lambda frame: frame == self._page.main_frame,
                timeout=timeout_ms,
            )
            await self._page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
            return True
        except PWTimeout:
            return False

    async def content(self) -> str:
        return await self._page.content()

    async def close(self) -> None:
        try:
            await self._context.close()
        except PWError as exc:
            log_line(f"[SESSION] Error closing page context: {exc}")

    def is_closed(self) -> bool:
        return self._page.is_closed()


class PageSessionManager:
    """Own one browser engine instance and hand out configured worker pages."""

    def __init__(
        self,
        *,
        headless: bool = True,
        rotate_user_agent: Optional[bool] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.headless = headless
        self.rotate_user_agent = (
            config.ROTATE_USER_AGENT if rotate_user_agent is None else rotate_user_agent
        )
        self._rng = rng or random.Random()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self.pages_opened = 0

    async def __aenter__(self) -> "PageSessionManager":
        await self.acquire_browser()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _pick_user_agent(self) -> str:
        if self.rotate_user_agent:
            return self._rng.choice(config.USER_AGENTS)
        return config.USER_AGENTS[0]

    async def acquire_browser(self) -> Browser:
        """Launch headless Chromium; failure is fatal for the current job."""

        if self._browser is not None and self._browser.is_connected():
            return self._browser
        try:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=list(config.BROWSER_ARGS),
            )
        except Exception as exc:  # noqa: BLE001
            _scraper_event(
                "error",
                phase="session",
                step="launch",
                error_code=ErrorCode.BROWSER_LAUNCH,
                error=str(exc),
            )
            await self._stop_playwright()
            raise BrowserLaunchError(f"Browser launch failed: {exc}") from exc

        _scraper_event("session", step="launch", headless=self.headless)
        return self._browser

    async def new_worker_page(self) -> PlaywrightPage:
        """Open and configure a page; raises ``PageAcquisitionError``."""

        browser = await self.acquire_browser()
        user_agent = self._pick_user_agent()
        context: Optional[BrowserContext] = None
        try:
            context = await browser.new_context(
                user_agent=user_agent,
                viewport=dict(config.VIEWPORT),
                locale="en-US",
            )
            context.set_default_timeout(config.DEFAULT_TIMEOUT_SECONDS * 1000)
            context.set_default_navigation_timeout(config.NAV_TIMEOUT_SECONDS * 1000)
            page = await context.new_page()
            await page.route("**/*", _block_heavy_resources)
        except Exception as exc:  # noqa: BLE001
            _scraper_event(
                "error",
                phase="session",
                step="new_page",
                error_code=ErrorCode.PAGE_SETUP,
                error=str(exc),
            )
            if context is not None:
                try:
                    await context.close()
                except PWError:
                    pass
            raise PageAcquisitionError(f"Worker page setup failed: {exc}") from exc

        self.pages_opened += 1
        return PlaywrightPage(page, context, user_agent=user_agent)

    async def recycle_page(self, page: Optional[BrowserPage]) -> PlaywrightPage:
        """Close ``page`` (if any) and return a freshly configured one."""

        if page is not None:
            await page.close()
        return await self.new_worker_page()

    async def restart_browser(self) -> None:
        """Relaunch the browser; existing worker pages become invalid."""

        log_line("[SESSION] Restarting browser to bound memory growth")
        await self._close_browser()
        await self.acquire_browser()

    async def _close_browser(self) -> None:
        if self._browser is None:
            return
        try:
            await self._browser.close()
        except PWError as exc:
            log_line(f"[SESSION] Error closing browser: {exc}")
        self._browser = None

    async def _stop_playwright(self) -> None:
        if self._playwright is None:
            return
        try:
            await self._playwright.stop()
        except Exception as exc:  # noqa: BLE001
            log_line(f"[SESSION] Error stopping Playwright: {exc}")
        self._playwright = None

    async def close(self) -> None:
        await self._close_browser()
        await self._stop_playwright()


__all__ = ["BrowserPage", "PlaywrightPage", "PageSessionManager"]
