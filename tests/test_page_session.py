from __future__ import annotations

import asyncio
import random

import pytest

from app.lookup import config, page_session
from app.lookup.error_codes import BrowserLaunchError, ErrorCode, PageAcquisitionError
from app.lookup.page_session import PageSessionManager
from tests.fakes import configure_temp_paths


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    configure_temp_paths(tmp_path, monkeypatch)


class _Request:
    def __init__(self, resource_type: str) -> None:
        self.resource_type = resource_type


class _Route:
    def __init__(self, resource_type: str) -> None:
        self.request = _Request(resource_type)
        self.outcome: str | None = None

    async def abort(self) -> None:
        self.outcome = "abort"

    async def continue_(self) -> None:
        self.outcome = "continue"


@pytest.mark.parametrize(
    "resource_type, expected",
    [
        ("image", "abort"),
        ("stylesheet", "abort"),
        ("font", "abort"),
        ("media", "abort"),
        ("document", "continue"),
        ("xhr", "continue"),
        ("script", "continue"),
    ],
)
def test_heavy_resources_are_blocked(resource_type: str, expected: str) -> None:
    route = _Route(resource_type)

    asyncio.run(page_session._block_heavy_resources(route))

    assert route.outcome == expected


def test_user_agent_rotation_draws_from_pool() -> None:
    manager = PageSessionManager(rotate_user_agent=True, rng=random.Random(7))
    picks = {manager._pick_user_agent() for _ in range(50)}

    assert picks <= set(config.USER_AGENTS)
    assert len(picks) > 1


def test_fixed_user_agent_when_rotation_disabled() -> None:
    manager = PageSessionManager(rotate_user_agent=False)

    assert {manager._pick_user_agent() for _ in range(5)} == {config.USER_AGENTS[0]}


def test_launch_failure_raises_browser_launch_error(monkeypatch: pytest.MonkeyPatch) -> None:
    class _Starter:
        async def start(self):
            raise RuntimeError("Executable doesn't exist at /ms-playwright/chromium")

    events: list[dict] = []
    monkeypatch.setattr(page_session, "async_playwright", lambda: _Starter())
    monkeypatch.setattr(page_session, "_scraper_event", lambda label, **fields: events.append(fields))

    async def _launch():
        async with PageSessionManager():
            pass

    with pytest.raises(BrowserLaunchError) as excinfo:
        asyncio.run(_launch())

    assert excinfo.value.error_code == ErrorCode.BROWSER_LAUNCH
    assert events[-1]["error_code"] == ErrorCode.BROWSER_LAUNCH


class _Locator:
    def __init__(self, page: "_PwPage", matches: list[str]) -> None:
        self._page = page
        self._matches = matches

    @property
    def first(self) -> "_Locator":
        return _Locator(self._page, self._matches[:1])

    async def count(self) -> int:
        return len(self._matches)

    async def click(self) -> None:
        self._page.calls.append(("click", self._matches[0]))

    async def fill(self, value: str) -> None:
        self._page.calls.append(("fill", value))

    async def press_sequentially(self, text: str, delay: float = 0) -> None:
        self._page.calls.append(("type", text))


class _PwPage:
    def __init__(self, buttons: tuple[str, ...] = ("Submit",)) -> None:
        self.buttons = list(buttons)
        self.calls: list[tuple] = []
        self.routes: list[tuple] = []

    async def route(self, pattern: str, handler) -> None:
        self.routes.append((pattern, handler))

    async def goto(self, url: str, **kwargs) -> None:
        self.calls.append(("goto", url, kwargs))

    async def wait_for_selector(self, selector: str, **kwargs) -> None:
        raise page_session.PWTimeout(f"Timeout waiting for {selector}")

    def locator(self, selector: str, has_text=None) -> _Locator:
        if selector == "button":
            return _Locator(self, [text for text in self.buttons if has_text.search(text)])
        return _Locator(self, [selector])

    def is_closed(self) -> bool:
        return False


class _Context:
    def __init__(self, page: _PwPage, fail_new_page: bool = False) -> None:
        self.page = page
        self.fail_new_page = fail_new_page
        self.default_timeout: float | None = None
        self.navigation_timeout: float | None = None
        self.closed = False

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self.navigation_timeout = timeout

    async def new_page(self) -> _PwPage:
        if self.fail_new_page:
            raise RuntimeError("Target closed")
        return self.page

    async def close(self) -> None:
        self.closed = True


class _Browser:
    def __init__(self, *, fail_new_page: bool = False, buttons: tuple[str, ...] = ("Submit",)) -> None:
        self.fail_new_page = fail_new_page
        self.buttons = buttons
        self.contexts: list[tuple[dict, _Context]] = []

    def is_connected(self) -> bool:
        return True

    async def new_context(self, **kwargs) -> _Context:
        context = _Context(_PwPage(self.buttons), fail_new_page=self.fail_new_page)
        self.contexts.append((kwargs, context))
        return context


def _manager_with(browser: _Browser) -> PageSessionManager:
    manager = PageSessionManager(rotate_user_agent=False)
    manager._browser = browser
    return manager


def test_new_worker_page_configures_context_and_blocks_resources() -> None:
    browser = _Browser()
    manager = _manager_with(browser)

    page = asyncio.run(manager.new_worker_page())

    kwargs, context = browser.contexts[0]
    assert kwargs["user_agent"] == config.USER_AGENTS[0]
    assert page.user_agent == config.USER_AGENTS[0]
    assert kwargs["viewport"] == dict(config.VIEWPORT)
    assert context.default_timeout == config.DEFAULT_TIMEOUT_SECONDS * 1000
    assert context.navigation_timeout == config.NAV_TIMEOUT_SECONDS * 1000
    assert context.page.routes == [("**/*", page_session._block_heavy_resources)]
    assert manager.pages_opened == 1


def test_page_setup_failure_closes_context_and_raises() -> None:
    browser = _Browser(fail_new_page=True)
    manager = _manager_with(browser)

    with pytest.raises(PageAcquisitionError) as excinfo:
        asyncio.run(manager.new_worker_page())

    assert excinfo.value.error_code == ErrorCode.PAGE_SETUP
    assert browser.contexts[0][1].closed is True
    assert manager.pages_opened == 0


def test_recycle_closes_old_context_and_opens_a_new_one() -> None:
    browser = _Browser()
    manager = _manager_with(browser)

    async def _recycle():
        old = await manager.new_worker_page()
        return await manager.recycle_page(old)

    asyncio.run(_recycle())

    assert [context.closed for _, context in browser.contexts] == [True, False]


@pytest.mark.parametrize(
    "buttons, clicked",
    [(("SUBMIT",), True), (("Reset", "Submit Form"), True), (("Reset",), False), ((), False)],
)
def test_submit_button_match_is_case_insensitive(buttons: tuple[str, ...], clicked: bool) -> None:
    raw = _PwPage(buttons)
    page = page_session.PlaywrightPage(raw, _Context(raw), user_agent="ua")

    assert asyncio.run(page.click_button_containing("submit")) is clicked
    assert [call for call in raw.calls if call[0] == "click"] == (
        [("click", [b for b in buttons if "submit" in b.lower()][0])] if clicked else []
    )


def test_playwright_page_navigation_typing_and_selector_timeout() -> None:
    raw = _PwPage()
    page = page_session.PlaywrightPage(raw, _Context(raw), user_agent="ua")

    async def _drive():
        await page.navigate("https://example.test/form", timeout_s=30)
        await page.fill("#ukscno", "112 007")
        return await page.wait_for_selector("table tr", timeout_s=0.5)

    found = asyncio.run(_drive())

    assert raw.calls[0] == (
        "goto",
        "https://example.test/form",
        {"wait_until": "domcontentloaded", "timeout": 30000},
    )
    assert raw.calls[1:] == [("fill", ""), ("type", "112 007")]
    assert found is False
