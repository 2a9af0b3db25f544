"""Playwright-backed page host (Chromium)."""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from tabpilot.src.agent.errors import HostError
from tabpilot.src.utils.config import HostConfig


class PlaywrightTab:
    """PageTab 구현: Playwright ``Page`` 하나를 감쌉니다."""

    def __init__(self, tab_id: str, page: Page, navigation_timeout_ms: int = 30000):
        self._id = tab_id
        self.page = page
        self._navigation_timeout_ms = navigation_timeout_ms
        self._title = ""

    @property
    def id(self) -> str:
        return self._id

    @property
    def url(self) -> str:
        return self.page.url

    @property
    def title(self) -> str:
        return self._title

    async def refresh_title(self) -> str:
        try:
            self._title = await self.page.title()
        except PlaywrightError:
            # context destroyed by an in-flight navigation; keep the last title
            pass
        return self._title

    async def navigate(self, url: str) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=self._navigation_timeout_ms)
        await self.refresh_title()

    async def go_back(self) -> None:
        await self.page.go_back(wait_until="domcontentloaded", timeout=self._navigation_timeout_ms)
        await self.refresh_title()

    async def go_forward(self) -> None:
        await self.page.go_forward(wait_until="domcontentloaded", timeout=self._navigation_timeout_ms)
        await self.refresh_title()

    async def reload(self) -> None:
        await self.page.reload(wait_until="domcontentloaded", timeout=self._navigation_timeout_ms)
        await self.refresh_title()

    async def run_script(self, code: str) -> Any:
        if self.page.is_closed():
            raise HostError(f"Tab {self._id} is closed")
        result = await self.page.evaluate(code)
        # Clicks can navigate, so keep the cached title current.
        await self.refresh_title()
        return result

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(type="png")

    async def get_text(self) -> str:
        return await self.page.inner_text("body")


class PlaywrightHost:
    """
    PageHost 구현

    Owns one Playwright instance, one browser and one context; every tab is a
    page in that context.
    """

    def __init__(
        self,
        config: Optional[HostConfig] = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.config = config or HostConfig()
        self._log_callback = log_callback
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._tabs: Dict[str, PlaywrightTab] = {}
        self._active_tab_id: Optional[str] = None
        self._counter = 0

    def _log(self, message: str):
        print(f"[PlaywrightHost] {message}")
        if self._log_callback:
            self._log_callback(message)

    async def start(self) -> "PlaywrightHost":
        if self._browser is not None:
            return self
        self._log("Playwright 시작 중...")
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.config.headless)
        self._context = await self._browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height}
        )
        return self

    async def stop(self) -> None:
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._browser = None
        self._context = None
        self._playwright = None
        self._tabs.clear()
        self._active_tab_id = None
        self._log("Playwright 종료")

    async def __aenter__(self) -> "PlaywrightHost":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    def get_tab(self, tab_id: str) -> Optional[PlaywrightTab]:
        return self._tabs.get(tab_id)

    def get_active_tab(self) -> Optional[PlaywrightTab]:
        if self._active_tab_id is None:
            return None
        return self._tabs.get(self._active_tab_id)

    async def create_tab(self, url: Optional[str] = None) -> PlaywrightTab:
        if self._context is None:
            await self.start()
        assert self._context is not None
        page = await self._context.new_page()
        self._counter += 1
        tab = PlaywrightTab(f"tab-{self._counter}", page, self.config.navigation_timeout_ms)
        self._tabs[tab.id] = tab
        self._active_tab_id = tab.id
        self._log(f"탭 생성: {tab.id}")
        if url:
            await tab.navigate(url)
        return tab

    async def switch_active_tab(self, tab_id: str) -> bool:
        tab = self._tabs.get(tab_id)
        if tab is None:
            return False
        await tab.page.bring_to_front()
        self._active_tab_id = tab_id
        return True

    async def close_tab(self, tab_id: str) -> bool:
        tab = self._tabs.pop(tab_id, None)
        if tab is None:
            return False
        await tab.page.close()
        if self._active_tab_id == tab_id:
            self._active_tab_id = next(iter(self._tabs), None)
        self._log(f"탭 닫힘: {tab_id}")
        return True
