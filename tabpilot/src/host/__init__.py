"""Page host interface and the Playwright-backed implementation."""
from tabpilot.src.host.base import PageHost, PageTab
from tabpilot.src.host.playwright_host import PlaywrightHost, PlaywrightTab

__all__ = ["PageHost", "PageTab", "PlaywrightHost", "PlaywrightTab"]
