"""Page host interfaces consumed by the executor, the agent loop and replay."""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class PageTab(Protocol):
    """A single renderable page."""

    @property
    def id(self) -> str: ...

    @property
    def url(self) -> str: ...

    @property
    def title(self) -> str: ...

    async def navigate(self, url: str) -> None: ...

    async def go_back(self) -> None: ...

    async def go_forward(self) -> None: ...

    async def reload(self) -> None: ...

    async def run_script(self, code: str) -> Any:
        """Evaluate ``code`` in the page and return a JSON-serializable result.

        Promises are awaited.
        """
        ...

    async def screenshot(self) -> bytes: ...

    async def get_text(self) -> str: ...


@runtime_checkable
class PageHost(Protocol):
    """Tab management surface."""

    def get_tab(self, tab_id: str) -> Optional[PageTab]: ...

    def get_active_tab(self) -> Optional[PageTab]: ...

    async def create_tab(self, url: Optional[str] = None) -> PageTab: ...

    async def switch_active_tab(self, tab_id: str) -> bool: ...

    async def close_tab(self, tab_id: str) -> bool: ...
