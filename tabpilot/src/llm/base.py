"""Planning oracle transport interface."""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class PlanningOracle(Protocol):
    """Maps (system prompt, user prompt, screenshot) to raw response text."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        screenshot_base64: Optional[str] = None,
    ) -> str: ...
