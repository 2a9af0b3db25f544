"""Planning oracle clients."""
from __future__ import annotations

from typing import Optional

from tabpilot.src.llm.base import PlanningOracle
from tabpilot.src.utils.config import LLMConfig


def get_oracle_client(config: Optional[LLMConfig] = None) -> PlanningOracle:
    """
    Get the planning oracle for the configured provider.

    Returns:
        OpenAIOracle or GeminiOracle depending on ``config.provider``
    """
    config = config or LLMConfig()
    if config.provider == "gemini":
        from tabpilot.src.llm.gemini_client import GeminiOracle

        return GeminiOracle(config)
    if config.provider == "openai":
        from tabpilot.src.llm.openai_client import OpenAIOracle

        return OpenAIOracle(config)
    raise ValueError(f"Unknown LLM provider: {config.provider}")


__all__ = ["PlanningOracle", "get_oracle_client"]
