"""
OpenAI planning oracle.

Sends the system prompt, the page screenshot and the user prompt to a chat
completion model and returns the raw text for the planner to parse.
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from tabpilot.src.utils.config import LLMConfig


class OpenAIOracle:
    """Client for OpenAI-powered action planning."""

    def __init__(self, config: Optional[LLMConfig] = None, api_key: str | None = None) -> None:
        """
        Args:
            config: model / temperature / timeout settings
            api_key: OpenAI API key (if None, reads from OPENAI_API_KEY env var)
        """
        self.config = config or LLMConfig(provider="openai")
        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required")
        self.client = AsyncOpenAI(api_key=api_key, timeout=float(self.config.request_timeout))
        self.model = self.config.resolved_model()
        print(f"🤖 Planner: Using OpenAI ({self.model})")

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        screenshot_base64: Optional[str] = None,
    ) -> str:
        content: List[Dict[str, Any]] = []
        if screenshot_base64:
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{screenshot_base64}"},
                }
            )
        content.append({"type": "text", "text": user_prompt})

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
        }
        # gpt-5 계열은 temperature 기본값만 허용
        if not self.model.startswith("gpt-5"):
            kwargs["temperature"] = self.config.temperature
        if self.config.max_completion_tokens:
            kwargs["max_completion_tokens"] = self.config.max_completion_tokens

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except Exception as e:
            print(f"⚠️ OpenAI API call failed: {e}")
            raise

        if not response.choices:
            raise ValueError("No response from OpenAI")
        return response.choices[0].message.content or ""
