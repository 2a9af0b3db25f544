"""
Gemini planning oracle.

To use: set TABPILOT_LLM_PROVIDER=gemini in .env
"""
from __future__ import annotations

import base64
import os
from typing import List, Optional

from google import genai
from google.genai import types

from tabpilot.src.utils.config import LLMConfig


class GeminiOracle:
    """Client for Gemini-powered action planning."""

    def __init__(self, config: Optional[LLMConfig] = None, api_key: str | None = None) -> None:
        self.config = config or LLMConfig(provider="gemini")
        gemini_key = api_key or os.getenv("GEMINI_API_KEY")
        if not gemini_key:
            raise ValueError("GEMINI_API_KEY is required")
        self.client = genai.Client(api_key=gemini_key)
        self.model = self.config.resolved_model()
        print(f"🤖 Planner: Using Gemini ({self.model})")

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        screenshot_base64: Optional[str] = None,
    ) -> str:
        parts: List[types.Part] = []
        if screenshot_base64:
            parts.append(
                types.Part.from_bytes(data=base64.b64decode(screenshot_base64), mime_type="image/png")
            )
        parts.append(types.Part(text=user_prompt))

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=[types.Content(role="user", parts=parts)],
                config=types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    temperature=self.config.temperature,
                    max_output_tokens=self.config.max_completion_tokens,
                ),
            )
        except Exception as e:
            print(f"⚠️ Gemini API call failed: {e}")
            raise

        result_text = response.text or ""
        if not result_text:
            print(f"⚠️ Gemini returned empty response. Full response: {response}")
        return result_text
