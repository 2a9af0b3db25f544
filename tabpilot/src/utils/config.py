"""Configuration helpers for tabpilot services."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class AgentConfig:
    """Timing, retry and give-up settings shared by the loop, executor and replay."""

    max_iterations: int = field(default_factory=lambda: _env_int("TABPILOT_MAX_ITERATIONS", 50))
    max_retries: int = field(default_factory=lambda: _env_int("TABPILOT_MAX_RETRIES", 3))
    retry_delay_ms: int = field(default_factory=lambda: _env_int("TABPILOT_RETRY_DELAY_MS", 1000))
    action_delay_ms: int = field(default_factory=lambda: _env_int("TABPILOT_ACTION_DELAY_MS", 1000))
    error_cooldown_ms: int = field(default_factory=lambda: _env_int("TABPILOT_ERROR_COOLDOWN_MS", 2000))
    default_timeout_ms: int = 30000
    page_load_timeout_ms: int = field(default_factory=lambda: _env_int("TABPILOT_PAGE_LOAD_TIMEOUT_MS", 10000))
    page_settle_ms: int = 1000
    script_timeout_ms: int = field(default_factory=lambda: _env_int("TABPILOT_SCRIPT_TIMEOUT_MS", 30000))
    click_settle_ms: int = 300
    typing_delay_min_ms: int = 20
    typing_delay_max_ms: int = 60
    scroll_amount_px: int = 300
    scroll_settle_ms: int = 500
    hover_settle_ms: int = 300
    tab_settle_ms: int = 500
    wait_poll_interval_ms: int = 100
    start_url_settle_ms: int = 2000
    capture_screenshots: bool = field(default_factory=lambda: _env_bool("TABPILOT_CAPTURE_SCREENSHOTS", True))
    max_consecutive_failures: int = 5
    loop_detection_window: int = 3

    @classmethod
    def fast(cls, **overrides) -> "AgentConfig":
        """Zero every wait; used by tests and dry runs against in-memory hosts."""
        values = dict(
            retry_delay_ms=0,
            action_delay_ms=0,
            error_cooldown_ms=0,
            page_settle_ms=0,
            click_settle_ms=0,
            typing_delay_min_ms=0,
            typing_delay_max_ms=0,
            scroll_settle_ms=0,
            hover_settle_ms=0,
            tab_settle_ms=0,
            wait_poll_interval_ms=1,
            start_url_settle_ms=0,
        )
        values.update(overrides)
        return cls(**values)


@dataclass(slots=True)
class LLMConfig:
    """Settings for the planning oracle."""

    provider: str = field(default_factory=lambda: (os.getenv("TABPILOT_LLM_PROVIDER") or "openai").strip().lower())
    model: Optional[str] = field(default_factory=lambda: os.getenv("TABPILOT_LLM_MODEL"))
    temperature: float = 0.7
    max_completion_tokens: Optional[int] = None
    request_timeout: int = field(default_factory=lambda: _env_int("TABPILOT_LLM_TIMEOUT", 60))

    def __post_init__(self) -> None:
        max_tokens = os.getenv("TABPILOT_LLM_MAX_COMPLETION_TOKENS")
        if max_tokens and self.max_completion_tokens is None:
            try:
                self.max_completion_tokens = int(max_tokens)
            except ValueError:
                self.max_completion_tokens = None
        temperature = os.getenv("TABPILOT_LLM_TEMPERATURE")
        if temperature:
            try:
                self.temperature = float(temperature)
            except ValueError:
                pass

    def resolved_model(self) -> str:
        if self.model:
            return self.model
        return "gemini-2.5-flash" if self.provider == "gemini" else "gpt-5-mini"


@dataclass(slots=True)
class HostConfig:
    """Browser launch settings for the Playwright page host."""

    headless: bool = field(default_factory=lambda: _env_bool("TABPILOT_HEADLESS", True))
    viewport_width: int = 1280
    viewport_height: int = 720
    navigation_timeout_ms: int = field(default_factory=lambda: _env_int("TABPILOT_NAVIGATION_TIMEOUT_MS", 30000))


@dataclass(slots=True)
class AppConfig:
    """Aggregated configuration for the CLI and the agent manager."""

    agent: AgentConfig = field(default_factory=AgentConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    host: HostConfig = field(default_factory=HostConfig)
    data_dir: str = field(default_factory=lambda: os.getenv("TABPILOT_HOME") or os.path.join(os.path.expanduser("~"), ".tabpilot"))


def load_config() -> AppConfig:
    return AppConfig()
