"""Shared configuration helpers."""
from tabpilot.src.utils.config import AgentConfig, AppConfig, HostConfig, LLMConfig, load_config

__all__ = ["AgentConfig", "AppConfig", "HostConfig", "LLMConfig", "load_config"]
