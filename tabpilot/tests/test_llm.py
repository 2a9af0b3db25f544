import pytest

from tabpilot.src.llm import get_oracle_client
from tabpilot.src.llm.gemini_client import GeminiOracle
from tabpilot.src.llm.openai_client import OpenAIOracle
from tabpilot.src.utils.config import LLMConfig


def test_openai_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ValueError):
        get_oracle_client(LLMConfig(provider="openai"))


def test_gemini_requires_api_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with pytest.raises(ValueError):
        get_oracle_client(LLMConfig(provider="gemini"))


def test_factory_picks_provider(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("GEMINI_API_KEY", "gm-test")

    openai_oracle = get_oracle_client(LLMConfig(provider="openai", model="gpt-4.1"))
    gemini_oracle = get_oracle_client(LLMConfig(provider="gemini"))

    assert isinstance(openai_oracle, OpenAIOracle)
    assert openai_oracle.model == "gpt-4.1"
    assert isinstance(gemini_oracle, GeminiOracle)
    assert gemini_oracle.model == "gemini-2.5-flash"


def test_unknown_provider():
    with pytest.raises(ValueError):
        get_oracle_client(LLMConfig(provider="llama"))
