"""Tests for configuration."""

from pathlib import Path

from chatmem.config import Settings


def test_default_settings() -> None:
    s = Settings()
    assert s.chat_model == "claude-sonnet-4-5-20250929"
    assert s.default_system_prompt == "You are a helpful assistant."
    assert s.default_max_tokens == 8000
    assert s.database_path == Path("data/chatmem.db")
    assert s.memory_retrieval_limit == 3
    assert s.memory_min_score == 0.3
    assert s.summary_max_length == 1000
    assert s.memory_extraction_enabled is True
    assert s.title_max_length == 40


def test_environment_ignored_under_pytest(monkeypatch) -> None:
    monkeypatch.setenv("CHAT_MODEL", "from-env")
    assert Settings().chat_model == "claude-sonnet-4-5-20250929"


def test_init_overrides() -> None:
    s = Settings(api_port=9000, memory_extraction_enabled=False)
    assert s.api_port == 9000
    assert s.memory_extraction_enabled is False
