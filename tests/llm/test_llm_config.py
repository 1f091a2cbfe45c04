from __future__ import annotations

import pytest

from nara.llm.config import DEFAULT_CHAT_MODEL, DEFAULT_OPENROUTER_BASE_URL, LLMSettings


def test_settings_load_from_env_with_defaults() -> None:
    settings = LLMSettings.from_env({"OPENROUTER_API_KEY": "sk-or-v1-test"})

    assert settings.api_key == "sk-or-v1-test"
    assert settings.chat_model == DEFAULT_CHAT_MODEL
    assert settings.embedding_model is None
    assert settings.base_url == DEFAULT_OPENROUTER_BASE_URL
    assert settings.timeout_seconds == 30.0


def test_settings_missing_api_key_fails_fast() -> None:
    with pytest.raises(ValueError, match="OPENROUTER_API_KEY"):
        LLMSettings.from_env({"NARA_CHAT_MODEL": "openai/gpt-4o-mini"})


def test_settings_read_overrides_and_strip_trailing_slash() -> None:
    settings = LLMSettings.from_env(
        {
            "OPENROUTER_API_KEY": "sk-or-v1-test",
            "NARA_CHAT_MODEL": "openai/gpt-4o-mini",
            "NARA_EMBEDDING_MODEL": "openai/text-embedding-3-small",
            "OPENROUTER_BASE_URL": "https://proxy.example/api/v1/",
            "NARA_MODEL_TIMEOUT_SECONDS": "12.5",
        }
    )

    assert settings.chat_model == "openai/gpt-4o-mini"
    assert settings.embedding_model == "openai/text-embedding-3-small"
    assert settings.base_url == "https://proxy.example/api/v1"
    assert settings.timeout_seconds == 12.5


def test_settings_validate_base_url_and_timeout() -> None:
    with pytest.raises(ValueError, match="OPENROUTER_BASE_URL"):
        LLMSettings.from_env({"OPENROUTER_API_KEY": "k", "OPENROUTER_BASE_URL": "openrouter.ai/api/v1"})

    with pytest.raises(ValueError, match="NARA_MODEL_TIMEOUT_SECONDS"):
        LLMSettings.from_env({"OPENROUTER_API_KEY": "k", "NARA_MODEL_TIMEOUT_SECONDS": "0"})
