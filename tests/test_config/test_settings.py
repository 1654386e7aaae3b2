"""Tests for settings parsing and derived flags."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from expensemgmt.config import Settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_defaults() -> None:
    config = _settings()
    assert config.llm_provider == "azure_openai"
    assert config.chat_max_tool_rounds == 5
    assert config.chat_parallel_tool_calls is True
    assert (config.default_user_id, config.default_reviewer_id) == (1, 2)


def test_credentials_are_stripped() -> None:
    config = _settings(openai_api_key="  sk-test \n")
    assert config.openai_api_key == "sk-test"


def test_provider_is_normalised() -> None:
    assert _settings(llm_provider=" Anthropic ").llm_provider == "anthropic"


def test_unknown_provider_rejected() -> None:
    with pytest.raises(ValidationError, match="Unknown LLM provider"):
        _settings(llm_provider="bard")


def test_round_bound_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        _settings(chat_max_tool_rounds=0)


@pytest.mark.parametrize(
    ("overrides", "configured"),
    [
        ({"llm_provider": "azure_openai"}, False),
        (
            {
                "llm_provider": "azure_openai",
                "azure_openai_endpoint": "https://x.openai.azure.com/",
                "azure_openai_deployment": "gpt-4o",
            },
            True,
        ),
        (
            {
                "llm_provider": "azure_openai",
                "azure_openai_endpoint": "https://x.openai.azure.com/",
                "azure_openai_deployment": "gpt-4o",
                "azure_openai_use_identity": False,
            },
            False,
        ),
        (
            {
                "llm_provider": "azure_openai",
                "azure_openai_endpoint": "https://x.openai.azure.com/",
                "azure_openai_deployment": "gpt-4o",
                "azure_openai_api_key": "azure-key",
                "azure_openai_use_identity": False,
            },
            True,
        ),
        ({"llm_provider": "openai", "openai_api_key": "sk"}, True),
        ({"llm_provider": "anthropic", "anthropic_api_key": ""}, False),
        ({"llm_provider": "ollama", "ollama_base_url": "http://localhost:11434"}, True),
    ],
)
def test_chat_configured(overrides, configured) -> None:
    assert _settings(**overrides).chat_configured is configured
