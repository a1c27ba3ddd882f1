from __future__ import annotations

import pytest

from chatdelta.config import ClientConfig, DeltaConfig
from chatdelta.errors import ConfigurationError
from chatdelta.providers import ClaudeClient, GeminiClient, OpenAIClient, ScriptedClient
from chatdelta.registry import (
    PROVIDER_KINDS,
    build_clients,
    require_clients,
    resolve_provider_name,
    select_summarizer,
)

ALL_KEYS = {"openai": "sk-openai", "gemini": "g-key", "claude": "ak-claude"}


def test_builds_one_client_per_credential_in_registration_order() -> None:
    clients = build_clients(ALL_KEYS)

    assert [type(c) for c in clients] == [OpenAIClient, GeminiClient, ClaudeClient]
    assert [c.name for c in clients] == [kind.name for kind in PROVIDER_KINDS]
    assert [c.model for c in clients] == ["gpt-4o", "gemini-1.5-pro-latest", "claude-3-5-sonnet-20241022"]


def test_missing_or_blank_keys_are_skipped() -> None:
    clients = build_clients({"openai": "sk-openai", "claude": "   "})

    assert [c.name for c in clients] == ["openai"]


def test_model_overrides_and_client_settings_are_applied() -> None:
    settings = ClientConfig(timeout=12.0, max_retries=2)
    config = DeltaConfig(models={"claude": "claude-3-haiku-20240307"}, client=settings)

    clients = build_clients(ALL_KEYS, config)

    assert clients[2].model == "claude-3-haiku-20240307"
    assert clients[0].model == "gpt-4o"
    assert all(c.config is settings for c in clients)


def test_only_and_exclude_accept_aliases() -> None:
    only = build_clients(ALL_KEYS, only=["gpt", "Anthropic"])
    excluded = build_clients(ALL_KEYS, exclude=["chatgpt"])

    assert [c.name for c in only] == ["openai", "claude"]
    assert [c.name for c in excluded] == ["gemini", "claude"]


def test_unknown_provider_name_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="Unknown provider 'bard'"):
        build_clients(ALL_KEYS, only=["bard"])
    with pytest.raises(ConfigurationError):
        resolve_provider_name("")


def test_empty_active_set_is_escalated() -> None:
    with pytest.raises(ConfigurationError, match="No AI clients available"):
        require_clients(build_clients({}))


def test_summarizer_prefers_configured_provider() -> None:
    clients = build_clients(ALL_KEYS)

    assert select_summarizer(clients, "gemini").name == "gemini"
    assert select_summarizer(clients, "anthropic").name == "claude"


def test_summarizer_falls_back_to_first_active_client() -> None:
    clients = build_clients({"claude": "ak", "openai": "sk"})

    assert select_summarizer(clients, "gemini").name == "openai"
    assert select_summarizer(clients, None).name == "openai"


def test_summarizer_disabled_or_nothing_active() -> None:
    clients = [ScriptedClient("a", ["x"])]

    assert select_summarizer(clients, "gemini", enabled=False) is None
    assert select_summarizer([], "gemini") is None
