"""Tests for the provider registry."""

import pytest

from ai_tagger.config import Settings
from ai_tagger.errors import ConfigurationError
from ai_tagger.providers import (
    PROVIDERS,
    GeminiClient,
    OllamaClient,
    OpenAIClient,
    list_providers,
    resolve_provider,
)


@pytest.mark.parametrize(
    ("provider_id", "client_cls"),
    [("gemini", GeminiClient), ("openai", OpenAIClient), ("ollama", OllamaClient)],
)
def test_resolve_provider_returns_matching_client(provider_id: str, client_cls: type) -> None:
    """Each known id resolves to its client, bound to the given settings."""
    settings = Settings(provider=provider_id)
    client = resolve_provider(provider_id, settings)
    assert isinstance(client, client_cls)
    assert client.settings is settings


def test_resolve_provider_rejects_unknown_id() -> None:
    """Unknown ids raise ConfigurationError naming the bad value."""
    with pytest.raises(ConfigurationError, match="Unknown provider: 'anthropic'"):
        resolve_provider("anthropic", Settings())


def test_list_providers_describes_every_backend() -> None:
    """The catalogue has one descriptor per registered client, in registry order."""
    descriptors = list_providers()
    assert [d.id for d in descriptors] == [p.value for p in PROVIDERS]
    assert descriptors[0].display_name == "Google Gemini"
    assert all(d.description for d in descriptors)


def test_only_ollama_runs_without_key() -> None:
    """Cloud providers need a key; the local server does not."""
    assert GeminiClient.requires_api_key
    assert OpenAIClient.requires_api_key
    assert not OllamaClient.requires_api_key
