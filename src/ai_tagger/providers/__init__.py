"""Provider registry: resolve a client by id and describe the known backends."""

from ai_tagger.config import Settings
from ai_tagger.errors import ConfigurationError
from ai_tagger.models import ProviderDescriptor
from ai_tagger.providers.base import ProviderClient, ProviderId, parse_keywords
from ai_tagger.providers.gemini import GeminiClient
from ai_tagger.providers.ollama import OllamaClient
from ai_tagger.providers.openai import OpenAIClient

# Display order of the provider catalogue.
PROVIDERS: dict[ProviderId, type[ProviderClient]] = {
    ProviderId.GEMINI: GeminiClient,
    ProviderId.OLLAMA: OllamaClient,
    ProviderId.OPENAI: OpenAIClient,
}


def resolve_provider(provider_id: str, settings: Settings) -> ProviderClient:
    """
    Return the client for ``provider_id``.

    Raises:
        ConfigurationError: If the id does not name a known provider.

    """
    try:
        client_cls = PROVIDERS[ProviderId(provider_id)]
    except ValueError as exc:
        known = ", ".join(p.value for p in PROVIDERS)
        msg = f"Unknown provider: {provider_id!r} (expected one of: {known})"
        raise ConfigurationError(msg) from exc
    return client_cls(settings)


def list_providers() -> list[ProviderDescriptor]:
    return [client_cls.descriptor() for client_cls in PROVIDERS.values()]


__all__ = [
    "PROVIDERS",
    "GeminiClient",
    "OllamaClient",
    "OpenAIClient",
    "ProviderClient",
    "ProviderId",
    "list_providers",
    "parse_keywords",
    "resolve_provider",
]
