"""Local Ollama server client (native /api endpoints, no API key)."""

from http import HTTPStatus
from typing import Any

from loguru import logger

from ai_tagger.models import ConnectionStatus, GenerationParams, HttpRequest
from ai_tagger.providers.base import (
    MSG_CONNECTION_OK,
    ProviderClient,
    ProviderId,
    decode_json,
    encode_image,
)
from ai_tagger.transport import Transport

LATEST_TAG = ":latest"


def model_installed(requested: str, installed: list[str]) -> bool:
    """
    Tell whether ``requested`` is among the installed model names.

    A bare name matches its ':latest' tag.

    Examples:
        >>> model_installed("llava", ["llava:latest"])
        True
        >>> model_installed("llava:13b", ["llava:latest"])
        False

    """
    base = requested.removesuffix(LATEST_TAG)
    return any(name == requested or name.removesuffix(LATEST_TAG) == base for name in installed)


class OllamaClient(ProviderClient):
    provider_id = ProviderId.OLLAMA
    display_name = "Ollama (Local)"
    description = "Local Ollama server with vision models like LLaVA"
    requires_api_key = False

    @property
    def model(self) -> str:
        return self.settings.ollama_model

    @property
    def _base_url(self) -> str:
        return self.settings.ollama_base_url.rstrip("/")

    def build_request(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,  # noqa: ARG002
        params: GenerationParams,
        api_key: str,
    ) -> HttpRequest:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        body = {
            "model": self.model,
            "prompt": prompt,
            "images": [encode_image(image_bytes)],
            "stream": False,
            "options": {
                "temperature": params.temperature,
                "top_p": params.top_p,
                "num_predict": params.max_tokens,
            },
        }
        return HttpRequest(
            url=f"{self._base_url}/api/generate",
            headers=headers,
            json_body=body,
            timeout=self.settings.request_timeout,
        )

    def extract_answer(self, envelope: dict[str, Any]) -> str | None:
        answer = envelope.get("response")
        return answer if isinstance(answer, str) else None

    def extract_error(self, envelope: dict[str, Any]) -> str | None:
        error = envelope.get("error")
        return error if isinstance(error, str) and error else None

    def test_connection(
        self,
        transport: Transport,
        api_key: str,  # noqa: ARG002
    ) -> ConnectionStatus:
        logger.info("testing_connection", provider=self.provider_id.value, url=self._base_url)
        request = HttpRequest(
            method="GET",
            url=f"{self._base_url}/api/tags",
            headers={"Accept": "application/json"},
            timeout=self.settings.request_timeout,
        )
        outcome = self.send_probe(transport, request)
        if isinstance(outcome, ConnectionStatus):
            return outcome

        if outcome.status_code != HTTPStatus.OK:
            message = f"HTTP {outcome.status_code}: Server not accessible"
            logger.error("connection_test_failed", provider=self.provider_id.value, error=message)
            return ConnectionStatus(status=False, message=message)

        listing = decode_json(outcome.text)
        models = listing.get("models") if isinstance(listing, dict) else None
        if not isinstance(models, list):
            logger.error("ollama_tags_invalid", provider=self.provider_id.value)
            return ConnectionStatus(status=False, message="Invalid response from Ollama server")

        installed = [
            str(entry["name"]) for entry in models if isinstance(entry, dict) and "name" in entry
        ]
        if not model_installed(self.model, installed):
            logger.error("ollama_model_not_available", requested=self.model, available=installed)
            return ConnectionStatus(
                status=False,
                message=(
                    f"Model '{self.model}' not found. Available models: {', '.join(installed)}"
                ),
            )

        logger.info("connection_test_succeeded", provider=self.provider_id.value, model=self.model)
        return ConnectionStatus(status=True, message=MSG_CONNECTION_OK)
