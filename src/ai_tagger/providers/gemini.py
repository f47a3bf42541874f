"""Google Gemini (generativelanguage API) client."""

from typing import Any
from urllib.parse import urlencode

from loguru import logger

from ai_tagger.models import ConnectionStatus, GenerationParams, HttpRequest
from ai_tagger.providers.base import ProviderClient, ProviderId, dig, encode_image
from ai_tagger.transport import Transport

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class GeminiClient(ProviderClient):
    """The API key travels in the ``key`` query parameter of the endpoint URL."""

    provider_id = ProviderId.GEMINI
    display_name = "Google Gemini"
    description = "Google's Gemini AI service with vision capabilities"

    @property
    def model(self) -> str:
        return self.settings.gemini_model

    def _model_url(self, api_key: str, action: str = "") -> str:
        base_url = self.settings.gemini_base_url.rstrip("/")
        query = urlencode({"key": api_key})
        return f"{base_url}/models/{self.model}{action}?{query}"

    def build_request(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        params: GenerationParams,
        api_key: str,
    ) -> HttpRequest:
        body = {
            "contents": [
                {
                    "parts": [
                        {"text": prompt},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": encode_image(image_bytes),
                            },
                        },
                    ],
                },
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "temperature": params.temperature,
                "topP": params.top_p,
                "maxOutputTokens": params.max_tokens,
            },
        }
        return HttpRequest(
            url=self._model_url(api_key, ":generateContent"),
            headers=dict(JSON_HEADERS),
            json_body=body,
            timeout=self.settings.request_timeout,
        )

    def extract_answer(self, envelope: dict[str, Any]) -> str | None:
        return dig(envelope, "candidates", 0, "content", "parts", 0, "text")

    def test_connection(self, transport: Transport, api_key: str) -> ConnectionStatus:
        logger.info("testing_connection", provider=self.provider_id.value, model=self.model)
        request = HttpRequest(
            method="GET",
            url=self._model_url(api_key),
            headers={"Accept": "application/json"},
            timeout=self.settings.request_timeout,
        )
        outcome = self.send_probe(transport, request)
        if isinstance(outcome, ConnectionStatus):
            return outcome
        return self.connection_status(outcome)
