"""OpenAI chat-completions client; works with any OpenAI-compatible server (e.g. LM Studio)."""

from typing import Any

from loguru import logger

from ai_tagger.models import ConnectionStatus, GenerationParams, HttpRequest
from ai_tagger.providers.base import ProviderClient, ProviderId, dig, encode_image
from ai_tagger.transport import Transport

TEST_PROMPT = "Hello! Please respond with 'Connection successful' to test the API."
TEST_MAX_TOKENS = 10


class OpenAIClient(ProviderClient):
    """The API key travels as a bearer token."""

    provider_id = ProviderId.OPENAI
    display_name = "OpenAI GPT-4V"
    description = "OpenAI's GPT-4 with vision capabilities for image analysis"

    @property
    def model(self) -> str:
        return self.settings.openai_model

    @property
    def _endpoint(self) -> str:
        return f"{self.settings.openai_base_url.rstrip('/')}/chat/completions"

    @staticmethod
    def _headers(api_key: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

    def build_request(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        params: GenerationParams,
        api_key: str,
    ) -> HttpRequest:
        data_url = f"data:{mime_type};base64,{encode_image(image_bytes)}"
        body = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                },
            ],
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "top_p": params.top_p,
        }
        return HttpRequest(
            url=self._endpoint,
            headers=self._headers(api_key),
            json_body=body,
            timeout=self.settings.request_timeout,
        )

    def extract_answer(self, envelope: dict[str, Any]) -> str | None:
        return dig(envelope, "choices", 0, "message", "content")

    def test_connection(self, transport: Transport, api_key: str) -> ConnectionStatus:
        logger.info("testing_connection", provider=self.provider_id.value, model=self.model)
        request = HttpRequest(
            url=self._endpoint,
            headers=self._headers(api_key),
            json_body={
                "model": self.model,
                "messages": [{"role": "user", "content": TEST_PROMPT}],
                "max_tokens": TEST_MAX_TOKENS,
            },
            timeout=self.settings.request_timeout,
        )
        outcome = self.send_probe(transport, request)
        if isinstance(outcome, ConnectionStatus):
            return outcome
        return self.connection_status(outcome)
