"""
Provider client interface and the response normalization shared by every backend.

Responses are decoded in two independent stages: the HTTP body is the provider's JSON envelope,
and the model's answer inside that envelope is itself a JSON document (the prompt asks for one).
"""

import base64
import json
import re
from abc import ABC, abstractmethod
from enum import StrEnum
from http import HTTPStatus
from typing import Any, ClassVar

from loguru import logger

from ai_tagger.config import Settings
from ai_tagger.errors import TransportError
from ai_tagger.models import (
    AnalysisResult,
    ConnectionStatus,
    GenerationParams,
    HttpRequest,
    HttpResponse,
    Keyword,
    ProviderDescriptor,
)
from ai_tagger.transport import Transport

MSG_INVALID_API_KEY = "Invalid API key"
MSG_UNKNOWN_ERROR = "Unknown error"
MSG_CONNECTION_OK = "Connection successful"
LOG_PREVIEW_CHARS = 200

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


class ProviderId(StrEnum):
    GEMINI = "gemini"
    OLLAMA = "ollama"
    OPENAI = "openai"


def parse_keywords(value: object) -> list[Keyword]:
    """
    Split the model's keyword answer into selected Keyword entries.

    Accepts a comma-separated string or a list of strings. Tokens are trimmed,
    blanks are dropped and order is preserved.

    Examples:
        >>> [kw.description for kw in parse_keywords("cat, dog ,  bird,,")]
        ['cat', 'dog', 'bird']
        >>> parse_keywords(None)
        []

    """
    if isinstance(value, str):
        tokens = value.split(",")
    elif isinstance(value, (list, tuple)):
        tokens = [item for item in value if isinstance(item, str)]
    else:
        return []
    return [Keyword(description=token.strip()) for token in tokens if token.strip()]


def strip_code_fence(text: str) -> str:
    r"""
    Return the content of a Markdown code block when the answer is wrapped in one.

    Examples:
        >>> strip_code_fence('```json\n{"a": 1}\n```')
        '{"a": 1}'
        >>> strip_code_fence(' {"a": 1} ')
        '{"a": 1}'

    """
    if match := _CODE_FENCE.search(text):
        return match.group(1).strip()
    return text.strip()


def decode_json(text: str) -> Any | None:  # noqa: ANN401
    """Decode JSON, returning None instead of raising on malformed input."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def dig(data: Any, *path: str | int) -> Any | None:  # noqa: ANN401
    """
    Walk nested dicts/lists, returning None as soon as a step is missing.

    Examples:
        >>> dig({"a": [{"b": "x"}]}, "a", 0, "b")
        'x'
        >>> dig({"a": []}, "a", 0, "b") is None
        True

    """
    current = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or len(current) <= step:
                return None
        elif not isinstance(current, dict) or step not in current:
            return None
        current = current[step]
    return current


def _as_text(value: object) -> str:
    """
    Coerce an answer field to text.

    Examples:
        >>> _as_text(["Golden", "hour"])
        'Golden hour'
        >>> _as_text(None)
        ''

    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return " ".join(item for item in value if isinstance(item, str))
    return str(value)


def _preview(text: str) -> str:
    return text if len(text) <= LOG_PREVIEW_CHARS else text[:LOG_PREVIEW_CHARS] + "..."


def result_from_answer(answer: str) -> AnalysisResult:
    """
    Decode the model's answer text into a successful AnalysisResult.

    Unparseable or non-object answers produce a successful result with empty fields, since
    the provider did answer.
    """
    payload = decode_json(strip_code_fence(answer))
    if not isinstance(payload, dict):
        logger.warning("model_answer_not_json", answer=_preview(answer))
        return AnalysisResult.empty()

    return AnalysisResult(
        status=True,
        title=_as_text(payload.get("title")),
        caption=_as_text(payload.get("caption")),
        headline=_as_text(payload.get("headline")) or _as_text(payload.get("description")),
        instructions=_as_text(payload.get("instructions")),
        copyright=_as_text(payload.get("copyright")),
        location=_as_text(payload.get("location")),
        keywords=parse_keywords(payload.get("keywords")),
    )


def encode_image(image_bytes: bytes) -> str:
    return base64.b64encode(image_bytes).decode("ascii")


class ProviderClient(ABC):
    """
    One backend's wire format.

    Subclasses build requests and know where the answer and the error message live in the
    provider's envelope; status handling and answer decoding are shared.
    """

    provider_id: ClassVar[ProviderId]
    display_name: ClassVar[str]
    description: ClassVar[str]
    requires_api_key: ClassVar[bool] = True

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @classmethod
    def descriptor(cls) -> ProviderDescriptor:
        return ProviderDescriptor(
            id=cls.provider_id.value,
            display_name=cls.display_name,
            description=cls.description,
        )

    @property
    @abstractmethod
    def model(self) -> str:
        """Model name requests are sent to."""

    @abstractmethod
    def build_request(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        params: GenerationParams,
        api_key: str,
    ) -> HttpRequest:
        """Build the HTTP request analysing one image."""

    @abstractmethod
    def extract_answer(self, envelope: dict[str, Any]) -> str | None:
        """Return the model's answer text from a decoded 2xx envelope, if present."""

    def extract_error(self, envelope: dict[str, Any]) -> str | None:
        message = dig(envelope, "error", "message")
        return message if isinstance(message, str) and message else None

    @abstractmethod
    def test_connection(self, transport: Transport, api_key: str) -> ConnectionStatus:
        """Validate the configuration with a minimal request."""

    def parse_response(self, status_code: int, body: str) -> AnalysisResult:
        """
        Normalize an HTTP response into an AnalysisResult.

        Args:
            status_code: HTTP status of the response
            body: Raw response body

        Returns:
            A failed result for 401 and other non-2xx statuses, otherwise a successful one
            (with empty fields when either decoding stage fails).

        """
        if status_code == HTTPStatus.UNAUTHORIZED:
            logger.warning("authorization_failure", provider=self.provider_id.value)
            return AnalysisResult.failure(MSG_INVALID_API_KEY)

        envelope = decode_json(body)
        if not HTTPStatus.OK <= status_code < HTTPStatus.MULTIPLE_CHOICES:
            message = self.extract_error(envelope) if isinstance(envelope, dict) else None
            logger.error(
                "provider_request_failed",
                provider=self.provider_id.value,
                status=status_code,
                error=message,
            )
            return AnalysisResult.failure(message or MSG_UNKNOWN_ERROR)

        if not isinstance(envelope, dict):
            logger.warning("response_envelope_not_json", provider=self.provider_id.value)
            return AnalysisResult.empty()

        answer = self.extract_answer(envelope)
        if not isinstance(answer, str):
            logger.warning("response_answer_missing", provider=self.provider_id.value)
            return AnalysisResult.empty()

        result = result_from_answer(answer)
        logger.info(
            "analysis_parsed",
            provider=self.provider_id.value,
            title=bool(result.title),
            caption=bool(result.caption),
            keywords=len(result.keywords),
        )
        return result

    def send_probe(
        self,
        transport: Transport,
        request: HttpRequest,
    ) -> HttpResponse | ConnectionStatus:
        """Send a connection probe; a missing response becomes a failed ConnectionStatus."""
        try:
            return transport.send(request)
        except TransportError as exc:
            logger.error("connection_test_network_error", provider=self.provider_id.value)
            return ConnectionStatus(status=False, message=f"Network error: {exc.name}")

    def connection_status(self, response: HttpResponse) -> ConnectionStatus:
        """Map the response of a connection probe onto a ConnectionStatus."""
        status = response.status_code
        if status == HTTPStatus.OK:
            logger.info("connection_test_succeeded", provider=self.provider_id.value)
            return ConnectionStatus(status=True, message=MSG_CONNECTION_OK)

        if status == HTTPStatus.UNAUTHORIZED:
            message = MSG_INVALID_API_KEY
        elif status == HTTPStatus.FORBIDDEN:
            message = "Access denied - check API key permissions"
        elif status == HTTPStatus.NOT_FOUND:
            message = f"Model not found: {self.model}"
        elif status == HTTPStatus.TOO_MANY_REQUESTS:
            message = "Rate limit exceeded - try again later"
        else:
            message = f"HTTP {status} error"
            envelope = decode_json(response.text)
            if isinstance(envelope, dict) and (detail := self.extract_error(envelope)):
                message += f": {detail}"

        logger.error("connection_test_failed", provider=self.provider_id.value, status=status)
        return ConnectionStatus(status=False, message=message)
