"""Tests for the single-photo analysis flow and its retry policy."""

import json
from collections.abc import Callable
from http import HTTPStatus
from pathlib import Path
from typing import Any

import httpx
import pytest

import ai_tagger.engine as engine_module
from ai_tagger.config import Settings
from ai_tagger.credentials import CredentialStore, InMemorySecretStore
from ai_tagger.engine import AnalysisEngine
from ai_tagger.errors import TransportError
from ai_tagger.metadata import ExifToolPhotoContext, MappingPhotoContext
from ai_tagger.models import HttpRequest, HttpResponse
from ai_tagger.transport import HttpxTransport

IMAGE = b"\xff\xd8stubjpeg"


def _gemini_ok(answer: dict[str, Any]) -> HttpResponse:
    text = json.dumps(answer)
    body = {"candidates": [{"content": {"parts": [{"text": text}]}}]}
    return HttpResponse(status_code=HTTPStatus.OK, text=json.dumps(body))


def _error(status: int, message: str = "boom") -> HttpResponse:
    return HttpResponse(status_code=status, text=json.dumps({"error": {"message": message}}))


class _QueueTransport:
    """Transport stub replaying a queue of responses; exceptions in the queue are raised."""

    def __init__(self, *outcomes: HttpResponse | TransportError) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[HttpRequest] = []

    def send(self, request: HttpRequest) -> HttpResponse:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, TransportError):
            raise outcome
        return outcome


def _engine(
    transport: _QueueTransport,
    settings: Settings | Callable[[], Settings] | None = None,
    *,
    api_key: str | None = "k1",
    provider: str = "gemini",
) -> AnalysisEngine:
    secret_store = InMemorySecretStore()
    preferences: dict[str, Any] = {}
    if api_key is not None:
        CredentialStore(provider, secret_store, preferences).store_api_key(api_key)
    if settings is None:
        settings = Settings(provider=provider)
    return AnalysisEngine(settings, secret_store, preferences, transport)


def test_successful_analysis_uses_stored_key() -> None:
    """A 200 answer is parsed and the stored key is sent to the provider."""
    transport = _QueueTransport(_gemini_ok({"title": "Dune", "keywords": "sand, sky"}))

    result = _engine(transport).analyze(IMAGE, file_name="dune.jpg")

    assert result.status is True
    assert result.title == "Dune"
    assert result.selected_keywords == ["sand", "sky"]
    assert len(transport.requests) == 1
    assert transport.requests[0].url.endswith("?key=k1")


def test_missing_api_key_fails_without_network_calls() -> None:
    """Without a stored key the engine returns immediately."""
    transport = _QueueTransport(_gemini_ok({}))

    result = _engine(transport, api_key=None).analyze(IMAGE)

    assert result.status is False
    assert result.message == "API key missing"
    assert transport.requests == []


def test_cleared_api_key_counts_as_missing() -> None:
    """A cleared key behaves exactly like one that was never stored."""
    secret_store = InMemorySecretStore()
    preferences: dict[str, Any] = {}
    credentials = CredentialStore("gemini", secret_store, preferences)
    credentials.store_api_key("k1")
    credentials.clear_api_key()
    transport = _QueueTransport(_gemini_ok({}))

    result = AnalysisEngine(Settings(), secret_store, preferences, transport).analyze(IMAGE)

    assert result.message == "API key missing"
    assert transport.requests == []


def test_error_responses_are_retried_until_exhausted() -> None:
    """Three failed attempts end with 'Maximum retries exceeded'."""
    transport = _QueueTransport(_error(HTTPStatus.INTERNAL_SERVER_ERROR))

    result = _engine(transport).analyze(IMAGE)

    assert result.status is False
    assert result.message == "Maximum retries exceeded"
    assert len(transport.requests) == 3


def test_unauthorized_is_retried_like_other_errors() -> None:
    """An invalid key is reported per attempt and retried."""
    transport = _QueueTransport(_error(HTTPStatus.UNAUTHORIZED))

    result = _engine(transport).analyze(IMAGE)

    assert result.message == "Maximum retries exceeded"
    assert len(transport.requests) == 3


def test_retry_stops_at_first_success() -> None:
    """A success on the second attempt is returned without a third call."""
    transport = _QueueTransport(
        _error(HTTPStatus.SERVICE_UNAVAILABLE),
        _gemini_ok({"title": "Second try"}),
    )

    result = _engine(transport).analyze(IMAGE)

    assert result.status is True
    assert result.title == "Second try"
    assert len(transport.requests) == 2


def test_transport_error_is_not_retried() -> None:
    """When no response arrives the error name is returned after a single attempt."""
    transport = _QueueTransport(TransportError("ConnectTimeout", "timed out"))

    result = _engine(transport).analyze(IMAGE)

    assert result.status is False
    assert result.message == "ConnectTimeout"
    assert len(transport.requests) == 1


def test_unknown_provider_is_a_configuration_failure() -> None:
    """An unknown provider id fails the photo without touching the network."""
    transport = _QueueTransport(_gemini_ok({}))

    result = _engine(transport, Settings(provider="claude")).analyze(IMAGE)

    assert result.status is False
    assert result.message is not None
    assert result.message.startswith("Unknown provider")
    assert transport.requests == []


def test_empty_image_is_rejected() -> None:
    """Empty image data is reported with the file name."""
    transport = _QueueTransport(_gemini_ok({}))

    result = _engine(transport).analyze(b"", file_name="broken.cr3")

    assert result.message == "Invalid image data for broken.cr3"
    assert transport.requests == []


def test_ollama_runs_without_api_key() -> None:
    """Providers that need no key are called even when none is stored."""
    body = {"response": json.dumps({"title": "Local"})}
    transport = _QueueTransport(HttpResponse(status_code=200, text=json.dumps(body)))

    result = _engine(transport, api_key=None, provider="ollama").analyze(IMAGE)

    assert result.title == "Local"
    assert transport.requests[0].url == "http://localhost:11434/api/generate"


def test_metadata_enrichment_reaches_the_prompt() -> None:
    """With enrichment on, photo context is appended to the prompt sent to the model."""
    transport = _QueueTransport(_gemini_ok({"title": "x"}))
    photo = MappingPhotoContext({"cameraMake": "Canon", "cameraModel": "EOS R5", "city": "Oslo"})

    _engine(transport, Settings(include_metadata=True)).analyze(IMAGE, photo)

    body = transport.requests[0].json_body
    assert body is not None
    prompt = body["contents"][0]["parts"][0]["text"]
    assert "Additional context from photo metadata:" in prompt
    assert "Location metadata: Oslo" in prompt
    assert "Camera: Canon EOS R5" in prompt


def test_metadata_ignored_when_enrichment_disabled() -> None:
    """Photo context is not read into the prompt unless enrichment is enabled."""
    transport = _QueueTransport(_gemini_ok({"title": "x"}))
    photo = MappingPhotoContext({"cameraMake": "Canon"})

    _engine(transport).analyze(IMAGE, photo)

    body = transport.requests[0].json_body
    assert body is not None
    assert "Canon" not in body["contents"][0]["parts"][0]["text"]


def test_settings_are_read_again_on_every_attempt() -> None:
    """A callable settings source is consulted per attempt, so changes apply mid-retry."""
    snapshots = [Settings(gemini_model="first"), Settings(gemini_model="second")]
    reads: list[Settings] = []

    def current() -> Settings:
        settings = snapshots[min(len(reads), len(snapshots) - 1)]
        reads.append(settings)
        return settings

    transport = _QueueTransport(_error(HTTPStatus.BAD_GATEWAY), _gemini_ok({"title": "ok"}))

    result = _engine(transport, current).analyze(IMAGE)

    assert result.status is True
    assert len(reads) == 2
    assert "/models/first:" in transport.requests[0].url
    assert "/models/second:" in transport.requests[1].url


def test_test_connection_requires_a_key() -> None:
    """The connection test refuses to run without a stored key."""
    transport = _QueueTransport(HttpResponse(status_code=200))

    status = _engine(transport, api_key=None).test_connection()

    assert status.status is False
    assert status.message == "API key not configured"
    assert transport.requests == []


def test_test_connection_delegates_to_provider() -> None:
    """With a key stored, the provider probe decides the outcome."""
    transport = _QueueTransport(HttpResponse(status_code=200, text="{}"))

    status = _engine(transport).test_connection()

    assert status.status is True
    assert status.message == "Connection successful"


def test_stored_key_is_read_again_on_every_attempt() -> None:
    """A key replaced while a photo is being retried is used by the next attempt."""
    secret_store = InMemorySecretStore()
    preferences: dict[str, Any] = {}
    credentials = CredentialStore("gemini", secret_store, preferences)
    credentials.store_api_key("k1")

    class _KeyRotatingTransport(_QueueTransport):
        def send(self, request: HttpRequest) -> HttpResponse:
            response = super().send(request)
            credentials.store_api_key("k2")
            return response

    transport = _KeyRotatingTransport(_error(HTTPStatus.BAD_GATEWAY), _gemini_ok({"title": "ok"}))
    engine = AnalysisEngine(Settings(), secret_store, preferences, transport)

    result = engine.analyze(IMAGE)

    assert result.status is True
    assert transport.requests[0].url.endswith("?key=k1")
    assert transport.requests[1].url.endswith("?key=k2")


def test_key_httpx_cannot_encode_fails_without_raising() -> None:
    """A non-ASCII key is reported as a failed result after a single attempt."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    secret_store = InMemorySecretStore()
    preferences: dict[str, Any] = {}
    CredentialStore("openai", secret_store, preferences).store_api_key("sk-éabc")
    transport = HttpxTransport(httpx.Client(transport=httpx.MockTransport(handler)))

    engine = AnalysisEngine(Settings(provider="openai"), secret_store, preferences, transport)

    result = engine.analyze(IMAGE)

    assert result.status is False
    assert result.message == "UnicodeEncodeError"
    assert seen == []
    transport.close()


def test_missing_exiftool_only_drops_enrichment(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Without an exiftool binary the photo is still analyzed, just without metadata."""
    empty_bin = tmp_path / "bin"
    empty_bin.mkdir()
    monkeypatch.setenv("PATH", str(empty_bin))
    image = tmp_path / "IMG_0005.jpg"
    image.write_bytes(b"jpeg")
    transport = _QueueTransport(_gemini_ok({"title": "Plain"}))

    result = _engine(transport, Settings(include_metadata=True)).analyze(
        IMAGE,
        ExifToolPhotoContext(image),
    )

    assert result.status is True
    assert result.title == "Plain"
    body = transport.requests[0].json_body
    assert body is not None
    assert "Additional context from photo metadata:" not in body["contents"][0]["parts"][0]["text"]


def test_failing_photo_context_only_drops_enrichment() -> None:
    """Any error raised by the metadata source leaves the prompt without context."""

    class _BrokenContext:
        def get_formatted_metadata(self, field: str) -> str | None:
            msg = f"cannot read {field}"
            raise RuntimeError(msg)

    transport = _QueueTransport(_gemini_ok({"title": "Plain"}))

    result = _engine(transport, Settings(include_metadata=True)).analyze(IMAGE, _BrokenContext())

    assert result.status is True
    assert len(transport.requests) == 1


def test_engine_closes_only_the_transport_it_created(monkeypatch: pytest.MonkeyPatch) -> None:
    """The default transport is closed with the engine; an injected one stays open."""
    closed: list[str] = []

    class _ClosingTransport(_QueueTransport):
        def __init__(self, name: str = "owned") -> None:
            super().__init__(HttpResponse(status_code=200))
            self.name = name

        def close(self) -> None:
            closed.append(self.name)

    monkeypatch.setattr(engine_module, "HttpxTransport", _ClosingTransport)

    with AnalysisEngine(Settings(), InMemorySecretStore(), {}):
        pass
    with AnalysisEngine(Settings(), InMemorySecretStore(), {}, _ClosingTransport("injected")):
        pass

    assert closed == ["owned"]
