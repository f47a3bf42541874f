"""Single-photo analysis: credentials, prompt, request, response parsing and retries."""

import time
from collections.abc import Callable, MutableMapping
from typing import Any, Self

from loguru import logger

from ai_tagger.config import Settings
from ai_tagger.credentials import CredentialStore, SecretStore
from ai_tagger.errors import ConfigurationError, TransportError
from ai_tagger.metadata import PhotoContext, extract_metadata
from ai_tagger.models import AnalysisResult, ConnectionStatus
from ai_tagger.prompts import build_prompt
from ai_tagger.providers import resolve_provider
from ai_tagger.transport import HttpxTransport, Transport

MAX_ATTEMPTS = 3
DEFAULT_MIME_TYPE = "image/jpeg"
MSG_API_KEY_MISSING = "API key missing"
MSG_API_KEY_NOT_CONFIGURED = "API key not configured"
MSG_MAX_RETRIES = "Maximum retries exceeded"

SettingsSource = Settings | Callable[[], Settings]


class AnalysisEngine:
    """
    Drive one analysis request against the configured provider.

    Settings are read again on every attempt, so a configuration or key change made while a
    batch is running is picked up by the next attempt.

    Args:
        settings: A Settings value, or a callable returning the current one
        secret_store: Where provider API keys are persisted
        preferences: Where the key salts are persisted
        transport: HTTP transport; defaults to an httpx-backed one owned (and closed) by the engine
        max_attempts: Total attempts per photo (first try included)

    """

    def __init__(
        self,
        settings: SettingsSource,
        secret_store: SecretStore,
        preferences: MutableMapping[str, Any],
        transport: Transport | None = None,
        *,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        self._settings = settings
        self._secret_store = secret_store
        self._preferences = preferences
        self._owned_transport: HttpxTransport | None = None
        if transport is None:
            transport = self._owned_transport = HttpxTransport()
        self.transport = transport
        self.max_attempts = max_attempts

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client created by the engine; an injected transport is left open."""
        if self._owned_transport is not None:
            self._owned_transport.close()

    def current_settings(self) -> Settings:
        if isinstance(self._settings, Settings):
            return self._settings
        return self._settings()

    def credentials(self, provider_id: str) -> CredentialStore:
        return CredentialStore(provider_id, self._secret_store, self._preferences)

    def analyze(
        self,
        image_bytes: bytes,
        photo: PhotoContext | None = None,
        *,
        mime_type: str = DEFAULT_MIME_TYPE,
        file_name: str | None = None,
    ) -> AnalysisResult:
        """
        Analyze one image, retrying provider-side failures.

        Missing keys, unknown providers, empty images and network failures end the call
        immediately; error responses from the provider are retried up to ``max_attempts``.
        Never raises.

        Args:
            image_bytes: Encoded image sent to the model
            photo: Optional metadata source used when enrichment is enabled
            mime_type: MIME type of ``image_bytes``
            file_name: Used in log lines and error messages only

        Returns:
            The parsed result, or a failed result describing why no result could be produced.

        """
        label = file_name or "image"
        for attempt in range(1, self.max_attempts + 1):
            result, retryable = self._attempt(image_bytes, photo, mime_type, label, attempt)
            if result.status or not retryable:
                return result
            logger.warning(
                "analysis_attempt_failed",
                attempt=attempt,
                max_attempts=self.max_attempts,
                error=result.message,
            )

        logger.error("analysis_retries_exhausted", attempts=self.max_attempts)
        return AnalysisResult.failure(MSG_MAX_RETRIES)

    def _attempt(
        self,
        image_bytes: bytes,
        photo: PhotoContext | None,
        mime_type: str,
        label: str,
        attempt: int,
    ) -> tuple[AnalysisResult, bool]:
        """Run the whole flow once; return the result and whether a retry may help."""
        settings = self.current_settings()
        try:
            client = resolve_provider(settings.provider, settings)
        except ConfigurationError as exc:
            logger.error("provider_configuration_error", error=str(exc))
            return AnalysisResult.failure(str(exc)), False

        api_key = self.credentials(client.provider_id.value).get_api_key()
        if client.requires_api_key and not api_key:
            logger.warning("api_key_missing", provider=client.provider_id.value)
            return AnalysisResult.failure(MSG_API_KEY_MISSING), False

        if not image_bytes:
            logger.error("invalid_image_data", file=label)
            return AnalysisResult.failure(f"Invalid image data for {label}"), False

        metadata = None
        if settings.include_metadata and photo is not None:
            try:
                metadata = extract_metadata(photo)
            except Exception as exc:  # noqa: BLE001
                logger.warning("photo_metadata_unavailable", file=label, error=str(exc))
            logger.debug("photo_metadata_extracted", present=metadata is not None)
        prompt = build_prompt(settings, metadata)

        request = client.build_request(
            prompt,
            image_bytes,
            mime_type,
            settings.generation_params(),
            api_key,
        )
        logger.info(
            "analysis_attempt",
            provider=client.provider_id.value,
            model=client.model,
            attempt=attempt,
            max_attempts=self.max_attempts,
            image_kb=len(image_bytes) // 1024,
        )
        _t0 = time.perf_counter()
        try:
            response = self.transport.send(request)
        except TransportError as exc:
            logger.error("network_error", error=exc.name, detail=exc.detail)
            return AnalysisResult.failure(exc.name), False

        logger.info(
            "provider_responded",
            status=response.status_code,
            seconds=round(time.perf_counter() - _t0, 3),
        )
        return client.parse_response(response.status_code, response.text), True

    def test_connection(self) -> ConnectionStatus:
        """Check that the active provider is reachable with the stored key."""
        settings = self.current_settings()
        try:
            client = resolve_provider(settings.provider, settings)
        except ConfigurationError as exc:
            return ConnectionStatus(status=False, message=str(exc))

        api_key = self.credentials(client.provider_id.value).get_api_key()
        if client.requires_api_key and not api_key:
            logger.error("api_key_not_configured", provider=client.provider_id.value)
            return ConnectionStatus(status=False, message=MSG_API_KEY_NOT_CONFIGURED)
        return client.test_connection(self.transport, api_key)
