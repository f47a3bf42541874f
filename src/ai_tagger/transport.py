"""Blocking HTTP transport used by the engine."""

from typing import Protocol

import httpx
from loguru import logger

from ai_tagger.errors import TransportError
from ai_tagger.models import HttpRequest, HttpResponse


class Transport(Protocol):
    """Send a request and return the response, or raise TransportError if none arrived."""

    def send(self, request: HttpRequest) -> HttpResponse: ...


def redact_url(url: str) -> str:
    """
    Drop the query string, which may carry an API key.

    Examples:
        >>> redact_url("https://host/v1/models/m:generateContent?key=secret")
        'https://host/v1/models/m:generateContent'

    """
    return url.split("?", 1)[0]


class HttpxTransport:
    """
    Transport backed by an ``httpx.Client``.

    Every failure to produce a response becomes a TransportError named after the exception
    class, e.g. 'ConnectError', 'ReadTimeout', 'InvalidURL' or 'UnicodeEncodeError' (a
    header value httpx cannot encode).
    """

    def __init__(self, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client()

    def send(self, request: HttpRequest) -> HttpResponse:
        endpoint = redact_url(request.url)
        logger.debug("http_request", method=request.method, endpoint=endpoint)
        try:
            response = self._client.request(
                request.method,
                request.url,
                headers=request.headers,
                json=request.json_body,
                timeout=request.timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError) as exc:
            name = type(exc).__name__
            logger.error("http_transport_error", endpoint=endpoint, error=name)
            raise TransportError(name, str(exc)) from exc

        logger.debug("http_response", endpoint=endpoint, status=response.status_code)
        return HttpResponse(
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
        )

    def close(self) -> None:
        self._client.close()
