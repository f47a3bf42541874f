"""
Salted API-key storage.

A provider's key lives in a ``SecretStore`` under a fixed identifier, and the salt used to store
it lives in the preferences. Retrieval must present the salt saved at store time; a fresh salt
is drawn on every store so an older copy of the persisted secret cannot be replayed.
"""

import base64
import hashlib
import hmac
import json
import secrets
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

KEY_IDENTIFIERS = {
    "gemini": "GeminiAI.ApiKey",
    "openai": "OpenAI.ApiKey",
    "ollama": "Ollama.ApiKey",
}
PBKDF2_ITERATIONS = 100_000


class SecretStore(Protocol):
    """Opaque secret persistence keyed by identifier and salt."""

    def store(self, identifier: str, secret: str, salt: str | None = None) -> None: ...

    def retrieve(self, identifier: str, salt: str | None = None) -> str | None: ...


class InMemorySecretStore:
    """Process-local secret store; a secret is only returned for the salt it was stored with."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, str | None]] = {}

    def store(self, identifier: str, secret: str, salt: str | None = None) -> None:
        self._entries[identifier] = (secret, salt)

    def retrieve(self, identifier: str, salt: str | None = None) -> str | None:
        entry = self._entries.get(identifier)
        if entry is None:
            return None
        secret, stored_salt = entry
        if stored_salt != salt:
            return None
        return secret


def _keystream(salt: str, identifier: str, length: int) -> bytes:
    return hashlib.pbkdf2_hmac(
        "sha256",
        salt.encode("utf-8"),
        identifier.encode("utf-8"),
        PBKDF2_ITERATIONS,
        dklen=length,
    )


def _digest(salt: str, secret: bytes) -> str:
    return hashlib.sha256(salt.encode("utf-8") + secret).hexdigest()


class FileSecretStore:
    """
    Secrets kept in a JSON file, obfuscated with a salt-derived keystream.

    This keeps keys out of plain sight in the config directory; it is not a substitute for an
    OS keychain.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("secret_store_unreadable", file=str(self._path), error=str(exc))
            return {}
        return data if isinstance(data, dict) else {}

    def store(self, identifier: str, secret: str, salt: str | None = None) -> None:
        raw = secret.encode("utf-8")
        salt_text = salt or ""
        stream = _keystream(salt_text, identifier, len(raw)) if raw else b""
        masked = bytes(a ^ b for a, b in zip(raw, stream, strict=True))
        data = self._load()
        data[identifier] = {
            "digest": _digest(salt_text, raw),
            "data": base64.b64encode(masked).decode("ascii"),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        self._path.chmod(0o600)

    def retrieve(self, identifier: str, salt: str | None = None) -> str | None:
        entry = self._load().get(identifier)
        if not isinstance(entry, dict):
            return None
        salt_text = salt or ""
        try:
            masked = base64.b64decode(entry.get("data", ""), validate=True)
        except ValueError:
            logger.warning("secret_entry_corrupt", identifier=identifier)
            return None
        stream = _keystream(salt_text, identifier, len(masked)) if masked else b""
        raw = bytes(a ^ b for a, b in zip(masked, stream, strict=True))
        if not hmac.compare_digest(_digest(salt_text, raw), str(entry.get("digest", ""))):
            logger.debug("secret_salt_mismatch", identifier=identifier)
            return None
        return raw.decode("utf-8", errors="replace")


class CredentialStore:
    """
    API key of a single provider.

    Args:
        provider_id: Provider the key belongs to (e.g. 'gemini')
        secret_store: Where the secret itself is persisted
        preferences: Where the salt is persisted, under '<provider_id>.salt'

    Examples:
        >>> store = CredentialStore("gemini", InMemorySecretStore(), {})
        >>> store.has_api_key()
        False
        >>> store.store_api_key("abc")
        >>> store.get_api_key()
        'abc'

    """

    def __init__(
        self,
        provider_id: str,
        secret_store: SecretStore,
        preferences: MutableMapping[str, Any],
    ) -> None:
        self.provider_id = provider_id
        self._secret_store = secret_store
        self._preferences = preferences

    @property
    def identifier(self) -> str:
        return KEY_IDENTIFIERS.get(self.provider_id, f"{self.provider_id}.ApiKey")

    @property
    def _salt_key(self) -> str:
        return f"{self.provider_id}.salt"

    def store_api_key(self, secret: str) -> None:
        salt = secrets.token_hex(16)
        self._preferences[self._salt_key] = salt
        self._secret_store.store(self.identifier, secret, salt)
        logger.info("api_key_stored", provider=self.provider_id, empty=not secret)

    def clear_api_key(self) -> None:
        self._preferences.pop(self._salt_key, None)
        self._secret_store.store(self.identifier, "")
        logger.info("api_key_cleared", provider=self.provider_id)

    def get_api_key(self) -> str:
        salt = self._preferences.get(self._salt_key)
        secret = self._secret_store.retrieve(self.identifier, salt)
        logger.debug(
            "api_key_read",
            provider=self.provider_id,
            present=bool(secret),
            salt_present=salt is not None,
        )
        return secret or ""

    def has_api_key(self) -> bool:
        return self.get_api_key() != ""
