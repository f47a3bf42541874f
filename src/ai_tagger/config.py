"""Runtime settings and the small JSON-backed preference store."""

import json
import os
from collections.abc import Iterator, MutableMapping
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ai_tagger.models import GenerationParams

# Configuration defaults
DEFAULT_PROVIDER = os.getenv("AI_TAGGER_PROVIDER", "gemini")
DEFAULT_GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL",
    "https://generativelanguage.googleapis.com/v1beta",
)
DEFAULT_GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
DEFAULT_OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
DEFAULT_OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
DEFAULT_OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
DEFAULT_OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llava:latest")
DEFAULT_TEMPERATURE = float(os.getenv("TEMPERATURE", "0.4"))
DEFAULT_TOP_P = float(os.getenv("TOP_P", "0.8"))
DEFAULT_MAX_TOKENS = int(os.getenv("MAX_TOKENS", "1024"))
DEFAULT_REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "60"))
DEFAULT_BATCH_SIZE = int(os.getenv("BATCH_SIZE", "5"))
DEFAULT_REQUEST_DELAY_MS = int(os.getenv("REQUEST_DELAY_MS", "1000"))
DEFAULT_RESPONSE_LANGUAGE = os.getenv("RESPONSE_LANGUAGE", "English")


class Settings(BaseModel):
    """
    Everything the engine and the scheduler read at call time.

    Instances are immutable; use ``model_copy(update=...)`` to derive a changed configuration.
    """

    model_config = ConfigDict(frozen=True)

    provider: str = DEFAULT_PROVIDER
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL
    gemini_model: str = DEFAULT_GEMINI_MODEL
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    openai_model: str = DEFAULT_OPENAI_MODEL
    ollama_base_url: str = DEFAULT_OLLAMA_BASE_URL
    ollama_model: str = DEFAULT_OLLAMA_MODEL

    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    top_p: float = Field(default=DEFAULT_TOP_P, gt=0.0, le=1.0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0.0)

    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    delay_between_requests_ms: int = Field(default=DEFAULT_REQUEST_DELAY_MS, ge=0)

    include_metadata: bool = False
    use_custom_prompt: bool = False
    custom_prompt: str = ""
    preset_name: str | None = None
    response_language: str = DEFAULT_RESPONSE_LANGUAGE
    use_hierarchical_keywords: bool = False

    def generation_params(self) -> GenerationParams:
        return GenerationParams(
            temperature=self.temperature,
            top_p=self.top_p,
            max_tokens=self.max_tokens,
        )


class JsonPreferences(MutableMapping[str, Any]):
    """
    Flat key/value preferences persisted as a JSON object.

    Every mutation is written straight back to disk; reads always go to the file so that
    several processes sharing the same directory see each other's changes.

    Examples:
        >>> prefs = JsonPreferences(Path("/tmp/prefs.json"))  # doctest: +SKIP
        >>> prefs["gemini.salt"] = "1234"  # doctest: +SKIP

    """

    def __init__(self, path: Path) -> None:
        self._path = path

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("preferences_unreadable", file=str(self._path), error=str(exc))
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")

    def __getitem__(self, key: str) -> Any:  # noqa: ANN401
        return self._load()[key]

    def __setitem__(self, key: str, value: Any) -> None:  # noqa: ANN401
        data = self._load()
        data[key] = value
        self._save(data)

    def __delitem__(self, key: str) -> None:
        data = self._load()
        del data[key]
        self._save(data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._load())

    def __len__(self) -> int:
        return len(self._load())
