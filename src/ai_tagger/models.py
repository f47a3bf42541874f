"""Value objects shared by the providers, the engine and the batch scheduler."""

from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

DESCRIPTIVE_FIELDS = ("title", "caption", "headline", "instructions", "copyright", "location")


class Keyword(BaseModel):
    """A single keyword suggested by the model; every suggestion starts selected."""

    description: str
    selected: bool = True


class GenerationParams(BaseModel):
    """Sampling parameters forwarded to the backend."""

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(ge=0.0, le=2.0)
    top_p: float = Field(gt=0.0, le=1.0)
    max_tokens: int = Field(gt=0)


class AnalysisResult(BaseModel):
    """
    Normalized outcome of one photo analysis.

    A failed result never carries descriptive data and always carries a message.
    A successful result always has a keyword list, even when it is empty.
    """

    status: bool
    title: str = ""
    caption: str = ""
    headline: str = ""
    instructions: str = ""
    copyright: str = ""
    location: str = ""
    keywords: list[Keyword] = Field(default_factory=list)
    message: str | None = None

    @model_validator(mode="after")
    def _check_failure_shape(self) -> Self:
        if self.status:
            return self
        if not self.message:
            msg = "a failed result needs a message"
            raise ValueError(msg)
        if self.keywords or any(getattr(self, name) for name in DESCRIPTIVE_FIELDS):
            msg = "a failed result cannot carry descriptive fields"
            raise ValueError(msg)
        return self

    @classmethod
    def failure(cls, message: str) -> Self:
        return cls(status=False, message=message)

    @classmethod
    def empty(cls) -> Self:
        """Successful result with every field blank (unparseable model output)."""
        return cls(status=True)

    @property
    def selected_keywords(self) -> list[str]:
        return [kw.description for kw in self.keywords if kw.selected]


class ConnectionStatus(BaseModel):
    """Outcome of a provider connection test."""

    status: bool
    message: str


class ProviderDescriptor(BaseModel):
    """Static description of a backend, for configuration surfaces."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    description: str


class HttpRequest(BaseModel):
    """Wire-level request produced by a provider client."""

    model_config = ConfigDict(frozen=True)

    method: str = "POST"
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    json_body: dict[str, Any] | None = None
    timeout: float = 60.0


class HttpResponse(BaseModel):
    """Wire-level response handed back by the transport."""

    status_code: int
    text: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
