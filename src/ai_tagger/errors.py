"""Exception types raised inside ai_tagger."""


class AiTaggerError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(AiTaggerError):
    """Settings reference something that does not exist (e.g. an unknown provider id)."""


class PromptFileError(AiTaggerError):
    """A custom prompt file could not be read or is empty."""


class TransportError(AiTaggerError):
    """
    No HTTP response was received.

    Args:
        name: Short error name (e.g. 'ConnectTimeout'), surfaced to callers as the failure message
        detail: Longer description, only used for logging

    """

    def __init__(self, name: str, detail: str = "") -> None:
        super().__init__(name)
        self.name = name
        self.detail = detail
