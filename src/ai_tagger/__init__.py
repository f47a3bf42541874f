"""Generate titles, captions, headlines and keywords for photos with vision-language models."""

__version__ = "0.1.0"
