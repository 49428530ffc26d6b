"""Base prompt template and text helpers."""

import math
import re
from abc import ABC, abstractmethod

_HTML_TAG = re.compile(r"<[^>]*>")
_CSS_FONT_FAMILY = re.compile(r"-apple-system[^;]*;")
_WHITESPACE = re.compile(r"\s+")


def clean_text(text: str | None) -> str:
    """Strip HTML tags and inline font declarations, collapse whitespace."""
    if not text:
        return ""
    text = _HTML_TAG.sub("", text)
    text = _CSS_FONT_FAMILY.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def truncate(text: str, max_chars: int, suffix: str = "...") -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + suffix


def estimate_tokens(text: str) -> int:
    """Rough token count (4 chars per token, rounded up)."""
    return math.ceil(len(text) / 4)


class PromptTemplate(ABC):
    """Abstract base class for prompts sent to the generation callback."""

    TEMPLATE: str = ""

    @abstractmethod
    def format(self, **kwargs) -> str:
        """Format the prompt.

        Returns:
            Formatted prompt string
        """
