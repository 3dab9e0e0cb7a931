"""
Turn a prediction's opaque ``output`` into clean reply text.
"""

import re
from typing import Any, Optional

from .exceptions import EmptyResponseError

# Object keys that may carry the reply text, in preference order
TEXT_FIELDS = ("text", "output_text", "response", "content")

_TRAILING_WS = re.compile(r"[ \t]+\n")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def extract_output_text(output: Any) -> str:
    """
    Extract plain text from the shapes backends return.

    Handles a raw string, a list of string tokens and/or ``{"text": ...}``
    items (concatenated in order with no separator, since streaming models
    emit pre-spaced tokens), and an object with one of ``TEXT_FIELDS``.
    Returns an empty string when nothing is found.
    """
    if isinstance(output, str):
        return output

    if isinstance(output, list):
        parts = []
        for item in output:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        joined = "".join(parts)
        if joined:
            return joined

    if isinstance(output, dict):
        for key in TEXT_FIELDS:
            value = output.get(key)
            if isinstance(value, str):
                return value

    return ""


def normalize_assistant_text(text: str) -> str:
    """Unify line endings, strip trailing whitespace, cap blank runs at two lines."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _TRAILING_WS.sub("\n", text)
    text = _EXCESS_BLANK_LINES.sub("\n\n", text)
    return text.strip()


def normalize_output(output: Any, provider: Optional[str] = None) -> str:
    """
    Extract and normalize reply text.

    Raises:
        EmptyResponseError: If no text survives normalization
    """
    text = normalize_assistant_text(extract_output_text(output))
    if not text:
        raise EmptyResponseError("Backend returned empty response", provider=provider)
    return text
