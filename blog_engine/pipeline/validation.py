"""Input sanitizing for user-supplied prompt and knowledge-base text."""

from __future__ import annotations

import re
from typing import Any

_ANGLE_BRACKETS = re.compile(r"[<>]")
_JS_SCHEME = re.compile(r"javascript:", re.IGNORECASE)


def sanitize_input(value: Any, max_length: int) -> str:
    """Trim, cap and strip markup-ish characters from user text.

    Non-string or empty input yields an empty string. Never raises.
    """
    if not value or not isinstance(value, str):
        return ""

    text = value.strip()[:max_length]
    text = _ANGLE_BRACKETS.sub("", text)
    # Removal can splice a new scheme together ("javajavascript:script:").
    while True:
        stripped = _JS_SCHEME.sub("", text)
        if stripped == text:
            return stripped
        text = stripped
