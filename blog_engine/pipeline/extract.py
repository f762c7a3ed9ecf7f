"""Pull the blog post object out of free-form model output.

The model is asked for JSON but may wrap it in prose or code fences. Every
``{`` is tried as the start of a JSON object; the first one that decodes
and validates as a post wins. Failure never propagates: the caller always
gets a well-formed post, possibly the fallback.
"""

from __future__ import annotations

import json
import logging
import re

from pydantic import ValidationError

from blog_engine.errors import ParseError
from blog_engine.schemas import BlogPost

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = "AI Tools"
FALLBACK_READ_TIME = 5
TARGET_MIN_WORDS = 1500

# Order matters: "\\n" must become a newline before "\\\\" collapses.
_UNESCAPES = (
    ("\\n", "\n"),
    ("\\*", "*"),
    ('\\"', '"'),
    ("\\\\", "\\"),
    ("\\#", "#"),
    ("\\-", "-"),
    ("\\>", ">"),
    ("\\`", "`"),
    ("\\[", "["),
    ("\\]", "]"),
    ("\\(", "("),
    ("\\)", ")"),
)
_CITATION = re.compile(r"\[\d+\]")

_decoder = json.JSONDecoder(strict=False)


def unescape_content(text: str) -> str:
    for literal, replacement in _UNESCAPES:
        text = text.replace(literal, replacement)
    return text


def strip_citations(text: str) -> str:
    """Remove ``[12]``-style markers, including ones formed by a removal."""
    while True:
        stripped = _CITATION.sub("", text)
        if stripped == text:
            return stripped
        text = stripped


def find_post(raw: str) -> BlogPost:
    """Decode the first embedded JSON object that is a valid post.

    Raises ParseError when there is none.
    """
    start = raw.find("{")
    if start == -1:
        raise ParseError("No JSON found in response")

    last_error: Exception | None = None
    while start != -1:
        try:
            candidate, _ = _decoder.raw_decode(raw, start)
            if isinstance(candidate, dict):
                # Images are attached by the image stage only.
                candidate.pop("generated_images", None)
                return BlogPost.model_validate(candidate)
        except (json.JSONDecodeError, ValidationError) as e:
            last_error = e
        start = raw.find("{", start + 1)

    raise ParseError(f"No valid post object in response: {last_error}")


def fallback_post(prompt: str) -> BlogPost:
    return BlogPost(
        title=f"{prompt[:60]}...",
        content=(
            f"# {prompt}\n\nWe apologize, but there was an error generating "
            f"this blog post. Please try again."
        ),
        meta_description=f"Learn about {prompt}. Expert insights and strategies."[:160],
        category=FALLBACK_CATEGORY,
        read_time=FALLBACK_READ_TIME,
    )


def extract_post(raw: str, prompt: str) -> BlogPost:
    """Return the cleaned post from ``raw``, or the fallback for ``prompt``."""
    try:
        post = find_post(raw.strip())
    except ParseError as e:
        logger.error(f"Failed to parse blog JSON: {e}")
        logger.error(f"Raw content preview: {raw[:500]}")
        return fallback_post(prompt)

    post.content = strip_citations(unescape_content(post.content))

    word_count = len(post.content.split())
    if word_count < TARGET_MIN_WORDS:
        logger.warning(
            f"Content too short: {word_count} words. Expected 2000-3000 words."
        )
    return post
