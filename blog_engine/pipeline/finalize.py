"""Final formatting pass and terminal payload assembly."""

from __future__ import annotations

import math
import re

from blog_engine.schemas import BlogPost, FinalPayload

WORDS_PER_MINUTE = 200

_HEADING = re.compile(r"\n(#{2,3})")
_EXTRA_NEWLINES = re.compile(r"\n{3,}")


def normalize_spacing(content: str) -> str:
    """Blank line before every ``##``/``###`` heading, never more than one."""
    content = _HEADING.sub(r"\n\n\1", content)
    return _EXTRA_NEWLINES.sub("\n\n", content)


def count_words(content: str) -> int:
    return len(content.split())


def finalize_post(post: BlogPost, total_duration: int) -> FinalPayload:
    post.content = normalize_spacing(post.content)
    words = count_words(post.content)
    post.read_time = math.ceil(words / WORDS_PER_MINUTE)
    return FinalPayload(
        **post.model_dump(),
        word_count=words,
        total_duration=total_duration,
    )
