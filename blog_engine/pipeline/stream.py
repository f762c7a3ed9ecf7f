"""Incremental reader for chat-completions event streams.

The provider sends ``data: <json>`` lines. Each fragment is parsed on its
own; a broken fragment is skipped. Only a run of chunks in which nothing
parsed, longer than ``max_failed_chunks``, aborts the read.
"""

from __future__ import annotations

import codecs
import json
import logging
import time
from collections.abc import AsyncIterable, Callable
from typing import TYPE_CHECKING, Any

from blog_engine.errors import TransportError

if TYPE_CHECKING:
    from blog_engine.pipeline.progress import ProgressEmitter

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class _MalformedFragment(ValueError):
    pass


def _choice(fragment: Any) -> dict:
    if not isinstance(fragment, dict):
        raise _MalformedFragment(f"expected an object, got {type(fragment).__name__}")
    choices = fragment.get("choices")
    if not choices:
        return {}
    if not isinstance(choices, list):
        raise _MalformedFragment("choices is not a list")
    first = choices[0]
    if not isinstance(first, dict):
        raise _MalformedFragment("choice is not an object")
    return first


class StreamConsumer:
    """Accumulates completion text from a chunked event stream."""

    def __init__(
        self,
        emitter: ProgressEmitter,
        *,
        step: str = "content_generation",
        progress_interval_chars: int = 1000,
        slow_chunk_seconds: float = 5.0,
        max_failed_chunks: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.emitter = emitter
        self.step = step
        self.progress_interval_chars = progress_interval_chars
        self.slow_chunk_seconds = slow_chunk_seconds
        self.max_failed_chunks = max_failed_chunks
        self.clock = clock

        self.text = ""
        self.chunk_count = 0
        self.complete = False
        self._failed_streak = 0
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._next_mark = progress_interval_chars

    async def consume(self, chunks: AsyncIterable[bytes]) -> str:
        """Read chunks until the stream ends or a complete message arrives."""
        last_chunk_at = self.clock()
        async for chunk in chunks:
            gap = self.clock() - last_chunk_at
            if gap > self.slow_chunk_seconds:
                logger.info(f"Long delay detected: {gap:.1f}s between chunks")
                self.emitter.progress(
                    self.step, "running", message=f"Processing... ({round(gap)}s delay)"
                )

            self.feed(chunk)
            last_chunk_at = self.clock()
            if self.complete:
                break

        if not self.complete:
            self.flush()

        if self.chunk_count == 0:
            raise TransportError("No response body received from provider")

        logger.info(
            f"Streaming complete. Total chunks: {self.chunk_count}, "
            f"final content length: {len(self.text)}"
        )
        return self.text

    def feed(self, chunk: bytes) -> None:
        """Process one raw chunk. A trailing partial line waits for the next chunk."""
        if not chunk:
            return
        self.chunk_count += 1
        lines = (self._pending + self._decoder.decode(chunk)).split("\n")
        self._pending = lines.pop()
        self._process(lines)

    def flush(self) -> None:
        rest = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        if rest.strip():
            self._process([rest])

    def _process(self, lines: list[str]) -> None:
        parsed = failed = 0
        for raw in lines:
            line = raw.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            data = line[len(DATA_PREFIX):]
            if data.strip() == DONE_SENTINEL:
                logger.debug("Received [DONE] signal")
                continue

            try:
                self._apply(json.loads(data))
            except (json.JSONDecodeError, _MalformedFragment) as e:
                failed += 1
                if '"usage"' not in data:
                    logger.warning(f"Failed to parse stream fragment ({e}): {data[:100]}")
                continue

            parsed += 1
            if self.complete:
                break

        if parsed:
            self._failed_streak = 0
        elif failed:
            self._failed_streak += 1
            if self._failed_streak > self.max_failed_chunks:
                raise TransportError(
                    f"Provider stream unreadable: {self._failed_streak} consecutive chunks failed to parse"
                )

    def _apply(self, fragment: Any) -> None:
        choice = _choice(fragment)

        delta = choice.get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            self._append(delta["content"])
            return

        message = choice.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            # Whole answer delivered over the stream: replace and stop reading.
            self.text = message["content"]
            self.complete = True

    def _append(self, content: str) -> None:
        if not content:
            return
        self.text += content
        if len(self.text) < self._next_mark:
            return

        interval = self.progress_interval_chars
        self._next_mark = (len(self.text) // interval + 1) * interval
        self.emitter.progress(
            self.step,
            "running",
            message=f"Generated {len(self.text)} characters ({len(self.text.split())} words)...",
        )
