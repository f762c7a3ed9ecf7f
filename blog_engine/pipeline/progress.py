"""Progress emitter: serializes SSE frames onto a byte sink.

Frames are written as soon as they are emitted. A failing sink is logged,
never raised into the pipeline.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from blog_engine.schemas import FinalPayload, ProgressEvent

logger = logging.getLogger(__name__)


class Sink(Protocol):
    def write(self, data: bytes) -> None: ...

    def close(self) -> None: ...


class QueueSink:
    """Sink feeding an asyncio queue; ``None`` marks end of stream."""

    def __init__(self, queue: asyncio.Queue[bytes | None] | None = None):
        self.queue: asyncio.Queue[bytes | None] = queue or asyncio.Queue()

    def write(self, data: bytes) -> None:
        self.queue.put_nowait(data)

    def close(self) -> None:
        self.queue.put_nowait(None)

    async def frames(self):
        while True:
            data = await self.queue.get()
            if data is None:
                return
            yield data


def encode_frame(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload)}\n\n".encode("utf-8")


class ProgressEmitter:
    def __init__(self, sink: Sink):
        self._sink = sink
        self._closed = False

    def emit(self, event: ProgressEvent) -> None:
        self._write(event.model_dump(exclude_none=True))

    def progress(self, step: str, status: str, **kwargs: Any) -> None:
        self.emit(ProgressEvent(step=step, status=status, **kwargs))

    def emit_result(self, payload: FinalPayload) -> None:
        self._write({"type": "final_result", "data": payload.model_dump(exclude_none=True)})

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._sink.close()
        except Exception as e:
            logger.error(f"Failed to close progress stream: {e}", exc_info=True)

    def _write(self, payload: dict[str, Any]) -> None:
        if self._closed:
            logger.warning(f"Dropping frame written after close: {payload}")
            return
        try:
            self._sink.write(encode_frame(payload))
        except Exception as e:
            logger.error(f"Failed to write progress frame: {e}")
