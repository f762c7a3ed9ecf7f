"""Provider selection and response consumption for content generation.

Two response shapes exist: a streamed chat completion read chunk by chunk,
and a search-augmented completion returned as one JSON document. Each is a
variant exposing ``produce(client, emitter) -> str``; the selector picks one
per request.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from blog_engine.errors import ConfigError, ProviderError
from blog_engine.pipeline.stream import StreamConsumer
from blog_engine.prompts import build_system_message, estimate_tokens

if TYPE_CHECKING:
    import httpx

    from blog_engine.config import EngineConfig, ProviderConfig
    from blog_engine.pipeline.progress import ProgressEmitter
    from blog_engine.schemas import GenerationRequest

logger = logging.getLogger(__name__)

STEP = "content_generation"


class CompletionVariant(Protocol):
    provider: ProviderConfig

    async def produce(self, client: httpx.AsyncClient, emitter: ProgressEmitter) -> str: ...


@dataclass
class _CompletionCall:
    provider: ProviderConfig
    api_key: str
    body: dict[str, Any]

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }


@dataclass
class WholeDocumentCompletion(_CompletionCall):
    """Search-augmented provider; blocks until the full answer is ready."""

    async def produce(self, client: httpx.AsyncClient, emitter: ProgressEmitter) -> str:
        emitter.progress(
            STEP,
            "running",
            message=f"Connected to {self.provider.name}, researching and writing long-form content...",
        )
        logger.info(f"Sending request to {self.provider.name} API...")
        started = time.monotonic()
        response = await client.post(self.provider.url, json=self.body, headers=self.headers)
        logger.info(f"API response received in {_ms_since(started)}ms")

        if not response.is_success:
            raise ProviderError.from_status(response.status_code, response.text)

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Unexpected {self.provider.name} response format") from e
        if not isinstance(content, str):
            raise ProviderError(f"Unexpected {self.provider.name} response format")

        logger.info(f"Received complete response: {len(content)} characters")
        return content


@dataclass
class StreamingCompletion(_CompletionCall):
    """Plain completion provider read as an event stream."""

    progress_interval_chars: int = 1000
    slow_chunk_seconds: float = 5.0
    max_failed_chunks: int = 5

    async def produce(self, client: httpx.AsyncClient, emitter: ProgressEmitter) -> str:
        logger.info(f"Sending request to {self.provider.name} API...")
        started = time.monotonic()
        async with client.stream(
            "POST", self.provider.url, json=self.body, headers=self.headers
        ) as response:
            elapsed = _ms_since(started)
            logger.info(f"API response received in {elapsed}ms")

            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise ProviderError.from_status(response.status_code, body)

            emitter.progress(
                STEP,
                "running",
                message=f"API connected ({elapsed}ms), generating long-form content...",
            )
            consumer = StreamConsumer(
                emitter,
                step=STEP,
                progress_interval_chars=self.progress_interval_chars,
                slow_chunk_seconds=self.slow_chunk_seconds,
                max_failed_chunks=self.max_failed_chunks,
            )
            return await consumer.consume(response.aiter_bytes())


def _ms_since(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def check_credentials(config: EngineConfig, include_web_search: bool) -> None:
    """Raise ConfigError when the path this request needs has no key."""
    providers = config.providers
    if not providers.completion.api_key():
        raise ConfigError(f"{providers.completion.name} API key not configured")
    if include_web_search and not providers.search.api_key():
        raise ConfigError(
            f"{providers.search.name} API key not configured. "
            f"Please add {providers.search.api_key_env} to environment variables."
        )


def select_provider(config: EngineConfig, request: GenerationRequest) -> CompletionVariant:
    """Choose the completion variant for this request.

    Web search with a search credential uses the search-augmented provider
    (whole document). Anything else streams from the completion provider.
    """
    check_credentials(config, request.include_web_search)
    providers = config.providers

    system_message = build_system_message(
        request.prompt, request.knowledge_base, request.include_web_search
    )
    messages = [
        {"role": "system", "content": system_message},
        {"role": "user", "content": request.prompt},
    ]

    if request.include_web_search:
        provider = providers.search
    else:
        provider = providers.completion

    body: dict[str, Any] = {
        "model": provider.model,
        "messages": messages,
        "max_tokens": config.limits.max_tokens,
        "stream": not request.include_web_search,
        "temperature": providers.temperature,
    }

    logger.info(
        f"Estimated tokens: {estimate_tokens(system_message + request.prompt)} "
        f"(model: {provider.model})"
    )

    if request.include_web_search:
        return WholeDocumentCompletion(provider=provider, api_key=provider.api_key(), body=body)

    body["response_format"] = {"type": "json_object"}
    return StreamingCompletion(
        provider=provider,
        api_key=provider.api_key(),
        body=body,
        progress_interval_chars=config.stream.progress_interval_chars,
        slow_chunk_seconds=config.stream.slow_chunk_seconds,
        max_failed_chunks=config.stream.max_consecutive_chunk_failures,
    )
