"""Runtime: bridges HTTP requests to the blog-generation pipeline.

Validates the request body, then runs the stages in order and reports each
one as SSE progress frames:

    setup -> web_search -> content_generation -> image_generation -> finalization

Every run ends with exactly one terminal frame (``final_result`` or an error
frame) and closes the stream exactly once.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PayloadError

from blog_engine.errors import AuthError, ConfigError, RateLimitError, ValidationError
from blog_engine.pipeline.extract import extract_post
from blog_engine.pipeline.finalize import count_words, finalize_post
from blog_engine.pipeline.images import ImageGenerator, enrich_post, splice_images
from blog_engine.pipeline.providers import CompletionVariant, select_provider
from blog_engine.pipeline.validation import sanitize_input
from blog_engine.schemas import CurrentUser, GenerationPayload, GenerationRequest

if TYPE_CHECKING:
    import httpx

    from blog_engine.auth import AuthorizationPolicy
    from blog_engine.config import EngineConfig, LimitsConfig
    from blog_engine.pipeline.progress import ProgressEmitter
    from blog_engine.pipeline.rate_limit import RateLimiter
    from blog_engine.schemas import BlogPost

logger = logging.getLogger(__name__)


def build_request(body: Any, limits: LimitsConfig) -> GenerationRequest:
    """Validate and sanitize a raw request body.

    The caller identity is attached later with ``with_identity``, once the
    session has been resolved. Raises ValidationError with a client-facing
    message on failure.
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    try:
        payload = GenerationPayload.model_validate(body)
    except PayloadError as e:
        fields = ", ".join(str(err["loc"][-1]) for err in e.errors())
        raise ValidationError(f"Invalid request fields: {fields}") from e

    prompt = sanitize_input(payload.prompt, limits.max_prompt_length)
    knowledge_base = sanitize_input(payload.knowledge_base, limits.max_knowledge_base_length)

    if len(prompt) < limits.min_prompt_length:
        raise ValidationError(
            f"Prompt must be at least {limits.min_prompt_length} characters long"
        )

    return GenerationRequest(
        identity=None,
        prompt=prompt,
        knowledge_base=knowledge_base,
        include_web_search=payload.include_web_search,
        include_images=payload.include_images,
    )


def with_identity(request: GenerationRequest, user: CurrentUser | None) -> GenerationRequest:
    if user is None:
        return request
    return request.model_copy(update={"identity": user.email or user.id})


@dataclass
class StepOutcome:
    message: str | None = None


class GenerationOrchestrator:
    def __init__(
        self,
        config: EngineConfig,
        client: httpx.AsyncClient,
        rate_limiter: RateLimiter,
        policy: AuthorizationPolicy,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.client = client
        self.rate_limiter = rate_limiter
        self.policy = policy
        self.clock = clock

    async def run(
        self,
        request: GenerationRequest,
        user: CurrentUser | None,
        emitter: ProgressEmitter,
    ) -> None:
        started = self.clock()
        try:
            try:
                variant = self._preflight(request, user)
            except (AuthError, RateLimitError, ConfigError) as e:
                logger.warning(f"Blog generation refused: {e}")
                emitter.progress("setup", "error", message=str(e))
                return

            await self._execute(request, variant, emitter, started)
        except Exception as e:
            logger.error(f"Blog generation error: {e}", exc_info=True)
            emitter.progress("error", "error", message=str(e) or "Unknown error occurred")
        finally:
            emitter.close()

    def _preflight(self, request: GenerationRequest, user: CurrentUser | None) -> CompletionVariant:
        if user is None:
            raise AuthError("Authentication required. Please sign in again.")
        if not self.policy.is_authorized(user):
            raise AuthError("Admin access required for blog generation.")

        limits = self.config.rate_limit
        if not self.rate_limiter.admit(request.identity or user.id, self.clock()):
            raise RateLimitError(
                f"Rate limit exceeded. Maximum {limits.max_requests} requests "
                f"per {_window_label(limits.window_seconds)}."
            )

        return select_provider(self.config, request)

    async def _execute(
        self,
        request: GenerationRequest,
        variant: CompletionVariant,
        emitter: ProgressEmitter,
        started: float,
    ) -> None:
        with self._step(emitter, "setup") as step:
            step.message = (
                "Using custom knowledge base"
                if request.knowledge_base
                else "Using default SEO guidelines"
            )

        with self._step(emitter, "web_search") as step:
            if request.include_web_search:
                step.message = f"Will use {variant.provider.name} {variant.provider.model} for web search"
            else:
                step.message = "Skipped - disabled"

        with self._step(emitter, "content_generation") as step:
            raw = await variant.produce(self.client, emitter)
            post = extract_post(raw, request.prompt)
            step.message = f"Generated {count_words(post.content)} words of long-form content"

        if request.include_images:
            await self._images(post, emitter)
        else:
            emitter.progress("image_generation", "completed", duration=0, message="Skipped - disabled")

        with self._step(emitter, "finalization"):
            payload = finalize_post(post, total_duration=self._ms_since(started))

        emitter.emit_result(payload)

    async def _images(self, post: BlogPost, emitter: ProgressEmitter) -> None:
        images = self.config.images
        try:
            with self._step(emitter, "image_generation") as step:
                emitter.progress(
                    "image_generation",
                    "running",
                    message=f"Generating {images.max_images} images...",
                )
                generator = ImageGenerator(
                    self.client, images, self.config.providers.completion.api_key()
                )
                await enrich_post(post, generator, images.max_images)
                step.message = (
                    f"Generated {len(post.generated_images)} images with proper placement"
                )
        except Exception as e:
            logger.warning(f"Image stage degraded, publishing without images: {e}")
            post.generated_images = []
            post.content = splice_images(post.content, [])

    @contextmanager
    def _step(self, emitter: ProgressEmitter, step: str) -> Iterator[StepOutcome]:
        """Bracket a stage with ``starting`` and ``completed``/``error`` frames."""
        emitter.progress(step, "starting")
        outcome = StepOutcome()
        step_started = self.clock()
        try:
            yield outcome
        except Exception as e:
            emitter.progress(
                step,
                "error",
                duration=self._ms_since(step_started),
                message=str(e) or f"{step} failed",
            )
            raise
        emitter.progress(
            step,
            "completed",
            duration=self._ms_since(step_started),
            message=outcome.message,
        )

    def _ms_since(self, started: float) -> int:
        return int((self.clock() - started) * 1000)


def _window_label(seconds: float) -> str:
    if seconds == 60:
        return "minute"
    return f"{seconds:g} seconds"
