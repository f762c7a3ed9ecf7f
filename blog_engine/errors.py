"""Exception taxonomy for the blog-generation pipeline.

Preflight errors (auth, rate limit, config) surface as a single ``setup``
error frame. Provider and transport errors escaping content generation end
the stream with an ``error`` frame. Parse errors never leave the extractor.
"""

from __future__ import annotations


class BlogEngineError(Exception):
    """Base class for every error the engine raises on purpose."""


class ValidationError(BlogEngineError):
    """Request body is malformed or the prompt is too short."""


class AuthError(BlogEngineError):
    """Caller has no session or is not the privileged principal."""


class RateLimitError(BlogEngineError):
    """Caller exceeded the per-window request allowance."""


class ConfigError(BlogEngineError):
    """A credential required by the selected path is not configured."""


class ProviderError(BlogEngineError):
    """A completion or image provider answered with an error or bad shape."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @classmethod
    def from_status(cls, status_code: int, body: str) -> ProviderError:
        return cls(f"API error: {status_code} - {body}", status_code=status_code, body=body)


class ParseError(BlogEngineError):
    """No usable post object could be extracted from model output."""


class TransportError(BlogEngineError):
    """The provider stream is empty or persistently unreadable."""
