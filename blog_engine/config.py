"""Configuration loader: reads config.yaml, validates with Pydantic.

Credentials never live in the YAML file. Each provider section names the
environment variable holding its key, and the key is read at call time.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, field_validator, model_validator

logger = logging.getLogger(__name__)


def _env(name: str) -> str:
    return os.environ.get(name, "").strip()


class LimitsConfig(BaseModel):
    """Input bounds and generation cost caps."""

    max_prompt_length: int = 500
    max_knowledge_base_length: int = 3000
    min_prompt_length: int = 10
    max_tokens: int = 4000


class RateLimitConfig(BaseModel):
    """Per-identity fixed window."""

    window_seconds: float = 60.0
    max_requests: int = 3
    sweep_interval_seconds: int = 300

    @field_validator("max_requests")
    @classmethod
    def must_admit_something(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_requests must be at least 1")
        return v


class StreamConfig(BaseModel):
    """Tuning knobs for reading a streamed completion."""

    progress_interval_chars: int = 1000
    slow_chunk_seconds: float = 5.0
    max_consecutive_chunk_failures: int = 5


class ProviderConfig(BaseModel):
    """One chat-completions compatible endpoint."""

    name: str
    url: str
    model: str
    api_key_env: str

    def api_key(self) -> str:
        return _env(self.api_key_env)


class ProvidersConfig(BaseModel):
    search: ProviderConfig = ProviderConfig(
        name="Perplexity",
        url="https://api.perplexity.ai/chat/completions",
        model="sonar",
        api_key_env="PERPLEXITY_API_KEY",
    )
    completion: ProviderConfig = ProviderConfig(
        name="OpenAI",
        url="https://api.openai.com/v1/chat/completions",
        model="gpt-4o",
        api_key_env="OPENAI_API_KEY",
    )
    temperature: float = 0.7


class ImagesConfig(BaseModel):
    """Image-generation endpoint. Shares the completion provider's key."""

    url: str = "https://api.openai.com/v1/images/generations"
    model: str = "dall-e-3"
    size: str = "1792x1024"
    quality: str = "standard"
    max_images: int = 1


class SupabaseConfig(BaseModel):
    """Hosted backend used for sessions and object storage."""

    url_env: str = "SUPABASE_URL"
    anon_key_env: str = "SUPABASE_ANON_KEY"
    service_key_env: str = "SUPABASE_SERVICE_ROLE_KEY"
    bucket: str = "blog-images"
    download_timeout_seconds: float = 15.0

    def url(self) -> str:
        return _env(self.url_env).rstrip("/")

    def anon_key(self) -> str:
        return _env(self.anon_key_env)

    def service_key(self) -> str:
        return _env(self.service_key_env)


class EngineConfig(BaseModel):
    """Top-level engine configuration."""

    admin_email: str = ""
    limits: LimitsConfig = LimitsConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    stream: StreamConfig = StreamConfig()
    providers: ProvidersConfig = ProvidersConfig()
    images: ImagesConfig = ImagesConfig()
    supabase: SupabaseConfig = SupabaseConfig()

    # Auth & CORS for operational endpoints
    api_key: str | None = None
    allowed_origins: list[str] = ["*"]

    @model_validator(mode="after")
    def apply_env_overrides(self) -> EngineConfig:
        admin = _env("ADMIN_EMAIL")
        if admin:
            self.admin_email = admin
        return self


# ---------------------------------------------------------------------------
# Module-level config cache
# ---------------------------------------------------------------------------

_config: EngineConfig | None = None
_config_path: str = "config.yaml"


def default_config_path() -> str:
    return os.environ.get("BLOG_ENGINE_CONFIG", "config.yaml")


def load_config(path: str | None = None) -> EngineConfig:
    """Read config.yaml from disk, validate, and cache."""
    global _config, _config_path
    _config_path = path or default_config_path()

    config_file = Path(_config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_file.resolve()}")

    raw = yaml.safe_load(config_file.read_text()) or {}
    _config = EngineConfig(**raw)

    logger.info(
        f"Loaded config: admin={'set' if _config.admin_email else 'unset'}, "
        f"rate_limit={_config.rate_limit.max_requests}/{_config.rate_limit.window_seconds:g}s"
    )
    return _config


def get_config() -> EngineConfig:
    """Return cached config. Raises if not yet loaded."""
    if _config is None:
        raise RuntimeError("Config not loaded, call load_config() first")
    return _config


def reload_config() -> EngineConfig:
    """Re-read config from disk. Called by /reload endpoint."""
    logger.info(f"Reloading config from {_config_path}")
    return load_config(_config_path)
