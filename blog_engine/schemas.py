"""Request/response models: the contract between engine and clients."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Step = Literal[
    "setup",
    "web_search",
    "content_generation",
    "image_generation",
    "finalization",
    "error",
]
Status = Literal["starting", "running", "completed", "error"]


class GenerationPayload(BaseModel):
    """Raw request body. Prompt and knowledge base are sanitized afterwards,
    so any JSON value is accepted here."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: Any = None
    knowledge_base: Any = Field(default=None, alias="knowledgeBase")
    include_web_search: bool = Field(default=True, alias="includeWebSearch")
    include_images: bool = Field(default=True, alias="includeImages")


class GenerationRequest(BaseModel):
    """One validated pipeline run. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    identity: str | None
    prompt: str
    knowledge_base: str = ""
    include_web_search: bool = True
    include_images: bool = True


class CurrentUser(BaseModel):
    id: str
    email: str | None = None


class ProgressEvent(BaseModel):
    """A single SSE progress frame.

    Steps run in order: setup, web_search, content_generation,
    image_generation, finalization. ``error`` is the synthetic step used
    for the terminal failure frame.
    """

    step: Step
    status: Status
    duration: int | None = None
    message: str | None = None


class GeneratedImage(BaseModel):
    url: str
    prompt: str
    description: str
    placement: Literal["hero", "content"] = "hero"
    original_url: str | None = None


class BlogPost(BaseModel):
    """Draft post extracted from model output, enriched in place."""

    model_config = ConfigDict(extra="ignore")

    title: str
    content: str
    meta_description: str = ""
    category: str = "AI Tools"
    read_time: int = 5
    generated_images: list[GeneratedImage] = []

    @field_validator("meta_description", "category", mode="before")
    @classmethod
    def text_or_default(cls, v: Any, info) -> Any:
        if v is None:
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("read_time", mode="before")
    @classmethod
    def coerce_read_time(cls, v: Any) -> Any:
        # Models sometimes answer with prose here; it is recomputed anyway.
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return 5
        return max(0, int(v))


class FinalPayload(BlogPost):
    word_count: int
    total_duration: int


class RehostRequest(BaseModel):
    title: str
    images: list[GeneratedImage]


class RehostResponse(BaseModel):
    images: list[GeneratedImage]
