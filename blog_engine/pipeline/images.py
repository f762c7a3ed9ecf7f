"""Hero image generation and placeholder splicing.

Generation failures stay inside this module: a failed image is dropped,
and when none succeed every ``[IMAGE: ...]`` marker is removed so none leak
into the published post.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING

from blog_engine.errors import ProviderError
from blog_engine.schemas import BlogPost, GeneratedImage

if TYPE_CHECKING:
    import httpx

    from blog_engine.config import ImagesConfig

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\[IMAGE: ([^\]]+)\]")

# (title keywords, prompt template); first match wins.
_TOPIC_TEMPLATES: tuple[tuple[tuple[str, ...], str], ...] = (
    (
        ("ai tools", "artificial intelligence"),
        "Create a detailed hero image showing specific AI tools interfaces. Include visual "
        "representations of ChatGPT, Claude, and Midjourney interfaces on computer screens. "
        "Show a modern workspace with multiple monitors displaying these AI applications. "
        "Use purple and blue accents, professional tech aesthetic. No text or words.",
    ),
    (
        ("productivity",),
        "Design a hero image showing productivity dashboards and workflow automation tools. "
        "Include visual elements like task boards, analytics graphs, automation flows. "
        "Modern tech workspace setting. Purple and blue color scheme. No text.",
    ),
    (
        ("marketing",),
        "Create an image showing digital marketing tools and analytics dashboards. Include "
        "social media interfaces, email campaign builders, and analytics charts. Modern, "
        "professional design with purple/blue accents. No text.",
    ),
)
_DEFAULT_TEMPLATE = (
    'Professional hero image for article: "{title}". Show specific tools, interfaces, or '
    "visual representations related to the topic. Modern tech aesthetic with purple/blue "
    "gradient. Clean, detailed, relevant to the subject. No text."
)


def image_prompt_for(title: str) -> str:
    """Pick a generation prompt from keywords in the post title."""
    lowered = title.lower()
    for keywords, template in _TOPIC_TEMPLATES:
        if any(k in lowered for k in keywords):
            return template
    return _DEFAULT_TEMPLATE.format(title=title)


def find_placeholders(content: str) -> list[str]:
    return [m.group(0) for m in PLACEHOLDER.finditer(content)]


def splice_images(content: str, images: list[GeneratedImage]) -> str:
    """Put the first image at the first marker and delete every other marker."""
    if not images:
        return PLACEHOLDER.sub("", content)

    first = images[0]
    replaced = False

    def _replace(match: re.Match) -> str:
        nonlocal replaced
        if replaced:
            return ""
        replaced = True
        return f"![{first.description or 'Blog hero image'}]({first.url})"

    return PLACEHOLDER.sub(_replace, content)


class ImageGenerator:
    def __init__(self, client: httpx.AsyncClient, config: ImagesConfig, api_key: str):
        self.client = client
        self.config = config
        self.api_key = api_key

    async def generate(self, subjects: list[str]) -> list[GeneratedImage]:
        """Generate one image per subject concurrently; failed ones are dropped."""
        results = await asyncio.gather(
            *(self._generate_one(subject, index) for index, subject in enumerate(subjects))
        )
        return [image for image in results if image is not None]

    async def _generate_one(self, subject: str, index: int) -> GeneratedImage | None:
        try:
            url = await self._request(image_prompt_for(subject))
        except Exception as e:
            logger.warning(f"Image generation failed for image {index + 1}: {e}")
            return None

        return GeneratedImage(
            url=url,
            prompt=subject,
            description=f"Image {index + 1}: {subject}",
            placement="hero" if index == 0 else "content",
        )

    async def _request(self, prompt: str) -> str:
        response = await self.client.post(
            self.config.url,
            json={
                "model": self.config.model,
                "prompt": prompt,
                "size": self.config.size,
                "quality": self.config.quality,
                "n": 1,
            },
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        if not response.is_success:
            raise ProviderError.from_status(response.status_code, response.text)

        data = response.json().get("data") or []
        url = data[0].get("url") if data and isinstance(data[0], dict) else None
        if not url:
            raise ProviderError("Image provider response has no URL")
        return url


async def enrich_post(post: BlogPost, generator: ImageGenerator, max_images: int = 1) -> BlogPost:
    """Generate images for ``post`` and splice them into its content.

    Raises ProviderError when no image could be produced; markers are
    already removed and ``generated_images`` emptied by then.
    """
    placeholders = find_placeholders(post.content)
    logger.info(f"Found {len(placeholders)} image placeholder(s)")

    # The hero image is driven by the title, not by the placeholder text.
    images = await generator.generate([post.title][:max_images])

    post.generated_images = images
    post.content = splice_images(post.content, images)
    if not images:
        raise ProviderError("Image generation failed")
    return post
