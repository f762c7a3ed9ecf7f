"""Rehost generated images in Supabase storage.

Provider image URLs expire after a few hours, so published posts need a
durable copy. Every failure returns ``None`` and the caller keeps the
temporary URL.
"""

from __future__ import annotations

import logging
import re
import time
from typing import TYPE_CHECKING

import httpx

from blog_engine.schemas import GeneratedImage

if TYPE_CHECKING:
    from blog_engine.config import SupabaseConfig

logger = logging.getLogger(__name__)

CACHE_SECONDS = 31536000  # one year


def image_filename(title: str, index: int, now_ms: int | None = None) -> str:
    """Slug the title into a unique, storage-safe PNG filename."""
    clean = re.sub(r"[^a-z0-9\s]", "", title.lower())
    clean = re.sub(r"\s+", "-", clean)[:50]
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{clean}-{index}-{now_ms}.png"


class ImageStorage:
    def __init__(self, client: httpx.AsyncClient, config: SupabaseConfig):
        self.client = client
        self.config = config

    def public_url(self, filename: str) -> str:
        return f"{self.config.url()}/storage/v1/object/public/{self.config.bucket}/images/{filename}"

    async def store_image(self, source_url: str, filename: str) -> str | None:
        """Download ``source_url`` and upload it under ``images/<filename>``."""
        base_url = self.config.url()
        service_key = self.config.service_key()
        if not base_url or not service_key:
            logger.error("Supabase storage is not configured; cannot rehost image")
            return None

        started = time.monotonic()
        try:
            download = await self.client.get(
                source_url, timeout=self.config.download_timeout_seconds
            )
            if not download.is_success:
                logger.error(f"Failed to download generated image: {download.status_code}")
                return None
            logger.info(f"Image downloaded in {int((time.monotonic() - started) * 1000)}ms")

            upload = await self.client.post(
                f"{base_url}/storage/v1/object/{self.config.bucket}/images/{filename}",
                content=download.content,
                headers={
                    "Authorization": f"Bearer {service_key}",
                    "apikey": service_key,
                    "Content-Type": "image/png",
                    "cache-control": f"max-age={CACHE_SECONDS}",
                    "x-upsert": "true",
                },
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Error storing generated image: {e}")
            return None

        if not upload.is_success:
            logger.error(f"Failed to upload image to storage: {upload.status_code} {upload.text}")
            return None

        url = self.public_url(filename)
        logger.info(
            f"Image stored in {int((time.monotonic() - started) * 1000)}ms: {url}"
        )
        return url

    async def store_images(
        self, images: list[GeneratedImage], title: str
    ) -> list[GeneratedImage]:
        stored: list[GeneratedImage] = []
        for index, image in enumerate(images, 1):
            filename = image_filename(title, index)
            durable_url = await self.store_image(image.url, filename)
            if durable_url:
                stored.append(
                    image.model_copy(update={"url": durable_url, "original_url": image.url})
                )
            else:
                logger.warning(f"Failed to store image {index}, keeping original URL")
                stored.append(image)
        return stored
