import asyncio

import httpx
import pytest

from blog_engine.config import SupabaseConfig
from blog_engine.schemas import GeneratedImage
from blog_engine.storage import CACHE_SECONDS, ImageStorage, image_filename

SOURCE = "https://images.example.com/tmp/abc.png"
STORED_PREFIX = "https://project.supabase.co/storage/v1/object/public/blog-images/images/"


@pytest.fixture
def supabase(monkeypatch) -> SupabaseConfig:
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    return SupabaseConfig()


class FakeStorage:
    def __init__(self, download_status=200, upload_status=200):
        self.download_status = download_status
        self.upload_status = upload_status
        self.uploads: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "images.example.com":
            return httpx.Response(self.download_status, content=b"\x89PNG fake")
        self.uploads.append(request)
        return httpx.Response(self.upload_status, json={"Key": "ok"})


def store(config, backend, images, title="My Post: AI & You!"):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(backend.handler)) as client:
            return await ImageStorage(client, config).store_images(images, title)

    return asyncio.run(scenario())


def image(url=SOURCE):
    return GeneratedImage(url=url, prompt="p", description="Image 1: p")


def test_filename_is_slugged_and_unique():
    assert image_filename("My Post: AI & You!", 1, now_ms=42) == "my-post-ai-you-1-42.png"
    assert len(image_filename("x" * 200, 2, now_ms=1)) == len("x" * 50 + "-2-1.png")


def test_stored_image_gets_durable_url(supabase):
    backend = FakeStorage()
    (stored,) = store(supabase, backend, [image()])
    assert stored.url.startswith(STORED_PREFIX + "my-post-ai-you-1-")
    assert stored.original_url == SOURCE

    (upload,) = backend.uploads
    assert upload.url.path.startswith("/storage/v1/object/blog-images/images/my-post-ai-you-1-")
    assert upload.headers["Authorization"] == "Bearer service-key"
    assert upload.headers["apikey"] == "service-key"
    assert upload.headers["Content-Type"] == "image/png"
    assert upload.headers["cache-control"] == f"max-age={CACHE_SECONDS}"
    assert upload.headers["x-upsert"] == "true"
    assert upload.content == b"\x89PNG fake"


@pytest.mark.parametrize(
    "backend",
    [FakeStorage(download_status=404), FakeStorage(upload_status=500)],
)
def test_failed_rehost_keeps_original_url(supabase, backend):
    original = image()
    assert store(supabase, backend, [original]) == [original]


def test_malformed_source_url_keeps_original_url(supabase):
    backend = FakeStorage()
    original = image(url="https://exa mple.com/\x00hero.png")
    assert store(supabase, backend, [original], title="T") == [original]
    assert backend.uploads == []


def test_unconfigured_storage_keeps_original_url(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    backend = FakeStorage()
    original = image()
    assert store(SupabaseConfig(), backend, [original]) == [original]
    assert backend.uploads == []
