"""Shared fakes: an in-memory sink, SSE parsing, and a fake provider backend."""

from __future__ import annotations

import json

import httpx

from blog_engine.schemas import CurrentUser

ADMIN_EMAIL = "admin@example.com"
ADMIN = CurrentUser(id="user-1", email=ADMIN_EMAIL)
HERO_URL = "https://images.example.com/hero.png"

POST = {
    "title": "Time Management Tips for Remote Workers",
    "content": (
        "# Time Management Tips\n## Plan your day\nUse time blocks.[1]\n"
        "[IMAGE: A tidy home office desk]\n## Take breaks\nRest often.[2]\n\n\n\n"
        "[IMAGE: Coffee break]\n### Wrap up\nDone."
    ),
    "meta_description": "Practical time management tips for remote workers.",
    "category": "Productivity",
    "read_time": 9,
}


class ListSink:
    def __init__(self):
        self.data: list[bytes] = []
        self.close_count = 0

    def write(self, data: bytes) -> None:
        self.data.append(data)

    def close(self) -> None:
        self.close_count += 1

    @property
    def frames(self) -> list[dict]:
        return parse_frames(b"".join(self.data))


def parse_frames(raw: bytes | str) -> list[dict]:
    text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    assert text == "" or text.endswith("\n\n")
    return [
        json.loads(block[len("data: "):])
        for block in text.split("\n\n")
        if block.startswith("data: ")
    ]


def progress(frames: list[dict]) -> list[tuple[str, str]]:
    return [(f["step"], f["status"]) for f in frames if "step" in f]


def delta_event(content: str) -> str:
    return f"data: {json.dumps({'choices': [{'delta': {'content': content}}]})}\n\n"


def stream_body(text: str, piece: int = 40) -> bytes:
    events = [delta_event(text[i:i + piece]) for i in range(0, len(text), piece)]
    events.append("data: [DONE]\n\n")
    return "".join(events).encode("utf-8")


async def achunks(chunks):
    for chunk in chunks:
        yield chunk


class FakeBackend:
    """Answers completion, search and image calls the way the real APIs do."""

    def __init__(self, completion: str | None = None, image_status: int = 200, completion_status: int = 200):
        self.completion = json.dumps(POST) if completion is None else completion
        self.image_status = image_status
        self.completion_status = completion_status
        self.requests: list[httpx.Request] = []

    def bodies(self, suffix: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path.endswith(suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/chat/completions"):
            if self.completion_status != 200:
                return httpx.Response(self.completion_status, text="upstream exploded")
            body = json.loads(request.content)
            if body["stream"]:
                return httpx.Response(
                    200,
                    content=stream_body(self.completion),
                    headers={"Content-Type": "text/event-stream"},
                )
            return httpx.Response(200, json={"choices": [{"message": {"content": self.completion}}]})

        if path.endswith("/images/generations"):
            if self.image_status != 200:
                return httpx.Response(self.image_status, text="image backend down")
            return httpx.Response(200, json={"data": [{"url": HERO_URL}]})

        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeAuth:
    def __init__(self, user: CurrentUser | None):
        self.user = user
        self.calls = 0

    async def get_current_user(self, client, token):
        self.calls += 1
        return self.user
