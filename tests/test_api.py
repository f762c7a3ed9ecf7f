import httpx
import pytest
from fastapi.testclient import TestClient

from blog_engine import config as config_module
from blog_engine.main import create_app, get_auth_provider, get_http_client
from blog_engine.schemas import CurrentUser
from helpers import ADMIN, FakeAuth, FakeBackend, parse_frames, progress

GENERATE = "/api/ai/generate-blog-stream"
BODY = {
    "prompt": "Write about time management tips for remote workers",
    "includeWebSearch": False,
    "includeImages": False,
}


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def auth() -> FakeAuth:
    return FakeAuth(ADMIN)


@pytest.fixture
def client(config, backend, auth):
    app = create_app(config)
    http_client = httpx.AsyncClient(transport=backend.transport())
    app.dependency_overrides[get_http_client] = lambda: http_client
    app.dependency_overrides[get_auth_provider] = lambda: auth
    with TestClient(app) as test_client:
        yield test_client


def test_generate_streams_progress_and_result(client, backend):
    resp = client.post(GENERATE, json=BODY, headers={"Authorization": "Bearer token"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"
    assert resp.headers["x-accel-buffering"] == "no"
    assert resp.headers["x-content-type-options"] == "nosniff"

    frames = parse_frames(resp.text)
    assert progress(frames)[0] == ("setup", "starting")
    assert frames[-1]["type"] == "final_result"
    assert frames[-1]["data"]["title"] == "Time Management Tips for Remote Workers"
    assert len(backend.bodies("/chat/completions")) == 1


@pytest.mark.parametrize(
    "body",
    [
        {"prompt": "too short"},
        {"knowledgeBase": "no prompt at all"},
        {"prompt": "Write about remote work", "includeWebSearch": "maybe"},
        ["not", "an", "object"],
    ],
)
def test_invalid_body_is_rejected_before_any_external_call(client, backend, auth, body):
    resp = client.post(GENERATE, json=body)
    assert resp.status_code == 400
    assert resp.json()["error"]
    assert auth.calls == 0
    assert backend.requests == []


def test_malformed_json_is_rejected(client, auth):
    resp = client.post(GENERATE, content=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Request body must be valid JSON"}
    assert auth.calls == 0


def test_non_admin_gets_single_error_frame(client, backend, auth):
    auth.user = CurrentUser(id="user-2", email="someone@example.com")
    resp = client.post(GENERATE, json=BODY)
    assert resp.status_code == 200
    assert parse_frames(resp.text) == [
        {"step": "setup", "status": "error", "message": "Admin access required for blog generation."}
    ]
    assert backend.requests == []


def test_anonymous_gets_single_error_frame(client, auth):
    auth.user = None
    frames = parse_frames(client.post(GENERATE, json=BODY).text)
    assert frames == [
        {"step": "setup", "status": "error", "message": "Authentication required. Please sign in again."}
    ]


def test_fourth_request_in_window_is_rate_limited(client):
    for _ in range(3):
        assert parse_frames(client.post(GENERATE, json=BODY).text)[-1]["type"] == "final_result"
    frames = parse_frames(client.post(GENERATE, json=BODY).text)
    assert len(frames) == 1
    assert frames[0]["message"].startswith("Rate limit exceeded")


def test_rehost_requires_admin(client, auth):
    payload = {"title": "T", "images": []}
    auth.user = None
    assert client.post("/api/blog/images/rehost", json=payload).status_code == 401
    auth.user = CurrentUser(id="user-2", email="someone@example.com")
    assert client.post("/api/blog/images/rehost", json=payload).status_code == 403
    auth.user = ADMIN
    resp = client.post("/api/blog/images/rehost", json=payload)
    assert resp.status_code == 200
    assert resp.json() == {"images": []}


def test_health(client):
    client.post(GENERATE, json=BODY)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {
        "status": "healthy",
        "admin_configured": True,
        "rate_limited_identities": 1,
    }


def test_config_endpoint_hides_api_key(config, backend, auth):
    app = create_app(config.model_copy(update={"api_key": "secret"}))
    with TestClient(app) as test_client:
        resp = test_client.get("/config")
    assert resp.status_code == 200
    assert "api_key" not in resp.json()
    assert resp.json()["rate_limit"]["max_requests"] == 3


def test_reload_requires_key_and_retunes_limiter(config, tmp_path, monkeypatch):
    monkeypatch.delenv("ADMIN_EMAIL", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("api_key: secret\nadmin_email: admin@example.com\nrate_limit:\n  max_requests: 5\n")
    config_module.load_config(str(path))

    app = create_app(config.model_copy(update={"api_key": "secret"}))
    with TestClient(app) as test_client:
        assert test_client.post("/reload").status_code == 401

        resp = test_client.post("/reload", headers={"X-API-Key": "secret"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "reloaded"
        assert resp.json()["rate_limit"]["max_requests"] == 5
        assert app.state.rate_limiter.max_requests == 5
        assert app.state.scheduler.running
