import os
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
os.environ.setdefault("BLOG_ENGINE_CONFIG", str(ROOT / "config.yaml"))

from blog_engine.config import EngineConfig  # noqa: E402
from helpers import ADMIN_EMAIL, ListSink  # noqa: E402


@pytest.fixture
def config(monkeypatch) -> EngineConfig:
    monkeypatch.delenv("ADMIN_EMAIL", raising=False)
    monkeypatch.delenv("PERPLEXITY_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    return EngineConfig(admin_email=ADMIN_EMAIL)


@pytest.fixture
def sink() -> ListSink:
    return ListSink()
