from __future__ import annotations

import os

import pytest

os.environ.setdefault("CHAT_PROVIDER", "openai")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from backend.main import app, get_completion_service  # noqa: E402


@pytest.fixture(autouse=True)
def reset_dependency_overrides():
    yield
    app.dependency_overrides.clear()
    get_completion_service.cache_clear()
