"""Pytest fixtures and config."""

import pytest


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Avoid picking up real provider credentials or overrides in tests."""
    for name in (
        "OPENAI_API_KEY",
        "OPENAI_BASE_URL",
        "PROVIDER_MODEL",
        "LOG_LEVEL",
        "STREAM_DEBOUNCE_MS",
        "CHATSTREAM_ENV_PREFIX",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
