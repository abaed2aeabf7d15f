"""Shared fixtures for the agent server tests."""

from __future__ import annotations

import pytest

from agent_server import config as config_module
from agent_server.agents import cache
from agent_server.config import ServerConfig

AUTH_VARS = (
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_MODEL",
    "GOOGLE_AI_KEY",
    "GOOGLE_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_MODEL",
    "GEMINI_MODEL",
    "AGENT_SERVER_SECRET",
    "AGENT_SERVER_CONFIG",
    "AGENT_ENGINE",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """No real credentials or subscription session leak into a test."""
    for name in AUTH_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CLAUDE_CONFIG_DIR", str(tmp_path / "claude-profile"))
    monkeypatch.setattr(config_module, "_config", None)
    cache.invalidate()
    yield
    cache.invalidate()


@pytest.fixture
def server_config(monkeypatch, tmp_path):
    """A cached ServerConfig with test-friendly defaults."""
    config = ServerConfig(workdir=str(tmp_path), storage_url="https://storage.test")
    monkeypatch.setattr(config_module, "_config", config)
    return config


class FakeStorage:
    """In-memory stand-in for StorageClient, recording every call."""

    def __init__(self, user_id: str = "user-1", tokens: dict | None = None, results: dict | None = None):
        self.user_id = user_id
        self.tokens = tokens or {}
        self.results = results or {}
        self.calls: list[tuple[str, str, dict]] = []

    async def query(self, path: str, args: dict | None = None):
        self.calls.append(("query", path, args or {}))
        return self.results.get(path)

    async def mutation(self, path: str, args: dict | None = None):
        self.calls.append(("mutation", path, args or {}))
        return self.results.get(path, "id-1")

    async def get_connector_token(self, provider: str):
        return self.tokens.get(provider)


@pytest.fixture
def fake_storage():
    return FakeStorage()
