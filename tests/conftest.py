"""Shared fixtures for all tests."""

import asyncio

import httpx
import pytest

from webhook_bridge.core.config import Config
from webhook_bridge.core.webhook_client import WebhookClient

WEBHOOK_URL = "https://n8n.example.com/webhook/test"

_CONFIG_ENV = (
    "PORT", "BEARER_TOKEN", "N8N_WEBHOOK_BEARER_TOKEN", "N8N_BEARER_TOKEN", "LOG_REQUESTS",
    "N8N_TIMEOUT", "FILE_UPLOAD_MODE", "ENABLE_TASK_DETECTION", "AGENT_TURN_SEPARATOR",
    "MAX_BUFFER_SIZE", "STREAM_QUEUE_SIZE", "MODELS_CONFIG", "SESSION_ID_HEADERS",
    "USER_ID_HEADERS", "USER_EMAIL_HEADERS", "USER_NAME_HEADERS", "USER_ROLE_HEADERS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test from the default configuration."""
    for name in _CONFIG_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def user_messages() -> list[dict]:
    return [{"role": "user", "content": "Hello"}]


def chunked_response(*chunks: bytes, status_code: int = 200) -> httpx.Response:
    """Response whose body arrives as exactly these network chunks."""

    async def body():
        for chunk in chunks:
            yield chunk

    return httpx.Response(status_code, content=body())


def make_client(config: Config, handler, task_detector=None) -> WebhookClient:
    """WebhookClient whose transport is served by handler(request) -> httpx.Response."""
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookClient(config, task_detector=task_detector, http_client=http)


def run(coro):
    return asyncio.run(coro)


async def collect(stream) -> list[str]:
    return [item async for item in stream]
