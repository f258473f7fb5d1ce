"""Pytest fixtures and shared test configuration.

Provides reusable fixtures for unit and integration tests.

Fixtures:
    - relay_config: Fully configured RelayConfig with a short timeout
    - fake_client: Scriptable in-memory upstream client
    - app: FastAPI app wired to the fake client and config
    - async_client: HTTPX client for API testing

The real routes run in every integration test; only the upstream
Assistants API is replaced.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.api.app import create_app
from src.assistant.client import get_assistant_client
from src.assistant.config import RelayConfig, get_relay_config
from tests.fakes import FakeAssistantClient


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    """Return directory used for temporary attachment copies."""
    return tmp_path / "uploads"


@pytest.fixture
def relay_config(upload_dir: Path) -> RelayConfig:
    """Create a configured relay with a short stream timeout.

    Returns:
        RelayConfig with test credentials.
    """
    return RelayConfig(
        openai_api_key="sk-test-key",
        assistant_id="asst_test123",
        stream_timeout_ms=2000,
        debug_sse=False,
        upload_dir=str(upload_dir),
    )


@pytest.fixture
def fake_client() -> FakeAssistantClient:
    """Return a fresh fake upstream client."""
    return FakeAssistantClient()


@pytest.fixture
def app(fake_client: FakeAssistantClient, relay_config: RelayConfig) -> FastAPI:
    """Create the application with upstream dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_relay_config] = lambda: relay_config
    application.dependency_overrides[get_assistant_client] = lambda: fake_client
    return application


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create async HTTP client for API testing.

    Yields:
        Configured AsyncClient for making test requests.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
