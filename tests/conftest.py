from __future__ import annotations

import socket
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any, Callable

import pytest
from httpx import ASGITransport, AsyncClient

from httpbase.config import get_settings
from httpbase.main import load_openapi_document, route
from httpbase.models.schemas import HealthInfo
from httpbase.observability.metrics import reset_metrics


_ENV_VARS = (
    "HOST",
    "PORT",
    "SHUTDOWN_GRACE_SECONDS",
    "LOG_LEVEL",
    "APP_VERSION",
    "VCS_REVISION",
    "VCS_TIME",
    "VCS_MODIFIED",
)


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's .env out of the settings under test.
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    reset_metrics()

    yield

    get_settings.cache_clear()
    reset_metrics()


@pytest.fixture
def health_info() -> HealthInfo:
    return HealthInfo(
        version="v1.2.3",
        revision="3f2a9c1",
        time=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        modified=True,
    )


@pytest.fixture
def openapi_document() -> bytes:
    return load_openapi_document()


@pytest.fixture
def app(health_info: HealthInfo, openapi_document: bytes) -> Callable[..., Any]:
    return route(health_info, openapi_document)


@pytest.fixture
async def api_client(app: Callable[..., Any]) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app, client=("127.0.0.1", 54321))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
