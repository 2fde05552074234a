from __future__ import annotations

import asyncio
from typing import Any

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from request_limiter.app import create_app
from request_limiter.errors import BackendError
from request_limiter.store.base import HitHistory


class FakeClock:
    """Settable millisecond clock."""

    def __init__(self, now: int = 1_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class DictStore:
    """Plain get/set store without the atomic primitives.

    Each call yields to the event loop so concurrent checks can interleave.
    """

    def __init__(self) -> None:
        self.data: dict[str, HitHistory] = {}
        self.closed = False

    async def get(self, key: str) -> HitHistory | None:
        await asyncio.sleep(0)
        history = self.data.get(key)
        return list(history) if history is not None else None

    async def set(self, key: str, history: HitHistory) -> None:
        await asyncio.sleep(0)
        self.data[key] = list(history)

    async def close(self) -> None:
        self.closed = True


class ReadOnlyAfterStore(DictStore):
    """DictStore whose writes raise RuntimeError once `writes_left` runs out."""

    def __init__(self, writes_left: int = 1) -> None:
        super().__init__()
        self.writes_left = writes_left

    async def set(self, key: str, history: HitHistory) -> None:
        if self.writes_left <= 0:
            raise RuntimeError("store is read-only")
        self.writes_left -= 1
        await super().set(key, history)


class FailingStore:
    """Store whose calls raise until `failures` runs out."""

    def __init__(self, failures: int = 10**6, exc: Exception | None = None) -> None:
        self.failures = failures
        self.exc = exc or BackendError("store unavailable", operation="get")
        self.calls = 0
        self.data: dict[str, HitHistory] = {}

    async def get(self, key: str) -> HitHistory | None:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise self.exc
        return self.data.get(key)

    async def set(self, key: str, history: HitHistory) -> None:
        self.data[key] = list(history)

    async def close(self) -> None:
        pass


class FakeRedis:
    """Records GET/SETEX calls against a dict."""

    def __init__(self) -> None:
        self.values: dict[str, Any] = {}
        self.ttls: dict[str, int] = {}
        self.closed = False

    async def get(self, name: str) -> Any:
        return self.values.get(name)

    async def setex(self, name: str, time: int, value: Any) -> bool:
        self.values[name] = value
        self.ttls[name] = time
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set environment variables for testing."""
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("STORAGE_TYPE", "memory")
    monkeypatch.setenv("RATE_LIMIT_MAX", "3")
    monkeypatch.setenv("RATE_LIMIT_WINDOW_MS", "60000")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def app():
    """Create the service app from environment settings."""
    test_app = create_app()
    yield test_app


@pytest.fixture
async def client(app) -> AsyncClient:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with LifespanManager(app):
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
