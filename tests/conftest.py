"""Shared test fixtures for LockGate."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from lockgate.config import Settings
from lockgate.main import create_app
from lockgate.services.kv_store import KeyValueStore
from lockgate.services.lockout_service import LockoutPolicy, LockoutService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

TEST_SALT = "test-rate-limit-salt-with-at-least-32-characters"
START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced wall clock, in seconds."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for the subset of ``redis.asyncio.Redis`` the store uses.

    TTLs are evaluated against the shared ``FakeClock``. Setting ``down`` makes
    every command raise a connection error, like a dead server.
    """

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self.data: dict[str, str] = {}
        self.expires_at: dict[str, float] = {}
        self.calls: list[str] = []
        self.down = False
        self.closed = False

    def _command(self, name: str) -> None:
        self.calls.append(name)
        if self.down:
            raise RedisConnectionError("Connection refused")

    def _purge(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and self._clock() >= deadline:
            self.data.pop(key, None)
            self.expires_at.pop(key, None)

    def ttl(self, key: str) -> float | None:
        self._purge(key)
        deadline = self.expires_at.get(key)
        return None if deadline is None else deadline - self._clock()

    async def ping(self) -> bool:
        self._command("PING")
        return True

    async def get(self, key: str) -> str | None:
        self._command("GET")
        self._purge(key)
        return self.data.get(key)

    async def set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self._command("SET")
        self.data[key] = str(value)
        self.expires_at.pop(key, None)
        if ex is not None:
            self.expires_at[key] = self._clock() + ex
        return True

    async def incr(self, key: str) -> int:
        self._command("INCR")
        self._purge(key)
        try:
            value = int(self.data.get(key, "0")) + 1
        except ValueError as exc:
            raise ResponseError("value is not an integer or out of range") from exc
        self.data[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self._command("EXPIRE")
        self._purge(key)
        if key not in self.data:
            return False
        self.expires_at[key] = self._clock() + seconds
        return True

    async def delete(self, *keys: str) -> int:
        self._command("DEL")
        removed = 0
        for key in keys:
            self._purge(key)
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expires_at.pop(key, None)
        return removed

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def kv_store(fake_redis: FakeRedis) -> KeyValueStore:
    """An enabled store wired to the in-memory fake."""
    return KeyValueStore(
        "redis://fake:6379/0",
        max_connect_attempts=2,
        reconnect_cooldown=0,
        client_factory=lambda: fake_redis,
    )


@pytest.fixture
def lockout(kv_store: KeyValueStore, clock: FakeClock) -> LockoutService:
    return LockoutService(kv_store, LockoutPolicy(), clock=clock)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with rate limiting enabled and no timing delay."""
    return Settings(
        _env_file=None,
        debug=True,
        redis_url="redis://fake:6379/0",
        rate_limit_salt=TEST_SALT,
        rate_limit_delay_min_ms=0,
        rate_limit_delay_max_ms=0,
        admin_username="admin",
        admin_password="admin123",
    )


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    fake_redis: FakeRedis | None = None,
    clock: FakeClock | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client whose store talks to ``fake_redis``.

    ASGITransport does not run the lifespan, so state built by ``create_app``
    is replaced here where the test needs the fake backend.
    """
    app = create_app(settings)
    settings.validate_runtime_security()

    if fake_redis is not None:
        store = KeyValueStore(
            settings.redis_url,
            max_connect_attempts=1,
            reconnect_cooldown=0,
            client_factory=lambda: fake_redis,
        )
        app.state.kv_store = store
        app.state.lockout_service = LockoutService(
            store, LockoutPolicy.from_settings(settings), clock=clock
        )

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await app.state.kv_store.close()
