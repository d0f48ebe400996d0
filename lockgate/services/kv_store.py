"""Fail-aware adapter over the shared Redis store.

Every operation returns either its value or an ``Unavailable`` marker; Redis
and network errors never escape this module. ``UNAVAILABLE`` means the store
could not be reached, ``REJECTED`` means it answered with a command error
(for example INCR on a non-numeric value). Callers decide what either means
for them (the lockout service fails open).

An adapter built without a URL is disabled: it never touches the network,
reads report "not present" and writes report success.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import TYPE_CHECKING, Final, TypeVar

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from lockgate.exceptions import StoreConnectError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from lockgate.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECONNECT_STEP_MS = 100
RECONNECT_MAX_DELAY_MS = 3000


class Unavailable(enum.Enum):
    """Marker returned by store operations when the store cannot be used."""

    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"

    def __repr__(self) -> str:
        return self.name


UNAVAILABLE: Final = Unavailable.UNAVAILABLE
REJECTED: Final = Unavailable.REJECTED


def reconnect_delay(attempt: int) -> float:
    """Backoff before the next connect: 100ms per attempt, capped at 3s."""
    return min(attempt * RECONNECT_STEP_MS, RECONNECT_MAX_DELAY_MS) / 1000


class KeyValueStore:
    """Process-wide Redis handle with lazy, lock-guarded connection setup."""

    def __init__(
        self,
        url: str | None,
        *,
        connect_timeout: float = 15.0,
        max_connect_attempts: int = 10,
        reconnect_cooldown: float = 30.0,
        client_factory: Callable[[], Redis] | None = None,
    ) -> None:
        self._url = url.strip() if url and url.strip() else None
        self._connect_timeout = connect_timeout
        self._max_connect_attempts = max_connect_attempts
        self._reconnect_cooldown = reconnect_cooldown
        self._client_factory = client_factory or self._default_client
        self._client: Redis | None = None
        self._connect_lock = asyncio.Lock()
        self._gave_up_at: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> KeyValueStore:
        return cls(
            settings.redis_url,
            connect_timeout=settings.redis_connect_timeout_seconds,
            max_connect_attempts=settings.redis_max_connect_attempts,
            reconnect_cooldown=settings.redis_reconnect_cooldown_seconds,
        )

    @property
    def enabled(self) -> bool:
        return self._url is not None

    def _default_client(self) -> Redis:
        if self._url is None:
            raise StoreConnectError("Redis URL is not configured")
        return Redis.from_url(
            self._url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self._connect_timeout,
            socket_timeout=self._connect_timeout,
        )

    async def _get_client(self, max_attempts: int | None = None) -> Redis:
        client = self._client
        if client is not None:
            return client
        async with self._connect_lock:
            # Another caller may have connected while we waited.
            if self._client is not None:
                return self._client
            if (
                self._gave_up_at is not None
                and time.monotonic() - self._gave_up_at < self._reconnect_cooldown
            ):
                raise StoreConnectError("Redis unreachable, reconnect is cooling down")
            self._client = await self._connect(max_attempts or self._max_connect_attempts)
            self._gave_up_at = None
            return self._client

    async def _connect(self, max_attempts: int) -> Redis:
        last_error: BaseException | None = None
        for attempt in range(1, max_attempts + 1):
            client: Redis | None = None
            try:
                client = self._client_factory()
                await client.ping()
            except (RedisError, OSError, ValueError) as exc:
                last_error = exc
                if client is not None:
                    await self._close_client(client)
                if attempt == max_attempts:
                    break
                delay = reconnect_delay(attempt)
                logger.warning(
                    "Redis connect attempt %d/%d failed: %s; retrying in %.1fs",
                    attempt,
                    max_attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
            else:
                logger.info("Redis connection established")
                return client

        self._gave_up_at = time.monotonic()
        logger.error(
            "Giving up on Redis after %d connect attempts: %s",
            max_attempts,
            last_error,
        )
        msg = f"Could not connect to Redis after {max_attempts} attempts"
        raise StoreConnectError(msg) from last_error

    async def _close_client(self, client: Redis) -> None:
        try:
            await client.aclose()
        except (RedisError, OSError) as exc:
            logger.debug("Error while closing Redis client: %s", exc)

    async def _drop_client(self, client: Redis | None) -> None:
        """Forget a broken connection so the next operation reconnects."""
        if client is None or self._client is not client:
            return
        self._client = None
        await self._close_client(client)

    async def _run(
        self,
        operation: str,
        call: Callable[[Redis], Awaitable[T]],
        *,
        max_connect_attempts: int | None = None,
    ) -> T | Unavailable:
        client: Redis | None = None
        try:
            client = await self._get_client(max_connect_attempts)
            return await call(client)
        except StoreConnectError as exc:
            logger.warning("Redis %s skipped: %s", operation, exc)
            return UNAVAILABLE
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            logger.warning("Redis %s failed, dropping connection: %s", operation, exc)
            await self._drop_client(client)
            return UNAVAILABLE
        except RedisError as exc:
            logger.warning("Redis %s rejected: %s", operation, exc)
            return REJECTED

    async def get(self, key: str) -> str | None | Unavailable:
        if not self.enabled:
            return None

        async def call(client: Redis) -> str | None:
            return await client.get(key)

        return await self._run("GET", call)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> bool | Unavailable:
        if not self.enabled:
            return True

        async def call(client: Redis) -> bool:
            return bool(await client.set(key, value, ex=ttl_seconds))

        return await self._run("SET", call)

    async def increment(self, key: str) -> int | Unavailable:
        if not self.enabled:
            return 0

        async def call(client: Redis) -> int:
            return int(await client.incr(key))

        return await self._run("INCR", call)

    async def expire(self, key: str, ttl_seconds: int) -> bool | Unavailable:
        if not self.enabled:
            return True

        async def call(client: Redis) -> bool:
            return bool(await client.expire(key, ttl_seconds))

        return await self._run("EXPIRE", call)

    async def delete(self, key: str) -> int | Unavailable:
        if not self.enabled:
            return 0

        async def call(client: Redis) -> int:
            return int(await client.delete(key))

        return await self._run("DEL", call)

    async def healthy(self) -> bool:
        """Return True if the store answers PING. A disabled store is never healthy.

        A probe makes at most one connect attempt and does not wait for a
        connect that is already in progress.
        """
        if not self.enabled:
            return False
        if self._client is None and self._connect_lock.locked():
            return False

        async def call(client: Redis) -> bool:
            return bool(await client.ping())

        result = await self._run("PING", call, max_connect_attempts=1)
        return result is True

    async def close(self) -> None:
        async with self._connect_lock:
            client = self._client
            self._client = None
        if client is not None:
            await self._close_client(client)
            logger.info("Redis connection closed")
