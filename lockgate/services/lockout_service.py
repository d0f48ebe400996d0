"""Progressive lockout state machine backed by the shared key-value store.

Per (endpoint, fingerprint) pair a client is either Clear (nothing stored),
Accumulating (an attempts counter below the threshold) or Blocked (an active
block marker whose unblock time is in the future). Each time the attempts
counter reaches the threshold the client is blocked for a duration picked
from the escalation table by its lifetime block count, which survives
successful logins until its own retention TTL runs out.

All state lives in the store. There is no in-process locking: concurrent
failures rely on INCR being atomic, and a race can at worst let one extra
attempt through before the block lands.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from lockgate.services.fingerprint_service import fingerprint_prefix
from lockgate.services.kv_store import REJECTED, Unavailable

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from lockgate.config import Settings
    from lockgate.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_DURATIONS: tuple[int, ...] = (60, 300, 900, 3600, 86400)


def _utc_timestamp() -> float:
    return datetime.now(UTC).timestamp()


def block_duration_for(block_count: int, durations: Sequence[int]) -> int:
    """Pick the block duration for a client blocked ``block_count`` times before."""
    index = min(max(block_count, 0), len(durations) - 1)
    return durations[index]


def _parse_int(raw: str | None) -> int | None:
    """Parse a stored counter; malformed values count as absent."""
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class LockoutPolicy:
    """Thresholds and retention windows shared by every protected endpoint."""

    max_attempts: int = 5
    block_durations: tuple[int, ...] = DEFAULT_BLOCK_DURATIONS
    attempts_ttl_seconds: int = 3600
    block_count_ttl_seconds: int = 86400 * 7
    namespace: str = "ratelimit"

    @classmethod
    def from_settings(cls, settings: Settings) -> LockoutPolicy:
        return cls(
            max_attempts=settings.rate_limit_max_attempts,
            block_durations=tuple(settings.rate_limit_block_durations),
            attempts_ttl_seconds=settings.rate_limit_attempts_ttl_seconds,
            block_count_ttl_seconds=settings.rate_limit_block_count_ttl_seconds,
            namespace=settings.rate_limit_namespace,
        )


@dataclass(frozen=True)
class LockoutKeys:
    attempts: str
    blocks: str
    blocked: str


@dataclass(frozen=True)
class BlockStatus:
    blocked: bool
    remaining_seconds: int | None = None


@dataclass(frozen=True)
class FailureResult:
    blocked: bool
    attempts: int
    block_duration_seconds: int | None = None


@dataclass(frozen=True)
class LockoutStats:
    """Internal view of a client's state. Never expose this to clients."""

    attempts: int
    block_count: int
    blocked_until: datetime | None = None


class LockoutService:
    """Track failures and blocks per (endpoint, fingerprint) pair."""

    def __init__(
        self,
        store: KeyValueStore,
        policy: LockoutPolicy | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        self._policy = policy or LockoutPolicy()
        self._clock = clock or _utc_timestamp

    @property
    def enabled(self) -> bool:
        return self._store.enabled

    @property
    def policy(self) -> LockoutPolicy:
        return self._policy

    def keys(self, endpoint: str, fingerprint: str) -> LockoutKeys:
        base = f"{self._policy.namespace}:{endpoint}:{fingerprint}"
        return LockoutKeys(
            attempts=f"{base}:attempts",
            blocks=f"{base}:blocks",
            blocked=f"{base}:blocked",
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def check_blocked(self, endpoint: str, fingerprint: str) -> BlockStatus:
        """Report whether the client is blocked and for how many more seconds."""
        keys = self.keys(endpoint, fingerprint)
        raw = await self._store.get(keys.blocked)
        if isinstance(raw, Unavailable):
            logger.warning("Block lookup failed for %s, allowing request", endpoint)
            return BlockStatus(blocked=False)

        unblock_ms = _parse_int(raw)
        if unblock_ms is None:
            return BlockStatus(blocked=False)

        now_ms = self._now_ms()
        if now_ms >= unblock_ms:
            # The store's TTL should have removed this already.
            await self._store.delete(keys.blocked)
            return BlockStatus(blocked=False)

        return BlockStatus(blocked=True, remaining_seconds=math.ceil((unblock_ms - now_ms) / 1000))

    async def record_failure(self, endpoint: str, fingerprint: str) -> FailureResult:
        """Count a failed attempt and block the client once the threshold is reached."""
        policy = self._policy
        keys = self.keys(endpoint, fingerprint)

        attempts = await self._store.increment(keys.attempts)
        if attempts is REJECTED:
            # Non-numeric counter: start over as if it were absent.
            logger.warning("Resetting malformed attempt counter on %s", endpoint)
            attempts = 1
            reset = await self._store.set_with_ttl(
                keys.attempts, str(attempts), policy.attempts_ttl_seconds
            )
            if isinstance(reset, Unavailable):
                logger.warning("Could not record failed attempt for %s", endpoint)
                return FailureResult(blocked=False, attempts=0)
        elif isinstance(attempts, Unavailable):
            logger.warning("Could not record failed attempt for %s", endpoint)
            return FailureResult(blocked=False, attempts=0)
        else:
            await self._store.expire(keys.attempts, policy.attempts_ttl_seconds)

        if attempts < policy.max_attempts:
            return FailureResult(blocked=False, attempts=attempts)

        raw_count = await self._store.get(keys.blocks)
        block_count = 0 if isinstance(raw_count, Unavailable) else (_parse_int(raw_count) or 0)
        duration = block_duration_for(block_count, policy.block_durations)
        unblock_ms = self._now_ms() + duration * 1000

        created = await self._store.set_with_ttl(keys.blocked, str(unblock_ms), duration)
        if isinstance(created, Unavailable):
            # Attempts are kept so the next failure retries the block.
            logger.warning("Could not create block for %s, allowing request", endpoint)
            return FailureResult(blocked=False, attempts=0)

        if await self._store.increment(keys.blocks) is REJECTED:
            await self._store.set_with_ttl(
                keys.blocks, str(block_count + 1), policy.block_count_ttl_seconds
            )
        else:
            await self._store.expire(keys.blocks, policy.block_count_ttl_seconds)
        await self._store.delete(keys.attempts)

        logger.info(
            "Blocked client %s on %s for %ds (block #%d)",
            fingerprint_prefix(fingerprint),
            endpoint,
            duration,
            block_count + 1,
        )
        return FailureResult(blocked=True, attempts=attempts, block_duration_seconds=duration)

    async def record_success(self, endpoint: str, fingerprint: str) -> None:
        """Reset the attempts counter. Active blocks and block history are kept."""
        keys = self.keys(endpoint, fingerprint)
        if isinstance(await self._store.delete(keys.attempts), Unavailable):
            logger.warning("Could not reset attempts for %s", endpoint)

    async def get_stats(self, endpoint: str, fingerprint: str) -> LockoutStats | None:
        """Return the stored state for diagnostics, or None if the store can't be read."""
        if not self._store.enabled:
            return None
        keys = self.keys(endpoint, fingerprint)
        values: list[str | None] = []
        for key in (keys.attempts, keys.blocks, keys.blocked):
            value = await self._store.get(key)
            if isinstance(value, Unavailable):
                return None
            values.append(value)

        attempts, block_count, unblock_ms = (_parse_int(value) for value in values)
        return LockoutStats(
            attempts=attempts or 0,
            block_count=block_count or 0,
            blocked_until=(
                datetime.fromtimestamp(unblock_ms / 1000, UTC) if unblock_ms is not None else None
            ),
        )
