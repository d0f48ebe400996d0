"""Property-based tests for escalation and fingerprinting."""

from __future__ import annotations

import asyncio

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from lockgate.services.fingerprint_service import RequestAttributes, derive_fingerprint
from lockgate.services.kv_store import KeyValueStore
from lockgate.services.lockout_service import LockoutPolicy, LockoutService, block_duration_for
from tests.conftest import FakeClock, FakeRedis

PROPERTY_SETTINGS = settings(
    max_examples=120,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_DURATIONS = st.lists(st.integers(min_value=1, max_value=10**6), min_size=1, max_size=8)
_TEXT = st.text(max_size=40)


@PROPERTY_SETTINGS
@given(block_count=st.integers(min_value=0, max_value=10**4), durations=_DURATIONS)
def test_block_duration_never_out_of_bounds(block_count: int, durations: list[int]) -> None:
    duration = block_duration_for(block_count, durations)
    assert duration == durations[min(block_count, len(durations) - 1)]


@PROPERTY_SETTINGS
@given(ip=_TEXT, user_agent=_TEXT, language=_TEXT, encoding=_TEXT, hint=_TEXT)
def test_fingerprint_is_deterministic(
    ip: str, user_agent: str, language: str, encoding: str, hint: str
) -> None:
    attrs = RequestAttributes(ip, user_agent, language, encoding, hint)
    again = RequestAttributes(ip, user_agent, language, encoding, hint)
    first = derive_fingerprint(attrs, "salt")
    assert first == derive_fingerprint(again, "salt")
    assert len(first) == 64


def _run_failures(max_attempts: int, blocks: int) -> list[int]:
    clock = FakeClock()
    fake = FakeRedis(clock)
    store = KeyValueStore("redis://fake", client_factory=lambda: fake)
    service = LockoutService(store, LockoutPolicy(max_attempts=max_attempts), clock=clock)

    async def scenario() -> list[int]:
        durations: list[int] = []
        for _ in range(blocks):
            for attempt in range(1, max_attempts + 1):
                result = await service.record_failure("login", "fp")
                assert result.blocked is (attempt == max_attempts)
            assert result.block_duration_seconds is not None
            durations.append(result.block_duration_seconds)
            clock.advance(result.block_duration_seconds)
            assert not (await service.check_blocked("login", "fp")).blocked
        return durations

    return asyncio.run(scenario())


@PROPERTY_SETTINGS
@given(
    max_attempts=st.integers(min_value=1, max_value=8),
    blocks=st.integers(min_value=1, max_value=7),
)
def test_nth_failure_blocks_and_escalates(max_attempts: int, blocks: int) -> None:
    durations = _run_failures(max_attempts, blocks)
    table = LockoutPolicy().block_durations
    assert durations == [table[min(k, len(table) - 1)] for k in range(blocks)]
