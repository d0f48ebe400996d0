"""Rate-limit guard for protected endpoints and the outcome reporter.

Usage in a route::

    @router.post("/login")
    async def login(
        guard: Annotated[GuardContext | None, Depends(RateLimitGuard("login"))],
        lockout: Annotated[LockoutService, Depends(get_lockout_service)],
    ):
        if not credentials_ok:
            await report_failure(lockout, guard)
            ...
        await report_success(lockout, guard)

The guard raises ``RateLimitedError`` for blocked clients; the application
handler renders it as the generic 429 response.
"""

import asyncio
import logging
import math
import random
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from lockgate.api.deps import get_lockout_service, get_settings
from lockgate.config import Settings
from lockgate.exceptions import RateLimitedError
from lockgate.services.fingerprint_service import (
    RequestAttributes,
    derive_fingerprint,
    fingerprint_prefix,
)
from lockgate.services.lockout_service import FailureResult, LockoutService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardContext:
    """What the guard learned about an admitted request, for outcome reporting."""

    endpoint: str
    fingerprint: str


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count != 1 else ''}"


def format_retry_estimate(remaining_seconds: int) -> str:
    """Describe the remaining block time in the coarsest sensible unit."""
    if remaining_seconds >= 3600:
        wait = _plural(math.ceil(remaining_seconds / 3600), "hour")
    elif remaining_seconds >= 60:
        wait = _plural(math.ceil(remaining_seconds / 60), "minute")
    else:
        wait = _plural(remaining_seconds, "second")
    return f"Too many attempts. Try again in {wait}."


async def _blur_timing(settings: Settings) -> None:
    low = settings.rate_limit_delay_min_ms
    high = settings.rate_limit_delay_max_ms
    await asyncio.sleep(random.uniform(low, high) / 1000)


class RateLimitGuard:
    """FastAPI dependency that rejects clients blocked on ``endpoint``.

    Returns a ``GuardContext`` for admitted requests, or ``None`` when rate
    limiting is disabled. Internal failures admit the request.
    """

    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint

    async def __call__(
        self,
        request: Request,
        lockout: Annotated[LockoutService, Depends(get_lockout_service)],
        settings: Annotated[Settings, Depends(get_settings)],
    ) -> GuardContext | None:
        if not lockout.enabled:
            return None

        fingerprint: str | None = None
        try:
            fingerprint = derive_fingerprint(
                RequestAttributes.from_request(request), settings.rate_limit_salt
            )
            status = await lockout.check_blocked(self.endpoint, fingerprint)
        except Exception:
            logger.exception("Rate limit check failed on %s, allowing request", self.endpoint)
            if fingerprint is None:
                return None
            return GuardContext(endpoint=self.endpoint, fingerprint=fingerprint)

        if status.blocked:
            await _blur_timing(settings)
            retry_after = max(status.remaining_seconds or 1, 1)
            logger.info(
                "Rejected blocked client %s on %s (%ds remaining)",
                fingerprint_prefix(fingerprint),
                self.endpoint,
                retry_after,
            )
            raise RateLimitedError(retry_after)

        return GuardContext(endpoint=self.endpoint, fingerprint=fingerprint)


async def report_failure(
    lockout: LockoutService, context: GuardContext | None
) -> FailureResult | None:
    """Record a failed credential check for a guarded request."""
    if context is None:
        return None
    return await lockout.record_failure(context.endpoint, context.fingerprint)


async def report_success(lockout: LockoutService, context: GuardContext | None) -> None:
    """Record a successful credential check for a guarded request."""
    if context is None:
        return
    await lockout.record_success(context.endpoint, context.fingerprint)
