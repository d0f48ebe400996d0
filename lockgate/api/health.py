"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from lockgate.api.deps import get_kv_store
from lockgate.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    version: str
    rate_limiter: Literal["ok", "disabled", "unavailable"]


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    store: Annotated[KeyValueStore, Depends(get_kv_store)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    if not store.enabled:
        limiter_status: Literal["ok", "disabled", "unavailable"] = "disabled"
    elif await store.healthy():
        limiter_status = "ok"
    else:
        logger.warning("Health check: rate limiter store unavailable")
        limiter_status = "unavailable"

    return HealthResponse(
        status="degraded" if limiter_status == "unavailable" else "ok",
        version="0.1.0",
        rate_limiter=limiter_status,
    )
