"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lockgate.api.auth import router as auth_router
from lockgate.api.health import router as health_router
from lockgate.api.rate_limit import format_retry_estimate
from lockgate.config import Settings
from lockgate.exceptions import InternalServerError, RateLimitedError
from lockgate.schemas.rate_limit import RateLimitedResponse
from lockgate.services.auth_service import StaticCredentialVerifier
from lockgate.services.kv_store import KeyValueStore
from lockgate.services.lockout_service import LockoutPolicy, LockoutService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.INFO if debug else logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting LockGate (debug=%s)", settings.debug)

    store: KeyValueStore = app.state.kv_store
    if store.enabled:
        logger.info(
            "Rate limiting enabled (max attempts=%d)", settings.rate_limit_max_attempts
        )
    else:
        logger.warning("REDIS_URL not configured; rate limiting is disabled")

    yield

    try:
        await store.close()
    except Exception as exc:
        logger.error("Error during key-value store shutdown: %s", exc, exc_info=True)

    logger.info("LockGate stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="LockGate",
        description="Progressive rate limiting and lockout for authentication endpoints",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    store = KeyValueStore.from_settings(settings)
    app.state.kv_store = store
    app.state.lockout_service = LockoutService(store, LockoutPolicy.from_settings(settings))
    app.state.credential_verifier = StaticCredentialVerifier.from_settings(settings)

    cors_origins = (
        settings.cors_origins
        if settings.cors_origins
        else (["http://localhost:5173", "http://localhost:8000"] if settings.debug else [])
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After"],
    )

    app.include_router(health_router)
    app.include_router(auth_router)

    # Global exception handlers

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
        body = RateLimitedResponse(
            message=format_retry_estimate(exc.retry_after),
            retry_after=exc.retry_after,
        )
        return JSONResponse(
            status_code=429,
            content=body.model_dump(by_alias=True),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "lockgate.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
