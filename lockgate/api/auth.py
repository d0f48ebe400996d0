"""Authentication API endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from lockgate.api.deps import get_credential_verifier, get_lockout_service
from lockgate.api.rate_limit import GuardContext, RateLimitGuard, report_failure, report_success
from lockgate.schemas.auth import ErrorResponse, LoginRequest, LoginResponse, LoginUser
from lockgate.services.auth_service import CredentialVerifier
from lockgate.services.lockout_service import LockoutService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

login_guard = RateLimitGuard("login")


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=error, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
async def login(
    body: LoginRequest,
    guard: Annotated[GuardContext | None, Depends(login_guard)],
    lockout: Annotated[LockoutService, Depends(get_lockout_service)],
    verifier: Annotated[CredentialVerifier, Depends(get_credential_verifier)],
) -> LoginResponse | JSONResponse:
    """Login with username (or e-mail) and password."""
    identifier = body.identifier
    if not identifier or not body.password:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "VALIDATION_ERROR",
            "Provide a username (or e-mail) and password.",
        )

    username = await verifier.verify(identifier, body.password)
    if username is None:
        await report_failure(lockout, guard)
        return _error(
            status.HTTP_401_UNAUTHORIZED,
            "INVALID_CREDENTIALS",
            "Invalid credentials.",
        )

    await report_success(lockout, guard)
    logger.info("Successful login for %s", username)
    return LoginResponse(user=LoginUser(username=username))
