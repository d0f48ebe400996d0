"""Authentication schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Login request. Either ``username`` or ``email`` identifies the account."""

    username: str | None = Field(default=None, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    password: str | None = Field(default=None, max_length=200)

    @property
    def identifier(self) -> str:
        return (self.email or self.username or "").strip()


class LoginUser(BaseModel):
    username: str


class LoginResponse(BaseModel):
    """Successful login. Token issuance happens elsewhere."""

    ok: Literal[True] = True
    user: LoginUser


class ErrorResponse(BaseModel):
    """Generic error body shared by every auth failure."""

    ok: Literal[False] = False
    error: str
    message: str
