"""Credential checks used behind the rate-limit guard.

The guard does not care how credentials are verified. Anything implementing
``CredentialVerifier`` can be installed on ``app.state.credential_verifier``;
the default verifier knows a single account from settings.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from typing import TYPE_CHECKING, Protocol

import bcrypt

from lockgate.exceptions import InternalServerError

if TYPE_CHECKING:
    from lockgate.config import Settings

logger = logging.getLogger(__name__)

_DUMMY_PASSWORD_HASH = bcrypt.hashpw(b"lockgate-dummy-password", bcrypt.gensalt()).decode("utf-8")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash.

    Raises ``InternalServerError`` if the stored hash is not a bcrypt hash.
    """
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError as exc:
        raise InternalServerError("Stored password hash is not a valid bcrypt hash") from exc


class CredentialVerifier(Protocol):
    async def verify(self, identifier: str, password: str) -> str | None:
        """Return the canonical username for valid credentials, else None."""
        ...


class StaticCredentialVerifier:
    """Verify against one configured account (username or e-mail)."""

    def __init__(self, username: str, password: str, email: str | None = None) -> None:
        self._username = username
        self._email = email
        self._password_hash = hash_password(password)

    @classmethod
    def from_settings(cls, settings: Settings) -> StaticCredentialVerifier:
        return cls(settings.admin_username, settings.admin_password)

    def _matches_identifier(self, identifier: str) -> bool:
        candidates = [self._username]
        if self._email:
            candidates.append(self._email)
        return any(
            hmac.compare_digest(identifier.lower().encode(), candidate.lower().encode())
            for candidate in candidates
        )

    async def verify(self, identifier: str, password: str) -> str | None:
        if not self._matches_identifier(identifier):
            # Run a dummy hash check to reduce username timing side channels.
            await asyncio.to_thread(verify_password, password, _DUMMY_PASSWORD_HASH)
            return None
        if not await asyncio.to_thread(verify_password, password, self._password_hash):
            return None
        return self._username
