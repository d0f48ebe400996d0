"""Client fingerprinting for pre-authentication rate limiting.

A fingerprint is a salted SHA-256 digest over what a client reveals about
itself on every request. It never identifies an account, so it works before
the caller knows who is logging in, and it is never reversible to the raw
attributes. Only a short prefix is ever written to logs.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from starlette.requests import Request

ACCEPT_LANGUAGE_PREFIX = 20
ACCEPT_ENCODING_PREFIX = 30
LOG_PREFIX_LENGTH = 16

_DELIMITER = "|"


def get_client_ip(request: Request) -> str:
    """Resolve the client IP: Cloudflare, then X-Real-IP, then X-Forwarded-For, then socket."""
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.split(",", maxsplit=1)[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",", maxsplit=1)[0].strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@dataclass(frozen=True)
class RequestAttributes:
    """Client-visible request attributes that feed a fingerprint."""

    ip: str = ""
    user_agent: str = ""
    accept_language: str = ""
    accept_encoding: str = ""
    client_hint: str = ""

    @classmethod
    def from_request(cls, request: Request) -> RequestAttributes:
        headers = request.headers
        return cls(
            ip=get_client_ip(request),
            user_agent=headers.get("user-agent", ""),
            accept_language=headers.get("accept-language", "")[:ACCEPT_LANGUAGE_PREFIX],
            accept_encoding=headers.get("accept-encoding", "")[:ACCEPT_ENCODING_PREFIX],
            client_hint=headers.get("x-client-fingerprint", ""),
        )


def derive_fingerprint(attributes: RequestAttributes, salt: str) -> str:
    """Return the salted hex digest identifying a client."""
    material = _DELIMITER.join(
        (
            attributes.ip or "",
            attributes.user_agent or "",
            (attributes.accept_language or "")[:ACCEPT_LANGUAGE_PREFIX],
            (attributes.accept_encoding or "")[:ACCEPT_ENCODING_PREFIX],
            attributes.client_hint or "",
        )
    )
    return hashlib.sha256((material + salt).encode("utf-8", errors="replace")).hexdigest()


def fingerprint_prefix(fingerprint: str) -> str:
    """Truncate a fingerprint for diagnostics."""
    return f"{fingerprint[:LOG_PREFIX_LENGTH]}..."
