"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (unusable stored credentials, broken verifier backends, etc.). The global
  handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``RateLimitedError``: raised by the rate-limit guard to deny a request.
  The global handler in ``lockgate/main.py`` turns it into the generic 429
  throttle response. It carries only the remaining block time, never what
  identified the client.
- ``StoreConnectError``: raised inside the key-value adapter when a
  connection cannot be established. It never leaves the adapter: operations
  report the store as unavailable instead.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``lockgate/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class RateLimitedError(Exception):
    """Raised when a client is currently blocked on a protected endpoint."""

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Rate limited for {retry_after}s")
        self.retry_after = retry_after


class StoreConnectError(Exception):
    """Raised when the key-value store cannot be reached after all retries."""
