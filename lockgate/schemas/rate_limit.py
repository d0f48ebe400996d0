"""Rate limiting schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class RateLimitedResponse(BaseModel):
    """Body of the 429 response sent to blocked clients."""

    model_config = ConfigDict(populate_by_name=True)

    ok: Literal[False] = False
    error: Literal["RATE_LIMITED"] = "RATE_LIMITED"
    message: str
    retry_after: int = Field(alias="retryAfter", ge=1)
