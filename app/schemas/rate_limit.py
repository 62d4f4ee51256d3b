from __future__ import annotations

from pydantic import BaseModel, Field


class RateLimitStatusResponse(BaseModel):
    """Caller's view of their current rate limit budget."""

    identifier: str = Field(..., description="User id or client address the budget is tracked against")
    backend: str = Field(..., description="Active limiter backend: redis or memory")
    limit: int = Field(..., description="Requests allowed per window")
    window_seconds: float = Field(..., description="Window length in seconds")
    remaining: int | None = Field(
        None,
        description="Requests left in the trailing window (null on the in-memory backend)",
    )
    reset_at: int | None = Field(
        None,
        description="UNIX seconds when the next slot frees up (null on the in-memory backend)",
    )


class ServiceHealth(BaseModel):
    redis: str = Field(..., description="healthy, unhealthy or not configured")


class HealthResponse(BaseModel):
    status: str = "ok"
    rate_limiter: str = Field(..., description="Active limiter backend")
    services: ServiceHealth
