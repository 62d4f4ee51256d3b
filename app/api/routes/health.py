from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from app.schemas.rate_limit import HealthResponse, ServiceHealth

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    Always reports ``status: ok`` so load balancers keep routing traffic
    while Redis is down (rate limiting fails open). Redis status is reported
    separately for monitoring.
    """

    limiter = request.app.state.rate_limiter
    if limiter.backend_name != "redis":
        redis_status = "not configured"
    elif await limiter.health():
        redis_status = "healthy"
    else:
        redis_status = "unhealthy"
        logger.warning("health.redis_unhealthy")

    return HealthResponse(
        rate_limiter=limiter.backend_name,
        services=ServiceHealth(redis=redis_status),
    )
