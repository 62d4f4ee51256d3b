from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from app.core.auth import authenticate_caller
from app.core.rate_limit import default_rate_limit_guard, derive_identifier
from app.schemas.rate_limit import RateLimitStatusResponse

router = APIRouter(
    tags=["Rate Limit"],
    dependencies=[Depends(authenticate_caller), Depends(default_rate_limit_guard)],
)


@router.get("/rate-limit", response_model=RateLimitStatusResponse)
async def get_rate_limit_status(request: Request) -> RateLimitStatusResponse:
    """Report the caller's remaining budget.

    This request itself counts against the budget, like any other protected
    route. ``remaining`` and ``reset_at`` are only known on the Redis backend.
    """

    limiter = request.app.state.rate_limiter
    guard = default_rate_limit_guard
    identifier = derive_identifier(request)
    info = await guard.limit_info(limiter, identifier)

    return RateLimitStatusResponse(
        identifier=identifier,
        backend=limiter.backend_name,
        limit=guard.requests_per_window,
        window_seconds=guard.window_seconds,
        remaining=info.remaining if info else None,
        reset_at=info.reset_at if info else None,
    )
