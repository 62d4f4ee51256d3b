from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response, status

from app.core.auth import verify_admin_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"], dependencies=[Depends(verify_admin_key)])


@router.delete(
    "/admin/rate-limits/{identifier}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def reset_rate_limit(identifier: str, request: Request) -> Response:
    """Forget all usage recorded for ``identifier`` (user id or client address)."""

    limiter = request.app.state.rate_limiter
    await limiter.reset(identifier)
    logger.info(
        "rate_limit.reset",
        extra={"identifier": identifier, "backend": limiter.backend_name},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
