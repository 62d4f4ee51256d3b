"""Rate limiting wiring for FastAPI routes.

This module selects the active limiter at startup and adapts its decisions
to HTTP.

Design goals:
- Minimal coupling: routes depend on a ``RateLimitGuard`` dependency only.
- One limiter per process, built once in the app lifespan and shared by every
  guard through ``app.state.rate_limiter``.
- Fail open: a slow or broken Redis never blocks traffic.

Rate limiting strategy:
- Sliding window per caller in Redis when ``REDIS_URL`` is reachable.
- Otherwise an in-process token bucket (single-instance correctness only).
- Caller = authenticated user id, falling back to client address.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable

from fastapi import Request, Response

from app.adapters.rate_limit.base import AbstractRateLimiter, LimitInfo, Outcome, RateLimitDecision
from app.adapters.rate_limit.in_memory import InMemoryTokenBucketRateLimiter
from app.adapters.rate_limit.redis_sliding_window import RedisSlidingWindowRateLimiter
from app.core.config import RateLimitSettings, RedisSettings, settings
from app.core.errors import RateLimitBackendUnavailableError, RateLimitExceededError
from app.core.logging import mask_url_credentials

logger = logging.getLogger(__name__)


def select_rate_limiter(
    redis_limiter: RedisSlidingWindowRateLimiter | None,
    rate_limit_settings: RateLimitSettings | None = None,
) -> AbstractRateLimiter:
    """Pick the limiter for the lifetime of the process.

    Args:
        redis_limiter: Connected Redis limiter, or None when unavailable.
        rate_limit_settings: Settings for the in-memory fallback.

    Returns:
        The Redis limiter when given, otherwise a new in-memory limiter.
    """

    if redis_limiter is not None:
        logger.info("rate_limit.backend_selected", extra={"backend": redis_limiter.backend_name})
        return redis_limiter

    cfg = rate_limit_settings or settings.rate_limit
    limiter = InMemoryTokenBucketRateLimiter(
        burst=cfg.burst,
        cleanup_interval_seconds=cfg.cleanup_interval_seconds,
    )
    logger.info(
        "rate_limit.backend_selected",
        extra={
            "backend": limiter.backend_name,
            "burst": cfg.burst,
            "cleanup_interval_s": cfg.cleanup_interval_seconds,
        },
    )
    return limiter


async def build_rate_limiter(
    rate_limit_settings: RateLimitSettings | None = None,
    redis_settings: RedisSettings | None = None,
) -> AbstractRateLimiter:
    """Connect to Redis when configured and select the active limiter.

    Raises:
        RateLimitBackendUnavailableError: If Redis is unreachable and
            ``RATE_LIMIT_REQUIRE_REDIS`` is set.
    """

    rl_cfg = rate_limit_settings or settings.rate_limit
    redis_cfg = redis_settings or settings.redis

    redis_limiter: RedisSlidingWindowRateLimiter | None = None
    if redis_cfg.url:
        try:
            redis_limiter = await RedisSlidingWindowRateLimiter.connect(
                redis_cfg.url,
                connect_timeout_seconds=redis_cfg.connect_timeout_seconds,
                socket_timeout_seconds=redis_cfg.socket_timeout_seconds,
            )
        except RateLimitBackendUnavailableError as exc:
            if rl_cfg.require_redis:
                raise
            logger.warning(
                "rate_limit.redis_unavailable",
                extra={
                    "redis_url": mask_url_credentials(redis_cfg.url),
                    "error_code": exc.code,
                    "error_message": exc.message,
                },
            )

    return select_rate_limiter(redis_limiter, rl_cfg)


def derive_identifier(request: Request) -> str:
    """Return the authenticated user id, else the client address."""

    user_id = getattr(request.state, "user_id", None)
    if user_id is not None:
        return str(user_id)
    return request.client.host if request.client else "unknown"


def build_headers(info: LimitInfo, *, now: float, denied: bool) -> dict[str, str]:
    """Render usage info as X-RateLimit-* (and Retry-After when denied)."""

    headers = {
        "X-RateLimit-Limit": str(info.limit),
        "X-RateLimit-Remaining": str(info.remaining),
        "X-RateLimit-Reset": str(info.reset_at),
    }
    if denied:
        headers["Retry-After"] = str(max(1, int(math.ceil(info.reset_at - now))))
    return headers


class RateLimitGuard:
    """FastAPI dependency enforcing a per-caller budget on a route group.

    Usage:
        guard = RateLimitGuard(requests_per_window=30)
        router = APIRouter(dependencies=[Depends(authenticate_caller), Depends(guard)])

    Unset arguments fall back to ``settings.rate_limit`` at request time.
    The limiter defaults to ``request.app.state.rate_limiter``.
    """

    def __init__(
        self,
        requests_per_window: int | None = None,
        *,
        window_seconds: float | None = None,
        timeout_seconds: float | None = None,
        limiter: AbstractRateLimiter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._requests_per_window = requests_per_window
        self._window_seconds = window_seconds
        self._timeout_seconds = timeout_seconds
        self._limiter = limiter
        self._clock = clock

    @property
    def requests_per_window(self) -> int:
        if self._requests_per_window is not None:
            return self._requests_per_window
        return settings.rate_limit.requests_per_minute

    @property
    def window_seconds(self) -> float:
        if self._window_seconds is not None:
            return self._window_seconds
        return settings.rate_limit.window_seconds

    @property
    def timeout_seconds(self) -> float:
        if self._timeout_seconds is not None:
            return self._timeout_seconds
        return settings.rate_limit.timeout_seconds

    def _resolve_limiter(self, request: Request) -> AbstractRateLimiter:
        if self._limiter is not None:
            return self._limiter
        return request.app.state.rate_limiter

    async def check(self, limiter: AbstractRateLimiter, identifier: str) -> RateLimitDecision:
        """Query the limiter once, turning a timeout into an indeterminate outcome."""
        try:
            return await asyncio.wait_for(
                limiter.allow(identifier, self.requests_per_window, self.window_seconds),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return RateLimitDecision.indeterminate(
                f"rate limiter timed out after {self.timeout_seconds}s"
            )

    async def limit_info(self, limiter: AbstractRateLimiter, identifier: str) -> LimitInfo | None:
        """Fetch usage info under the same timeout as :meth:`check`; None on timeout."""
        try:
            return await asyncio.wait_for(
                limiter.get_limit_info(identifier, self.requests_per_window, self.window_seconds),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return None

    async def __call__(self, request: Request, response: Response) -> None:
        """Consume one unit of the caller's budget.

        Raises:
            RateLimitExceededError: When the caller is over budget (rendered as 429).
        """

        if not settings.rate_limit.enabled:
            return

        limiter = self._resolve_limiter(request)
        identifier = derive_identifier(request)
        decision = await self.check(limiter, identifier)

        if decision.outcome is Outcome.INDETERMINATE:
            logger.warning(
                "rate_limit.fail_open",
                extra={
                    "identifier": identifier,
                    "backend": limiter.backend_name,
                    "error": decision.reason,
                },
            )
            return

        info = None
        if settings.rate_limit.include_headers:
            info = await self.limit_info(limiter, identifier)

        denied = decision.outcome is Outcome.DENIED
        headers = build_headers(info, now=self._clock(), denied=denied) if info else {}

        if not denied:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "identifier": identifier,
                    "backend": limiter.backend_name,
                    "count": decision.count,
                    "limit": self.requests_per_window,
                },
            )
            response.headers.update(headers)
            return

        logger.warning(
            "rate_limit.exceeded",
            extra={
                "identifier": identifier,
                "backend": limiter.backend_name,
                "limit": self.requests_per_window,
                "window_s": self.window_seconds,
                "retry_after_s": headers.get("Retry-After"),
            },
        )
        raise RateLimitExceededError(headers=headers)


default_rate_limit_guard = RateLimitGuard()
