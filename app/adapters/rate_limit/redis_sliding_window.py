"""Redis-backed sliding-window rate limiter.

Each identifier owns a sorted set under ``ratelimit:<identifier>`` whose
members are individual accepted requests scored by their millisecond
timestamp. Purge, count and conditional insert run inside one Lua script, so
any number of API instances share a single linearizable counter per
identifier without client-side locking.

Notes:
- Storage is O(limit) per identifier; keys expire shortly after the window.
- Backend errors fail open: ``allow`` returns an indeterminate decision.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from typing import Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.adapters.rate_limit.base import (
    AbstractRateLimiter,
    LimitInfo,
    RateLimitDecision,
    validate_window,
)
from app.core.errors import RateLimitBackendUnavailableError

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit"

# KEYS[1] = usage key
# ARGV = limit, window_start_ms, now_ms, expire_seconds, member
ALLOW_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local now_ms = tonumber(ARGV[3])
local expire_seconds = tonumber(ARGV[4])
local member = ARGV[5]

redis.call('ZREMRANGEBYSCORE', key, '-inf', '(' .. ARGV[2])

local current = redis.call('ZCARD', key)
if current < limit then
    redis.call('ZADD', key, now_ms, member)
    redis.call('EXPIRE', key, expire_seconds)
    return {1, current + 1}
end
return {0, current}
"""

# KEYS[1] = usage key
# ARGV = window_start_ms
LIMIT_INFO_SCRIPT = """
local key = KEYS[1]

redis.call('ZREMRANGEBYSCORE', key, '-inf', '(' .. ARGV[1])

local current = redis.call('ZCARD', key)
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if oldest[2] then
    return {current, tonumber(oldest[2])}
end
return {current, -1}
"""

# Errors that mean "backend unreachable or misbehaving", never "over limit".
BACKEND_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


def build_key(identifier: str) -> str:
    """Namespace an identifier verbatim (no escaping, empty string allowed)."""
    return f"{KEY_PREFIX}:{identifier}"


def _new_member() -> str:
    return f"{time.time_ns()}-{uuid.uuid4().hex}"


class RedisSlidingWindowRateLimiter(AbstractRateLimiter):
    """Exact sliding-window limiter shared by every instance using the same Redis.

    Use :meth:`connect` to build one from a URL; the constructor accepts an
    existing ``redis.asyncio.Redis`` client (or a compatible test double).
    """

    backend_name = "redis"

    def __init__(
        self,
        client: Redis,
        *,
        clock: Callable[[], float] = time.time,
        member_factory: Callable[[], str] = _new_member,
    ) -> None:
        self._client = client
        self._clock = clock
        self._member_factory = member_factory
        self._allow_script = client.register_script(ALLOW_SCRIPT)
        self._info_script = client.register_script(LIMIT_INFO_SCRIPT)

    @classmethod
    async def connect(
        cls,
        url: str,
        *,
        connect_timeout_seconds: float = 5.0,
        socket_timeout_seconds: float = 3.0,
        ping_timeout_seconds: float = 3.0,
    ) -> "RedisSlidingWindowRateLimiter":
        """Create a client for ``url`` and verify it answers a PING.

        Raises:
            RateLimitBackendUnavailableError: If the client cannot be built or
                the server does not respond in time.
        """
        try:
            client = Redis.from_url(
                url,
                socket_connect_timeout=connect_timeout_seconds,
                socket_timeout=socket_timeout_seconds,
                decode_responses=True,
            )
        except ValueError as exc:
            raise RateLimitBackendUnavailableError(
                code="redis_invalid_url",
                message="Invalid Redis URL for rate limiting",
                details={"hint": "Use redis://host:port/db or rediss:// for TLS"},
            ) from exc

        try:
            await asyncio.wait_for(client.ping(), timeout=ping_timeout_seconds)
        except BACKEND_ERRORS as exc:
            await client.aclose()
            raise RateLimitBackendUnavailableError(
                code="redis_unavailable",
                message=f"Failed to connect to Redis: {exc}",
            ) from exc

        return cls(client)

    def _window_bounds(self, window_seconds: float) -> tuple[int, int, int]:
        validate_window(window_seconds)
        now_ms = int(self._clock() * 1000)
        window_ms = int(window_seconds * 1000)
        return now_ms, window_ms, now_ms - window_ms

    async def allow(self, identifier: str, limit: int, window_seconds: float) -> RateLimitDecision:
        key = build_key(identifier)
        now_ms, _, window_start_ms = self._window_bounds(window_seconds)
        expire_seconds = int(math.ceil(window_seconds)) + 1

        try:
            allowed, count = await self._allow_script(
                keys=[key],
                args=[limit, window_start_ms, now_ms, expire_seconds, self._member_factory()],
            )
        except BACKEND_ERRORS as exc:
            logger.warning(
                "rate_limit.backend_error",
                extra={"identifier": identifier, "error": str(exc), "operation": "allow"},
            )
            return RateLimitDecision.indeterminate(f"redis error: {exc}")

        if int(allowed) == 1:
            return RateLimitDecision.allowed(int(count))
        return RateLimitDecision.denied(int(count))

    async def get_limit_info(
        self, identifier: str, limit: int, window_seconds: float
    ) -> LimitInfo | None:
        """Purge and count without inserting; None when Redis fails."""
        key = build_key(identifier)
        now_ms, window_ms, window_start_ms = self._window_bounds(window_seconds)

        try:
            count, oldest_ms = await self._info_script(keys=[key], args=[window_start_ms])
        except BACKEND_ERRORS as exc:
            logger.warning(
                "rate_limit.backend_error",
                extra={"identifier": identifier, "error": str(exc), "operation": "get_limit_info"},
            )
            return None

        oldest_ms = int(oldest_ms)
        reset_ms = oldest_ms + window_ms if oldest_ms >= 0 else now_ms
        return LimitInfo(
            limit=limit,
            remaining=max(0, limit - int(count)),
            reset_at=int(math.ceil(reset_ms / 1000)),
        )

    async def reset(self, identifier: str) -> None:
        await self._client.delete(build_key(identifier))

    async def health(self) -> bool:
        try:
            return bool(await self._client.ping())
        except BACKEND_ERRORS:
            return False

    async def close(self) -> None:
        await self._client.aclose()
