"""Rate limiting adapters.

Two interchangeable limiters share one contract: a Redis sliding-window
limiter for multi-instance deployments and an in-process token bucket used
when no Redis is configured.
"""

from app.adapters.rate_limit.base import (
    AbstractRateLimiter,
    LimitInfo,
    Outcome,
    RateLimitDecision,
    validate_window,
)
from app.adapters.rate_limit.in_memory import InMemoryTokenBucketRateLimiter
from app.adapters.rate_limit.redis_sliding_window import RedisSlidingWindowRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "InMemoryTokenBucketRateLimiter",
    "LimitInfo",
    "Outcome",
    "RateLimitDecision",
    "RedisSlidingWindowRateLimiter",
    "validate_window",
]
