"""Rate limiter interfaces.

The HTTP layer depends on this abstraction (not the concrete implementation)
so the Redis-backed limiter and the in-process fallback are interchangeable.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass


class Outcome(str, enum.Enum):
    """Possible outcomes of a single ``allow`` call."""

    ALLOWED = "allowed"
    DENIED = "denied"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class RateLimitDecision:
    """Tagged result of a rate limit check.

    Attributes:
        outcome: Allowed, denied, or indeterminate (backend failure).
        count: Entries recorded in the current window after the call, when known.
        reason: Error description for indeterminate outcomes.
    """

    outcome: Outcome
    count: int | None = None
    reason: str | None = None

    @property
    def permits(self) -> bool:
        """Whether the request may proceed (indeterminate fails open)."""
        return self.outcome is not Outcome.DENIED

    @classmethod
    def allowed(cls, count: int | None = None) -> "RateLimitDecision":
        return cls(outcome=Outcome.ALLOWED, count=count)

    @classmethod
    def denied(cls, count: int | None = None) -> "RateLimitDecision":
        return cls(outcome=Outcome.DENIED, count=count)

    @classmethod
    def indeterminate(cls, reason: str) -> "RateLimitDecision":
        return cls(outcome=Outcome.INDETERMINATE, reason=reason)


@dataclass(frozen=True)
class LimitInfo:
    """Usage snapshot surfaced in X-RateLimit-* headers.

    Attributes:
        limit: Max requests per window.
        remaining: Requests left in the trailing window (never negative).
        reset_at: UNIX epoch seconds when the next slot frees up.
    """

    limit: int
    remaining: int
    reset_at: int


def validate_window(window_seconds: float) -> None:
    """Reject non-positive windows before any backend is touched."""
    if window_seconds <= 0:
        raise ValueError("window_seconds must be > 0")


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    backend_name: str = "abstract"

    @abstractmethod
    async def allow(self, identifier: str, limit: int, window_seconds: float) -> RateLimitDecision:
        """Try to record one request for ``identifier``.

        Args:
            identifier: Opaque caller identifier (user id or client address).
            limit: Max requests allowed in the window.
            window_seconds: Window length in seconds.

        Returns:
            RateLimitDecision describing whether the request may proceed.
            A ``limit`` of zero or less is always denied.

        Raises:
            ValueError: If ``window_seconds`` is not positive (see
                :func:`validate_window`).
        """
        raise NotImplementedError

    @abstractmethod
    async def reset(self, identifier: str) -> None:
        """Drop all usage recorded for ``identifier``."""
        raise NotImplementedError

    async def get_limit_info(
        self, identifier: str, limit: int, window_seconds: float
    ) -> LimitInfo | None:
        """Return usage info without consuming a slot, or None when unsupported."""
        return None

    async def health(self) -> bool:
        return True

    async def close(self) -> None:
        return None
