"""In-memory token-bucket rate limiter (fallback when Redis is not configured).

Notes:
- Per-process only: running N instances multiplies the effective limit by N.
- Thread-safe: a single lock guards the identifier -> bucket map.
- A reaper thread evicts buckets of identifiers that went quiet, so one-off
  callers do not grow the map forever.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitDecision, validate_window

logger = logging.getLogger(__name__)

DEFAULT_BURST = 10
DEFAULT_CLEANUP_INTERVAL_SECONDS = 180.0


@dataclass
class _Bucket:
    tokens: float
    rate: float
    last_refill: float
    last_seen: float


class InMemoryTokenBucketRateLimiter(AbstractRateLimiter):
    """Token bucket per identifier with continuous refill.

    Refill rate is ``limit / window_seconds`` tokens per second; capacity is a
    fixed ``burst`` independent of the caller's limit. Buckets start full.

    Important:
        The reaper thread starts in the constructor. Call :meth:`stop` (or
        :meth:`close`) on shutdown, or pass ``start_reaper=False`` and drive
        :meth:`evict_idle` manually.
    """

    backend_name = "memory"

    def __init__(
        self,
        *,
        burst: int = DEFAULT_BURST,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        idle_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        start_reaper: bool = True,
    ) -> None:
        """Initialize the limiter.

        Args:
            burst: Bucket capacity (max requests absorbed back-to-back).
            cleanup_interval_seconds: How often the reaper sweeps idle buckets.
            idle_ttl_seconds: Idle time after which a bucket is evicted
                (defaults to the cleanup interval).
            clock: Monotonic time source in seconds.
            start_reaper: Start the background reaper thread immediately.

        Raises:
            ValueError: If burst or the intervals are invalid.
        """
        if burst < 1:
            raise ValueError("burst must be >= 1")
        if cleanup_interval_seconds <= 0:
            raise ValueError("cleanup_interval_seconds must be > 0")

        self._burst = burst
        self._cleanup_interval = cleanup_interval_seconds
        self._idle_ttl = idle_ttl_seconds if idle_ttl_seconds is not None else cleanup_interval_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: dict[str, _Bucket] = {}
        self._stop_event = threading.Event()
        self._reaper: threading.Thread | None = None

        if start_reaper:
            self.start()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    @property
    def reaper_running(self) -> bool:
        return self._reaper is not None and self._reaper.is_alive()

    def start(self) -> None:
        """Start the reaper thread if it is not already running."""
        if self.reaper_running:
            return
        self._stop_event.clear()
        self._reaper = threading.Thread(
            target=self._run_reaper,
            name="rate-limit-reaper",
            daemon=True,
        )
        self._reaper.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the reaper to exit and wait for it. Safe to call twice."""
        self._stop_event.set()
        reaper, self._reaper = self._reaper, None
        if reaper is not None and reaper is not threading.current_thread():
            reaper.join(timeout)

    def _run_reaper(self) -> None:
        while not self._stop_event.wait(self._cleanup_interval):
            self.evict_idle()
        logger.info("rate_limit.reaper_stopped", extra={"buckets": len(self)})

    def evict_idle(self) -> int:
        """Remove buckets not seen within the idle TTL.

        Returns:
            Number of evicted buckets.
        """
        cutoff = self._clock() - self._idle_ttl
        with self._lock:
            stale = [key for key, bucket in self._buckets.items() if bucket.last_seen < cutoff]
            for key in stale:
                del self._buckets[key]

        if stale:
            logger.debug("rate_limit.reaper_evicted", extra={"count": len(stale)})
        return len(stale)

    def _take_token(self, identifier: str, limit: int, window_seconds: float) -> bool:
        now = self._clock()
        rate = limit / window_seconds

        with self._lock:
            bucket = self._buckets.get(identifier)
            if bucket is None:
                bucket = _Bucket(tokens=float(self._burst), rate=rate, last_refill=now, last_seen=now)
                self._buckets[identifier] = bucket
            else:
                elapsed = max(0.0, now - bucket.last_refill)
                bucket.tokens = min(float(self._burst), bucket.tokens + elapsed * bucket.rate)
                bucket.last_refill = now
                bucket.rate = rate
                bucket.last_seen = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return True
            return False

    async def allow(self, identifier: str, limit: int, window_seconds: float) -> RateLimitDecision:
        validate_window(window_seconds)
        if limit <= 0:
            return RateLimitDecision.denied()

        if self._take_token(identifier, limit, window_seconds):
            return RateLimitDecision.allowed()
        return RateLimitDecision.denied()

    async def reset(self, identifier: str) -> None:
        with self._lock:
            self._buckets.pop(identifier, None)

    async def close(self) -> None:
        self.stop()
