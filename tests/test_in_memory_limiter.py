"""Unit tests for the in-memory token bucket limiter."""

import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from app.adapters.rate_limit.base import Outcome
from app.adapters.rate_limit.in_memory import InMemoryTokenBucketRateLimiter


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=1000.0)


@pytest.fixture
def limiter(clock: Mock):
    limiter = InMemoryTokenBucketRateLimiter(burst=3, clock=clock, start_reaper=False)
    yield limiter
    limiter.stop()


@pytest.mark.asyncio
async def test_allows_burst_then_blocks(limiter) -> None:
    results = [(await limiter.allow("k", 60, 60)).outcome for _ in range(4)]

    assert results == [Outcome.ALLOWED, Outcome.ALLOWED, Outcome.ALLOWED, Outcome.DENIED]


@pytest.mark.asyncio
async def test_refills_at_limit_per_window(limiter, clock: Mock) -> None:
    for _ in range(3):
        await limiter.allow("k", 60, 60)
    assert (await limiter.allow("k", 60, 60)).outcome is Outcome.DENIED

    # 60 per 60s refills one token per second
    clock.return_value = 1001.0
    assert (await limiter.allow("k", 60, 60)).outcome is Outcome.ALLOWED
    assert (await limiter.allow("k", 60, 60)).outcome is Outcome.DENIED


@pytest.mark.asyncio
async def test_refill_is_capped_at_burst(limiter, clock: Mock) -> None:
    await limiter.allow("k", 60, 60)

    clock.return_value = 5000.0
    results = [(await limiter.allow("k", 60, 60)).outcome for _ in range(4)]

    assert results.count(Outcome.ALLOWED) == 3


@pytest.mark.asyncio
async def test_isolated_by_key(limiter) -> None:
    for _ in range(3):
        await limiter.allow("k1", 1, 60)
    assert (await limiter.allow("k1", 1, 60)).outcome is Outcome.DENIED

    assert (await limiter.allow("k2", 1, 60)).outcome is Outcome.ALLOWED


@pytest.mark.asyncio
async def test_zero_limit_denies(limiter) -> None:
    assert (await limiter.allow("k", 0, 60)).outcome is Outcome.DENIED
    assert len(limiter) == 0


@pytest.mark.asyncio
async def test_empty_identifier_is_a_regular_key(limiter) -> None:
    assert (await limiter.allow("", 1, 60)).outcome is Outcome.ALLOWED
    assert len(limiter) == 1


@pytest.mark.asyncio
async def test_reset_restores_full_bucket(limiter) -> None:
    for _ in range(4):
        await limiter.allow("k", 1, 60)

    await limiter.reset("k")

    assert (await limiter.allow("k", 1, 60)).outcome is Outcome.ALLOWED


@pytest.mark.asyncio
async def test_has_no_usage_info(limiter) -> None:
    await limiter.allow("k", 1, 60)

    assert await limiter.get_limit_info("k", 1, 60) is None
    assert await limiter.health() is True


@pytest.mark.asyncio
async def test_concurrent_calls_never_exceed_burst(limiter) -> None:
    decisions = await asyncio.gather(*(limiter.allow("hot", 1, 60) for _ in range(20)))

    assert [d.outcome for d in decisions].count(Outcome.ALLOWED) == 3


def test_threads_share_one_bucket_while_reaper_sweeps(clock: Mock) -> None:
    limiter = InMemoryTokenBucketRateLimiter(burst=5, clock=clock, start_reaper=False)
    done = threading.Event()
    sweeps = 0

    def sweep() -> None:
        nonlocal sweeps
        while True:
            limiter.evict_idle()
            sweeps += 1
            if done.is_set():
                return

    def call(i: int) -> tuple[bool, bool]:
        hot = asyncio.run(limiter.allow("hot", 1, 60))
        cold = asyncio.run(limiter.allow(f"caller-{i}", 1, 60))
        return hot.outcome is Outcome.ALLOWED, cold.outcome is Outcome.ALLOWED

    sweeper = threading.Thread(target=sweep)
    sweeper.start()
    try:
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(call, range(200)))
    finally:
        done.set()
        sweeper.join()

    assert sum(hot for hot, _ in results) == 5
    assert all(cold for _, cold in results)
    assert len(limiter) == 201
    assert sweeps > 0


@pytest.mark.asyncio
async def test_evict_idle_drops_only_stale_buckets(clock: Mock) -> None:
    limiter = InMemoryTokenBucketRateLimiter(
        cleanup_interval_seconds=180, clock=clock, start_reaper=False
    )
    await limiter.allow("old", 10, 60)
    clock.return_value = 1100.0
    await limiter.allow("recent", 10, 60)

    clock.return_value = 1200.0
    evicted = limiter.evict_idle()

    assert evicted == 1
    assert len(limiter) == 1
    await limiter.reset("recent")
    assert len(limiter) == 0


@pytest.mark.asyncio
async def test_reaper_thread_evicts_in_background(clock: Mock) -> None:
    limiter = InMemoryTokenBucketRateLimiter(cleanup_interval_seconds=0.01, clock=clock)
    try:
        assert limiter.reaper_running is True
        await limiter.allow("k", 10, 60)

        clock.return_value = 2000.0
        deadline = time.monotonic() + 2.0
        while len(limiter) and time.monotonic() < deadline:
            time.sleep(0.01)

        assert len(limiter) == 0
    finally:
        await limiter.close()

    assert limiter.reaper_running is False


def test_stop_is_idempotent() -> None:
    limiter = InMemoryTokenBucketRateLimiter()

    limiter.stop()
    limiter.stop()

    assert limiter.reaper_running is False


@pytest.mark.parametrize(
    "kwargs",
    [
        {"burst": 0},
        {"cleanup_interval_seconds": 0},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        InMemoryTokenBucketRateLimiter(start_reaper=False, **kwargs)


@pytest.mark.asyncio
async def test_invalid_window(limiter) -> None:
    with pytest.raises(ValueError):
        await limiter.allow("k", 1, 0)
    # window is checked before the limit
    with pytest.raises(ValueError):
        await limiter.allow("k", 0, -1)
