"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets environment variables before the settings module is imported and
provides Redis clients for the sliding-window limiter: an in-process server
that executes the real Lua scripts, and a client whose every command fails.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.pop("REDIS_URL", None)

os.environ.setdefault("APP_API_KEY_REQUIRED", "false")
os.environ.setdefault("APP_API_KEYS", "alice:test-key-alice,bob:test-key-bob")
os.environ.setdefault("APP_ADMIN_API_KEYS", "test-admin-key")
os.environ.setdefault("RATE_LIMIT_REQUESTS_PER_MINUTE", "100")

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402


class UnreachableRedis:
    """Redis double whose every command fails like a dropped connection."""

    def __init__(self) -> None:
        self.closed = False

    def register_script(self, script: str):
        async def run(keys=None, args=None, client=None):
            raise RedisConnectionError("Error 111 connecting to redis:6379. Connection refused.")

        return run

    async def delete(self, *keys: str) -> int:
        raise RedisConnectionError("Connection refused.")

    async def ping(self) -> bool:
        raise RedisConnectionError("Connection refused.")

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def redis_server() -> fakeredis.FakeServer:
    """One in-process Redis server per test (Lua scripting enabled)."""
    return fakeredis.FakeServer()


@pytest.fixture
def fake_redis(redis_server: fakeredis.FakeServer) -> fakeredis.FakeAsyncRedis:
    """Async client handed to the limiter under test."""
    return fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def redis_inspector(redis_server: fakeredis.FakeServer) -> fakeredis.FakeRedis:
    """Sync client on the same server, for asserting on keys from sync tests."""
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def unreachable_redis() -> UnreachableRedis:
    return UnreachableRedis()
