"""Lifecycle tests for the Redis singleton backing the shared permission cache.

The client connects lazily, so none of these need a running server.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from team_permissions.infrastructure import redis

REDIS_URL = "redis://localhost:6379/15"


@pytest.fixture(autouse=True)
def _reset_redis_state():
    redis._reset_for_testing()
    yield
    redis._reset_for_testing()


@pytest.mark.anyio
async def test_init_redis_is_idempotent() -> None:
    client1 = await redis.init_redis(REDIS_URL)
    client2 = await redis.init_redis(REDIS_URL)

    assert client1 is client2
    assert redis.get_redis() is client1
    await redis.close_redis()


@pytest.mark.anyio
async def test_close_redis_is_idempotent() -> None:
    await redis.init_redis(REDIS_URL)

    await redis.close_redis()
    await redis.close_redis()

    assert redis._redis_state == redis._RedisLifecycleState.CLOSED
    assert redis._redis_client is None


@pytest.mark.anyio
async def test_close_without_init_is_safe() -> None:
    await redis.close_redis()

    assert redis._redis_state == redis._RedisLifecycleState.UNINITIALIZED


@pytest.mark.anyio
async def test_get_redis_outside_initialized_state_raises() -> None:
    with pytest.raises(RuntimeError, match="not initialized"):
        redis.get_redis()

    await redis.init_redis(REDIS_URL)
    await redis.close_redis()

    with pytest.raises(RuntimeError, match="not initialized"):
        redis.get_redis()


@pytest.mark.anyio
async def test_reinit_after_close_creates_new_client() -> None:
    client1 = await redis.init_redis(REDIS_URL)
    await redis.close_redis()

    client2 = await redis.init_redis(REDIS_URL)

    assert client2 is not client1
    assert redis.get_redis() is client2
    await redis.close_redis()


@pytest.mark.anyio
async def test_concurrent_init_returns_single_client() -> None:
    clients = await asyncio.gather(*(redis.init_redis(REDIS_URL) for _ in range(10)))

    assert all(client is clients[0] for client in clients)
    await redis.close_redis()


@pytest.mark.anyio
async def test_set_value_uses_setex_only_with_ttl() -> None:
    client = redis.RedisClient(REDIS_URL)
    backend = AsyncMock()
    client._redis = backend

    await client.set_value("permissions:0:key", "[]", ttl_seconds=30)
    await client.set_value("permissions:0:other", "[]")

    backend.setex.assert_awaited_once_with("permissions:0:key", 30, "[]")
    backend.set.assert_awaited_once_with("permissions:0:other", "[]")


@pytest.mark.anyio
async def test_get_counter_defaults_to_zero() -> None:
    client = redis.RedisClient(REDIS_URL)
    backend = AsyncMock()
    backend.get.return_value = None
    backend.incr.return_value = 4
    client._redis = backend

    assert await client.get_counter("permissions:generation") == 0
    assert await client.increment_counter("permissions:generation") == 4
