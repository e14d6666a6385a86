import json
import logging
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from team_permissions.errors import CacheInvalidationError
from team_permissions.services.cache.permission_cache import (
    CacheBackendError,
    CacheEntry,
    InMemoryCacheBackend,
    PermissionCache,
    RedisCacheBackend,
    make_cache_key,
)


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


def test_cache_key_uses_global_scope_without_team(user_id) -> None:
    team_id = uuid.uuid4()
    assert make_cache_key(user_id) == f"{user_id}:global"
    assert make_cache_key(user_id, team_id) == f"{user_id}:{team_id}"


def test_cache_entry_must_expire_after_update() -> None:
    with pytest.raises(ValueError):
        CacheEntry(permissions=frozenset(), last_updated=10.0, expires_at=10.0)


@pytest.mark.anyio
async def test_get_on_empty_cache_is_miss(cache, user_id) -> None:
    assert await cache.get(user_id) is None


@pytest.mark.anyio
async def test_get_within_ttl_returns_exact_set(cache, clock, user_id) -> None:
    team_id = uuid.uuid4()
    await cache.put(user_id, team_id, {"projects.read", "content.read"}, ttl_seconds=60)

    clock.advance(59)

    assert await cache.get(user_id, team_id) == {"projects.read", "content.read"}
    assert await cache.get(user_id) is None


@pytest.mark.anyio
async def test_expired_entry_is_a_miss_and_dropped(cache, clock, user_id) -> None:
    await cache.put(user_id, None, {"projects.read"}, ttl_seconds=60)

    clock.advance(60)

    assert await cache.get(user_id) is None
    assert len(cache.backend) == 0


@pytest.mark.anyio
@pytest.mark.parametrize("ttl", [0, -5])
async def test_put_with_non_positive_ttl_behaves_as_miss(cache, user_id, ttl) -> None:
    await cache.put(user_id, None, {"projects.read"}, ttl_seconds=60)

    await cache.put(user_id, None, {"projects.read", "projects.update"}, ttl_seconds=ttl)

    assert await cache.get(user_id) is None


@pytest.mark.anyio
async def test_get_or_load_calls_loader_once_per_miss(cache, clock, user_id) -> None:
    loader = AsyncMock(return_value=["projects.read"])

    first = await cache.get_or_load(user_id, None, loader)
    second = await cache.get_or_load(user_id, None, loader)

    assert first == second == frozenset({"projects.read"})
    assert loader.await_count == 1

    clock.advance(cache.ttl_seconds)
    await cache.get_or_load(user_id, None, loader)
    assert loader.await_count == 2


@pytest.mark.anyio
async def test_invalidate_drops_single_entry(cache, user_id) -> None:
    team_id = uuid.uuid4()
    await cache.put(user_id, team_id, {"projects.read"})
    await cache.put(user_id, None, {"projects.read"})

    await cache.invalidate(user_id, team_id)

    assert await cache.get(user_id, team_id) is None
    assert await cache.get(user_id) == {"projects.read"}


@pytest.mark.anyio
async def test_invalidate_user_also_drops_global_entry(cache, user_id) -> None:
    team_id = uuid.uuid4()
    other_team = uuid.uuid4()
    for scope in (team_id, other_team, None):
        await cache.put(user_id, scope, {"projects.read"})

    await cache.invalidate_user(user_id, [team_id])

    assert await cache.get(user_id, team_id) is None
    assert await cache.get(user_id) is None
    assert await cache.get(user_id, other_team) == {"projects.read"}


@pytest.mark.anyio
async def test_invalidate_all(cache) -> None:
    users = [uuid.uuid4() for _ in range(3)]
    for user in users:
        await cache.put(user, None, {"projects.read"})

    await cache.invalidate_all()

    for user in users:
        assert await cache.get(user) is None


def _failing_backend() -> MagicMock:
    backend = MagicMock()
    backend.get = AsyncMock(side_effect=CacheBackendError(details="down"))
    backend.set = AsyncMock(side_effect=CacheBackendError(details="down"))
    backend.delete = AsyncMock(side_effect=CacheBackendError(details="down"))
    backend.clear = AsyncMock(side_effect=CacheBackendError(details="down"))
    return backend


@pytest.mark.anyio
async def test_backend_read_failure_degrades_to_miss(user_id, caplog) -> None:
    cache = PermissionCache(_failing_backend())

    with caplog.at_level(logging.WARNING):
        assert await cache.get(user_id) is None

    assert "Permission cache read failed" in caplog.text


@pytest.mark.anyio
async def test_backend_write_failure_is_skipped(user_id, caplog) -> None:
    cache = PermissionCache(_failing_backend())
    loader = AsyncMock(return_value={"projects.read"})

    with caplog.at_level(logging.WARNING):
        assert await cache.get_or_load(user_id, None, loader) == {"projects.read"}

    assert "Permission cache write skipped" in caplog.text


@pytest.mark.anyio
async def test_invalidation_failure_raises(user_id) -> None:
    cache = PermissionCache(_failing_backend())

    with pytest.raises(CacheInvalidationError):
        await cache.invalidate(user_id)
    with pytest.raises(CacheInvalidationError):
        await cache.invalidate_all()


@pytest.mark.anyio
async def test_in_memory_backend_overwrites_per_key() -> None:
    backend = InMemoryCacheBackend()
    first = CacheEntry(frozenset({"a"}), 0.0, 10.0)
    second = CacheEntry(frozenset({"b"}), 1.0, 11.0)

    await backend.set("k", first, 10)
    await backend.set("k", second, 10)

    assert await backend.get("k") is second
    await backend.delete("missing")


def _redis_client(generation: int = 0) -> MagicMock:
    client = MagicMock()
    client.get_counter = AsyncMock(return_value=generation)
    client.get_value = AsyncMock(return_value=None)
    client.set_value = AsyncMock()
    client.delete_value = AsyncMock()
    client.increment_counter = AsyncMock(return_value=generation + 1)
    return client


@pytest.mark.anyio
async def test_redis_backend_stores_json_with_ttl() -> None:
    client = _redis_client(generation=3)
    backend = RedisCacheBackend(client)
    entry = CacheEntry(frozenset({"content.read", "projects.read"}), 100.0, 400.5)

    await backend.set("u:global", entry, 300.5)

    key, raw = client.set_value.await_args.args
    assert key == "permissions:3:u:global"
    assert json.loads(raw)["permissions"] == ["content.read", "projects.read"]
    assert client.set_value.await_args.kwargs["ttl_seconds"] == 301


@pytest.mark.anyio
async def test_redis_backend_reads_entries() -> None:
    client = _redis_client()
    entry = CacheEntry(frozenset({"projects.read"}), 100.0, 400.0)
    client.get_value = AsyncMock(return_value=entry.to_json())

    assert await RedisCacheBackend(client).get("u:global") == entry
    client.get_value.assert_awaited_once_with("permissions:0:u:global")


@pytest.mark.anyio
async def test_redis_backend_discards_corrupt_entries() -> None:
    client = _redis_client()
    client.get_value = AsyncMock(return_value="{not json")

    assert await RedisCacheBackend(client).get("u:global") is None


@pytest.mark.anyio
async def test_redis_backend_clear_bumps_generation() -> None:
    client = _redis_client()

    await RedisCacheBackend(client).clear()

    client.increment_counter.assert_awaited_once_with("permissions:generation")


@pytest.mark.anyio
async def test_redis_errors_become_backend_errors() -> None:
    client = _redis_client()
    client.get_counter = AsyncMock(side_effect=RedisConnectionError("refused"))
    backend = RedisCacheBackend(client)

    with pytest.raises(CacheBackendError):
        await backend.get("k")
    with pytest.raises(CacheBackendError):
        await backend.delete("k")


@pytest.mark.anyio
async def test_cache_over_unreachable_redis_fails_closed_on_invalidate(user_id) -> None:
    client = _redis_client()
    client.delete_value = AsyncMock(side_effect=RedisConnectionError("refused"))
    cache = PermissionCache(RedisCacheBackend(client))

    with pytest.raises(CacheInvalidationError):
        await cache.invalidate(user_id)
