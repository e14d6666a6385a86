"""Per (user, team) cache of resolved permission sets.

Expiry is checked lazily on read; there is no sweeper. TTL bounds the
staleness window when a write-through invalidation is missed somewhere.
"""

from __future__ import annotations

import json
import logging
import math
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

from redis.exceptions import RedisError

from ...config import settings
from ...errors import CacheInvalidationError, InfrastructureError
from ...infrastructure.redis import RedisClient, get_redis

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"

Clock = Callable[[], float]
Loader = Callable[[], Awaitable[Iterable[str]]]


class CacheBackendError(InfrastructureError):
    code = "CACHE_BACKEND_ERROR"
    message = "Permission cache backend is unavailable"


@dataclass(frozen=True)
class CacheEntry:
    permissions: frozenset[str]
    last_updated: float
    expires_at: float

    def __post_init__(self) -> None:
        if self.expires_at <= self.last_updated:
            raise ValueError("Cache entry must expire after it was last updated")

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now

    def to_json(self) -> str:
        return json.dumps(
            {
                "permissions": sorted(self.permissions),
                "last_updated": self.last_updated,
                "expires_at": self.expires_at,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> CacheEntry:
        data = json.loads(raw)
        return cls(
            permissions=frozenset(data["permissions"]),
            last_updated=float(data["last_updated"]),
            expires_at=float(data["expires_at"]),
        )


class PermissionCacheBackend(Protocol):
    async def get(self, key: str) -> CacheEntry | None:
        ...

    async def set(self, key: str, entry: CacheEntry, ttl_seconds: float) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def clear(self) -> None:
        ...


class InMemoryCacheBackend:
    """Process-local backend. Each key is replaced by a single assignment."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry, ttl_seconds: float) -> None:
        self._entries[key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend:
    """Shared backend. Entries are JSON strings stored with SETEX.

    ``clear`` bumps a generation counter embedded in every key, so old
    entries become unreachable at once and age out through their TTL.
    """

    def __init__(self, client: RedisClient, prefix: str = "permissions") -> None:
        self._client = client
        self._prefix = prefix

    @property
    def _generation_key(self) -> str:
        return f"{self._prefix}:generation"

    async def _full_key(self, key: str) -> str:
        generation = await self._client.get_counter(self._generation_key)
        return f"{self._prefix}:{generation}:{key}"

    async def get(self, key: str) -> CacheEntry | None:
        try:
            raw = await self._client.get_value(await self._full_key(key))
        except (RedisError, OSError) as exc:
            raise CacheBackendError(details=str(exc)) from exc
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable permission cache entry for %s", key)
            return None

    async def set(self, key: str, entry: CacheEntry, ttl_seconds: float) -> None:
        try:
            await self._client.set_value(
                await self._full_key(key),
                entry.to_json(),
                ttl_seconds=max(1, math.ceil(ttl_seconds)),
            )
        except (RedisError, OSError) as exc:
            raise CacheBackendError(details=str(exc)) from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete_value(await self._full_key(key))
        except (RedisError, OSError) as exc:
            raise CacheBackendError(details=str(exc)) from exc

    async def clear(self) -> None:
        try:
            await self._client.increment_counter(self._generation_key)
        except (RedisError, OSError) as exc:
            raise CacheBackendError(details=str(exc)) from exc


def make_cache_key(user_id: uuid.UUID, team_id: uuid.UUID | None = None) -> str:
    return f"{user_id}:{team_id or GLOBAL_SCOPE}"


class PermissionCache:
    def __init__(
        self,
        backend: PermissionCacheBackend,
        ttl_seconds: float = 300,
        clock: Clock = time.time,
    ) -> None:
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def get(
        self, user_id: uuid.UUID, team_id: uuid.UUID | None = None
    ) -> frozenset[str] | None:
        """Return the cached set, or None on miss, expiry or backend failure."""
        key = make_cache_key(user_id, team_id)
        try:
            entry = await self.backend.get(key)
        except CacheBackendError as exc:
            logger.warning("Permission cache read failed for %s: %s", key, exc.details)
            return None

        if entry is None:
            logger.debug("Permission cache miss for %s", key)
            return None

        if entry.is_expired(self._clock()):
            logger.debug("Permission cache entry expired for %s", key)
            try:
                await self.backend.delete(key)
            except CacheBackendError as exc:
                logger.warning("Could not drop expired cache entry %s: %s", key, exc.details)
            return None

        logger.debug("Permission cache hit for %s", key)
        return entry.permissions

    async def put(
        self,
        user_id: uuid.UUID,
        team_id: uuid.UUID | None,
        permissions: Iterable[str],
        ttl_seconds: float | None = None,
    ) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        key = make_cache_key(user_id, team_id)

        try:
            if ttl <= 0:
                # Already expired on arrival: behave as a miss on the next read.
                await self.backend.delete(key)
                return

            now = self._clock()
            entry = CacheEntry(
                permissions=frozenset(permissions),
                last_updated=now,
                expires_at=now + ttl,
            )
            await self.backend.set(key, entry, ttl)
        except CacheBackendError as exc:
            logger.warning("Permission cache write skipped for %s: %s", key, exc.details)

    async def invalidate(
        self, user_id: uuid.UUID, team_id: uuid.UUID | None = None
    ) -> None:
        """
        Raises:
            CacheInvalidationError: If the entry could not be dropped
        """
        key = make_cache_key(user_id, team_id)
        try:
            await self.backend.delete(key)
        except CacheBackendError as exc:
            raise CacheInvalidationError(details={"key": key}) from exc
        logger.info("Invalidated permission cache entry %s", key)

    async def invalidate_user(
        self, user_id: uuid.UUID, team_ids: Iterable[uuid.UUID | None]
    ) -> None:
        """Drop the user's entries for the given teams and the team-less entry."""
        scopes: set[uuid.UUID | None] = set(team_ids)
        scopes.add(None)
        for team_id in scopes:
            await self.invalidate(user_id, team_id)

    async def invalidate_all(self) -> None:
        """
        Raises:
            CacheInvalidationError: If the backend could not be cleared
        """
        try:
            await self.backend.clear()
        except CacheBackendError as exc:
            raise CacheInvalidationError(details={"key": "*"}) from exc
        logger.info("Invalidated all permission cache entries")

    async def get_or_load(
        self,
        user_id: uuid.UUID,
        team_id: uuid.UUID | None,
        loader: Loader,
    ) -> frozenset[str]:
        """Return the cached set, calling ``loader`` exactly once on a miss.

        Concurrent misses for one key may each call their own loader.
        """
        cached = await self.get(user_id, team_id)
        if cached is not None:
            return cached

        permissions = frozenset(await loader())
        await self.put(user_id, team_id, permissions)
        return permissions


def build_permission_cache(redis_client: RedisClient | None = None) -> PermissionCache:
    if settings.permission_cache_backend == "redis":
        backend: PermissionCacheBackend = RedisCacheBackend(redis_client or get_redis())
    else:
        backend = InMemoryCacheBackend()
    return PermissionCache(backend, ttl_seconds=settings.permission_cache_ttl_seconds)


_cache_instance: PermissionCache | None = None


def get_permission_cache() -> PermissionCache:
    """Process-wide cache, built from settings on first use."""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = build_permission_cache()
    return _cache_instance


def set_permission_cache(cache: PermissionCache | None) -> None:
    global _cache_instance
    _cache_instance = cache
