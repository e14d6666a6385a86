"""
Seed the permission catalog, the system roles and their default bindings.
Run once after the initial migration; re-running only fills in what is missing.

The seed table defaults to the built-in one. Set PERMISSION_SEED_PATH, or
pass a path as the first argument, to load a JSON seed table instead.

Usage:
    python -m scripts.seed_permissions [seed.json]
"""
import asyncio
import os
import sys

# Add parent directory to path to import team_permissions modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from team_permissions.auth.seed import resolve_seed_table
from team_permissions.config import settings
from team_permissions.database import dispose_engine, get_sessionmaker
from team_permissions.infrastructure.redis import close_redis, init_redis
from team_permissions.services.cache.permission_cache import build_permission_cache
from team_permissions.services.permissions.seeding import seed_defaults


async def seed_permissions(seed_path: str | None = None) -> None:
    seed_table = resolve_seed_table(seed_path or settings.permission_seed_path)
    print(f"Seeding {len(seed_table.roles)} system roles...")

    redis_client = None
    if settings.permission_cache_backend == "redis":
        redis_client = await init_redis(settings.redis_url)
    # A shared cache is cleared so running services pick up the new bindings.
    cache = build_permission_cache(redis_client)
    try:
        async with get_sessionmaker()() as session:
            result = await seed_defaults(session, seed_table, cache)
    finally:
        await close_redis()
        await dispose_engine()

    print(f"  ✓ Permissions created: {result.permissions_created}")
    print(f"  ✓ Roles created: {result.roles_created}")
    print(f"  ✓ Bindings created: {result.bindings_created}")

    for role in seed_table.roles:
        print(f"    {role.slug} (level {role.hierarchy_level}): {len(role.permissions)} permissions")


if __name__ == "__main__":
    asyncio.run(seed_permissions(sys.argv[1] if len(sys.argv) > 1 else None))
