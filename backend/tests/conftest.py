"""Shared test fixtures and configuration."""
import os

# Settings are read lazily, but the FastAPI app module builds the app at import.
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test-permissions.db")

import uuid  # noqa: E402
from collections.abc import AsyncIterator  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import event, func, select  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from team_permissions.auth.seed import DEFAULT_SEED_TABLE  # noqa: E402
from team_permissions.crud.role import RoleRepository  # noqa: E402
from team_permissions.models import Base, PermissionAuditLog  # noqa: E402
from team_permissions.services.audit.audit_service import PermissionAuditService  # noqa: E402
from team_permissions.services.cache.permission_cache import (  # noqa: E402
    InMemoryCacheBackend,
    PermissionCache,
)
from team_permissions.services.permissions.membership_service import (  # noqa: E402
    MembershipService,
)
from team_permissions.services.permissions.resolver import PermissionResolver  # noqa: E402
from team_permissions.services.permissions.role_service import RoleService  # noqa: E402
from team_permissions.services.permissions.seeding import seed_defaults  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def engine(anyio_backend, tmp_path) -> AsyncIterator[AsyncEngine]:
    """On-disk SQLite so isolated audit sessions see a real second connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'permissions.db'}",
        poolclass=NullPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def cache(clock: FakeClock) -> PermissionCache:
    return PermissionCache(InMemoryCacheBackend(), ttl_seconds=300, clock=clock)


@pytest.fixture
def audit_service(session, session_factory) -> PermissionAuditService:
    return PermissionAuditService(session, session_factory)


@pytest.fixture
def role_service(session, cache, audit_service) -> RoleService:
    return RoleService(session, cache, audit_service)


@pytest.fixture
def membership_service(session, cache) -> MembershipService:
    return MembershipService(session, cache)


@pytest.fixture
def resolver(session, cache, audit_service) -> PermissionResolver:
    return PermissionResolver(
        session,
        cache,
        audit_service,
        audit_granted_checks=False,
        timeout_seconds=2.0,
    )


@pytest.fixture
async def seeded(session, cache):
    return await seed_defaults(session, DEFAULT_SEED_TABLE, cache)


@pytest.fixture
def team_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def assign(session, membership_service, seeded, team_id):
    """Put a fresh user into the team with the given system role slug."""

    async def _assign(role_slug: str, user_id: uuid.UUID | None = None, team: uuid.UUID | None = None):
        role = await RoleRepository(session).get_by_slug(role_slug)
        assert role is not None, role_slug
        user_id = user_id or uuid.uuid4()
        await membership_service.assign_member_role(team or team_id, user_id, role.id)
        return user_id

    return _assign


@pytest.fixture
def count_audit(session_factory):
    """Count audit rows through a fresh session so isolated writes are visible."""

    async def _count(**filters) -> int:
        query = select(func.count()).select_from(PermissionAuditLog)
        for name, value in filters.items():
            query = query.where(getattr(PermissionAuditLog, name) == value)
        async with session_factory() as fresh:
            return (await fresh.execute(query)).scalar_one()

    return _count
