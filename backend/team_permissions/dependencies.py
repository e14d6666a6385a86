import uuid
from collections.abc import AsyncGenerator, Callable

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_session
from .errors import AuthError, ValidationError
from .schemas.permission_check import PermissionContext
from .services.audit.audit_service import PermissionAuditService
from .services.cache.permission_cache import PermissionCache, get_permission_cache
from .services.permissions.resolver import PermissionResolver
from .services.permissions.role_service import RoleService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


def get_cache() -> PermissionCache:
    return get_permission_cache()


async def get_current_user_id(
    x_user_id: str | None = Header(default=None),
) -> uuid.UUID:
    """Caller identity set by the upstream authentication layer."""
    if x_user_id is None or not x_user_id.strip():
        raise AuthError("Not authenticated")
    try:
        return uuid.UUID(x_user_id.strip())
    except ValueError:
        raise AuthError("Invalid user identifier") from None


async def get_current_team_id(
    x_team_id: str | None = Header(default=None),
) -> uuid.UUID | None:
    if x_team_id is None or not x_team_id.strip():
        return None
    try:
        return uuid.UUID(x_team_id.strip())
    except ValueError:
        raise ValidationError("Invalid team identifier") from None


def get_audit_service(db: AsyncSession = Depends(get_db)) -> PermissionAuditService:
    return PermissionAuditService(db)


def get_resolver(
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_cache),
    audit_service: PermissionAuditService = Depends(get_audit_service),
) -> PermissionResolver:
    return PermissionResolver(db, cache, audit_service)


def get_role_service(
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_cache),
    audit_service: PermissionAuditService = Depends(get_audit_service),
) -> RoleService:
    return RoleService(db, cache, audit_service)


def require_permission(permission: str) -> Callable:
    """Route guard for a single permission.

    A denial is audited by the resolver and surfaces as 403. Storage
    failures surface as 503; neither path lets the request through.
    """

    async def dependency(
        user_id: uuid.UUID = Depends(get_current_user_id),
        team_id: uuid.UUID | None = Depends(get_current_team_id),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> uuid.UUID:
        await resolver.require_permission(
            PermissionContext(user_id=user_id, team_id=team_id), permission
        )
        return user_id

    return dependency
