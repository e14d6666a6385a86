import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.catalog import group_by_module
from ..crud.permission import PermissionRepository
from ..dependencies import get_current_team_id, get_current_user_id, get_db, get_resolver
from ..schemas.permission import PermissionCatalogResponse, PermissionResponse
from ..schemas.permission_check import (
    PermissionCheck,
    PermissionCheckRequest,
    PermissionContext,
)
from ..services.permissions.resolver import PermissionResolver

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("", response_model=PermissionCatalogResponse)
async def list_permissions(
    db: AsyncSession = Depends(get_db),
    _user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Permission catalog grouped by module."""
    permissions = await PermissionRepository(db).list_all()
    grouped = group_by_module(permissions)
    return PermissionCatalogResponse(
        modules={
            module: [PermissionResponse.model_validate(p) for p in items]
            for module, items in grouped.items()
        }
    )


@router.post("/check", response_model=PermissionCheck)
async def check_permission(
    payload: PermissionCheckRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    header_team_id: uuid.UUID | None = Depends(get_current_team_id),
    resolver: PermissionResolver = Depends(get_resolver),
):
    """Explain whether the calling user holds a permission.

    Fail-closed: infrastructure failures come back as a denial.
    """
    context = PermissionContext(
        user_id=user_id,
        team_id=payload.team_id or header_team_id,
        resource_type=payload.resource_type,
        resource_id=payload.resource_id,
    )
    return await resolver.check_with_deadline(context, payload.permission)
