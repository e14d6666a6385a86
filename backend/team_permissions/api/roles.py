import uuid

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_current_user_id, get_role_service, require_permission
from ..schemas.permission import PermissionResponse
from ..schemas.role import RoleBindingResponse, RoleCreate, RoleResponse, RoleUpdate
from ..services.permissions.role_service import RoleService

MANAGE_ROLES = "team.manage.roles"

router = APIRouter(prefix="/roles", tags=["roles"])


@router.get("", response_model=list[RoleResponse])
async def list_roles(
    include_inactive: bool = Query(False),
    _user_id: uuid.UUID = Depends(get_current_user_id),
    service: RoleService = Depends(get_role_service),
):
    return await service.list_roles(include_inactive=include_inactive)


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    payload: RoleCreate,
    actor_id: uuid.UUID = Depends(require_permission(MANAGE_ROLES)),
    service: RoleService = Depends(get_role_service),
):
    return await service.create_role(payload, created_by=actor_id)


@router.get("/{role_id}/permissions", response_model=list[PermissionResponse])
async def get_role_permissions(
    role_id: uuid.UUID,
    _user_id: uuid.UUID = Depends(get_current_user_id),
    service: RoleService = Depends(get_role_service),
):
    return await service.get_bindings(role_id)


@router.patch("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: uuid.UUID,
    payload: RoleUpdate,
    _actor_id: uuid.UUID = Depends(require_permission(MANAGE_ROLES)),
    service: RoleService = Depends(get_role_service),
):
    return await service.update_role(role_id, payload)


@router.delete("/{role_id}", response_model=RoleResponse)
async def deactivate_role(
    role_id: uuid.UUID,
    _actor_id: uuid.UUID = Depends(require_permission(MANAGE_ROLES)),
    service: RoleService = Depends(get_role_service),
):
    return await service.deactivate_role(role_id)


@router.put("/{role_id}/permissions/{permission_id}", response_model=RoleBindingResponse)
async def bind_permission(
    role_id: uuid.UUID,
    permission_id: uuid.UUID,
    actor_id: uuid.UUID = Depends(require_permission(MANAGE_ROLES)),
    service: RoleService = Depends(get_role_service),
):
    changed = await service.bind_permission(role_id, permission_id, granted_by=actor_id)
    return RoleBindingResponse(role_id=role_id, permission_id=permission_id, changed=changed)


@router.delete("/{role_id}/permissions/{permission_id}", response_model=RoleBindingResponse)
async def unbind_permission(
    role_id: uuid.UUID,
    permission_id: uuid.UUID,
    actor_id: uuid.UUID = Depends(require_permission(MANAGE_ROLES)),
    service: RoleService = Depends(get_role_service),
):
    changed = await service.unbind_permission(role_id, permission_id, revoked_by=actor_id)
    return RoleBindingResponse(role_id=role_id, permission_id=permission_id, changed=changed)
