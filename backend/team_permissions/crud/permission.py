import uuid
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.permission import Permission
from ..models.role_permission import RolePermission


class PermissionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        slug: str,
        module: str,
        action: str,
        name: str,
        resource: str | None = None,
        description: str | None = None,
        is_system_permission: bool = False,
    ) -> Permission:
        permission = Permission(
            slug=slug,
            module=module,
            action=action,
            resource=resource,
            name=name,
            description=description,
            is_system_permission=is_system_permission,
        )
        self.session.add(permission)
        await self.session.flush()
        return permission

    async def get_by_id(self, permission_id: uuid.UUID) -> Permission | None:
        return await self.session.get(Permission, permission_id)

    async def get_by_slug(self, slug: str) -> Permission | None:
        result = await self.session.execute(
            select(Permission).where(Permission.slug == slug)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[Permission]:
        result = await self.session.execute(
            select(Permission).order_by(
                Permission.module, Permission.action, Permission.resource
            )
        )
        return list(result.scalars().all())

    async def get_role_permissions(self, role_id: uuid.UUID) -> list[Permission]:
        result = await self.session.execute(
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.module, Permission.action, Permission.resource)
        )
        return list(result.scalars().all())

    async def get_slugs_for_roles(self, role_ids: Sequence[uuid.UUID]) -> set[str]:
        if not role_ids:
            return set()
        result = await self.session.execute(
            select(Permission.slug)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id.in_(list(role_ids)))
            .distinct()
        )
        return set(result.scalars().all())
