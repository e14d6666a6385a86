import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.role import Role
from ..models.role_permission import RolePermission


class RoleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        slug: str,
        hierarchy_level: int,
        description: str | None = None,
        role_type: str = "custom",
        is_system_role: bool = False,
        is_active: bool = True,
        created_by: uuid.UUID | None = None,
    ) -> Role:
        role = Role(
            name=name,
            slug=slug,
            hierarchy_level=hierarchy_level,
            description=description,
            role_type=role_type,
            is_system_role=is_system_role,
            is_active=is_active,
            created_by=created_by,
        )
        self.session.add(role)
        await self.session.flush()
        await self.session.refresh(role)
        return role

    async def get_by_id(self, role_id: uuid.UUID) -> Role | None:
        return await self.session.get(Role, role_id)

    async def get_by_slug(self, slug: str) -> Role | None:
        result = await self.session.execute(
            select(Role).where(Role.slug == slug)
        )
        return result.scalar_one_or_none()

    async def list_all(self, include_inactive: bool = False) -> list[Role]:
        query = select(Role).order_by(Role.hierarchy_level.desc(), Role.slug)
        if not include_inactive:
            query = query.where(Role.is_active)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def update(self, role: Role) -> Role:
        await self.session.flush()
        await self.session.refresh(role)
        return role

    async def get_binding(
        self, role_id: uuid.UUID, permission_id: uuid.UUID
    ) -> RolePermission | None:
        result = await self.session.execute(
            select(RolePermission).where(
                RolePermission.role_id == role_id,
                RolePermission.permission_id == permission_id,
            )
        )
        return result.scalar_one_or_none()

    async def add_binding(
        self,
        role_id: uuid.UUID,
        permission_id: uuid.UUID,
        granted_by: uuid.UUID | None = None,
    ) -> RolePermission:
        role_permission = RolePermission(
            role_id=role_id, permission_id=permission_id, granted_by=granted_by
        )
        self.session.add(role_permission)
        await self.session.flush()
        return role_permission

    async def delete_binding(self, binding: RolePermission) -> None:
        await self.session.delete(binding)
        await self.session.flush()

    async def list_bound_permission_ids(self, role_id: uuid.UUID) -> set[uuid.UUID]:
        result = await self.session.execute(
            select(RolePermission.permission_id).where(RolePermission.role_id == role_id)
        )
        return set(result.scalars().all())
