"""Install-time seeding of the catalog and the default role bindings."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.catalog import SYSTEM_PERMISSIONS
from ...auth.permission_contract import RoleType
from ...auth.seed import SeedTable
from ...crud.permission import PermissionRepository
from ...crud.role import RoleRepository
from ..cache.permission_cache import PermissionCache
from .role_service import RoleService

logger = logging.getLogger(__name__)


@dataclass
class SeedResult:
    permissions_created: int = 0
    roles_created: int = 0
    bindings_created: int = 0


async def seed_defaults(
    session: AsyncSession,
    seed_table: SeedTable,
    cache: PermissionCache,
) -> SeedResult:
    """Create missing catalog permissions and system roles, then bind seeds.

    Bindings go through the audited bind path with no actor. Re-running is
    a no-op. Existing bindings that the seed does not list are left alone.
    """
    result = SeedResult()
    permission_repo = PermissionRepository(session)
    role_repo = RoleRepository(session)
    role_service = RoleService(session, cache)

    permissions = {}
    for definition in SYSTEM_PERMISSIONS:
        permission = await permission_repo.get_by_slug(definition.slug)
        if permission is None:
            permission = await permission_repo.create(
                slug=definition.slug,
                module=definition.module,
                action=definition.action,
                resource=definition.resource,
                name=definition.name,
                description=definition.description,
                is_system_permission=True,
            )
            result.permissions_created += 1
        permissions[definition.slug] = permission

    for role_seed in seed_table.roles:
        role = await role_repo.get_by_slug(role_seed.slug)
        if role is None:
            role = await role_repo.create(
                name=role_seed.name,
                slug=role_seed.slug,
                description=role_seed.description,
                role_type=RoleType.SYSTEM.value,
                hierarchy_level=role_seed.hierarchy_level,
                is_system_role=True,
            )
            result.roles_created += 1

        for slug in sorted(role_seed.permissions):
            if await role_service.apply_bind(
                role, permissions[slug], granted_by=None, details={"source": "seed"}
            ):
                result.bindings_created += 1

    await session.commit()
    if result.bindings_created:
        await cache.invalidate_all()

    logger.info(
        "Seeded %d permission(s), %d role(s), %d binding(s)",
        result.permissions_created,
        result.roles_created,
        result.bindings_created,
    )
    return result
