import logging
import uuid
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.catalog import format_permission
from ...auth.permission_contract import SYSTEM_ROLES, validate_role_slug
from ...crud.permission import PermissionRepository
from ...crud.role import RoleRepository
from ...crud.team_member import TeamMemberRepository
from ...errors import (
    AuditWriteError,
    ConflictError,
    InfrastructureError,
    NotFoundError,
    ValidationError,
)
from ...models.permission import Permission
from ...models.role import Role
from ...schemas.role import RoleCreate, RoleUpdate
from ..audit.audit_service import PermissionAuditService
from ..cache.permission_cache import PermissionCache

logger = logging.getLogger(__name__)


class RoleService:
    """Role store and role-permission bindings.

    Every binding change is flushed together with its audit entry and
    committed as one unit. Cache entries of the role's holders are dropped
    after the commit, before the call returns.
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: PermissionCache,
        audit_service: PermissionAuditService | None = None,
    ):
        self.session = session
        self.cache = cache
        self.audit_service = audit_service or PermissionAuditService(session)
        self.role_repo = RoleRepository(session)
        self.permission_repo = PermissionRepository(session)
        self.member_repo = TeamMemberRepository(session)

    async def get_role(self, slug_or_id: str | uuid.UUID) -> Role:
        """
        Raises:
            NotFoundError: If no role has this id or slug
        """
        if isinstance(slug_or_id, uuid.UUID):
            role_id: uuid.UUID | None = slug_or_id
        else:
            try:
                role_id = uuid.UUID(slug_or_id)
            except ValueError:
                role_id = None

        role = await self.role_repo.get_by_id(role_id) if role_id else None
        # Hex-only slugs also parse as UUIDs, so fall back to the slug.
        if role is None and isinstance(slug_or_id, str):
            role = await self.role_repo.get_by_slug(slug_or_id)
        if role is None:
            raise NotFoundError(f"Role '{slug_or_id}' not found")
        return role

    async def list_roles(self, include_inactive: bool = False) -> list[Role]:
        return await self.role_repo.list_all(include_inactive=include_inactive)

    async def get_bindings(self, role_id: uuid.UUID) -> list[Permission]:
        role = await self.get_role(role_id)
        return await self.permission_repo.get_role_permissions(role.id)

    async def _require_role(self, role_id: uuid.UUID) -> Role:
        role = await self.role_repo.get_by_id(role_id)
        if role is None:
            raise ValidationError(
                f"Unknown role id '{role_id}'", details={"role_id": str(role_id)}
            )
        return role

    async def _require_permission(self, permission_id: uuid.UUID) -> Permission:
        permission = await self.permission_repo.get_by_id(permission_id)
        if permission is None:
            raise ValidationError(
                f"Unknown permission id '{permission_id}'",
                details={"permission_id": str(permission_id)},
            )
        return permission

    async def apply_bind(
        self,
        role: Role,
        permission: Permission,
        granted_by: uuid.UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Stage a binding and its ``granted`` entry without committing.

        Returns False when the binding already exists; nothing is written.
        """
        if await self.role_repo.get_binding(role.id, permission.id) is not None:
            return False
        await self.role_repo.add_binding(role.id, permission.id, granted_by)
        await self.audit_service.log_granted(
            format_permission(permission),
            role_id=role.id,
            role_slug=role.slug,
            granted_by=granted_by,
            details={"permission_id": str(permission.id), **(details or {})},
        )
        return True

    async def apply_unbind(
        self,
        role: Role,
        permission: Permission,
        revoked_by: uuid.UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Stage a binding removal and its ``revoked`` entry without committing."""
        binding = await self.role_repo.get_binding(role.id, permission.id)
        if binding is None:
            return False
        await self.role_repo.delete_binding(binding)
        await self.audit_service.log_revoked(
            format_permission(permission),
            role_id=role.id,
            role_slug=role.slug,
            revoked_by=revoked_by,
            details={"permission_id": str(permission.id), **(details or {})},
        )
        return True

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise InfrastructureError(details=str(exc)) from exc

    async def invalidate_holders(self, role_id: uuid.UUID) -> None:
        """
        Raises:
            CacheInvalidationError: If any holder's entry could not be dropped
        """
        holders = await self.member_repo.list_holders(role_id)
        for user_id, team_id in holders:
            await self.cache.invalidate_user(user_id, [team_id])
        logger.info("Invalidated cached permissions of %d holder(s) of role %s", len(holders), role_id)

    async def bind_permission(
        self,
        role_id: uuid.UUID,
        permission_id: uuid.UUID,
        granted_by: uuid.UUID | None = None,
    ) -> bool:
        """Grant a permission to a role. Idempotent.

        Returns True if a new binding was written, False for a no-op.

        Raises:
            ValidationError: If the role or permission does not exist
            AuditWriteError: If the audit entry failed; the binding is rolled back
            CacheInvalidationError: If holders' cache entries could not be dropped
        """
        role = await self._require_role(role_id)
        permission = await self._require_permission(permission_id)
        # Read before any rollback expires the instances.
        role_slug, permission_slug = role.slug, permission.slug

        try:
            changed = await self.apply_bind(role, permission, granted_by)
            if not changed:
                return False
            await self._commit()
        except IntegrityError:
            # A concurrent bind of the same pair won; the state is as requested.
            await self.session.rollback()
            logger.info("Binding %s -> %s already present", role_slug, permission_slug)
            return False
        except AuditWriteError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise InfrastructureError(details=str(exc)) from exc

        logger.info("Granted %s to role %s (by %s)", permission_slug, role_slug, granted_by)
        await self.invalidate_holders(role.id)
        return True

    async def unbind_permission(
        self,
        role_id: uuid.UUID,
        permission_id: uuid.UUID,
        revoked_by: uuid.UUID | None = None,
    ) -> bool:
        """Revoke a permission from a role. Unbinding a missing binding is a no-op.

        Raises:
            ValidationError: If the role or permission does not exist
            AuditWriteError: If the audit entry failed; the removal is rolled back
            CacheInvalidationError: If holders' cache entries could not be dropped
        """
        role = await self._require_role(role_id)
        permission = await self._require_permission(permission_id)

        try:
            changed = await self.apply_unbind(role, permission, revoked_by)
            if not changed:
                return False
            await self._commit()
        except AuditWriteError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise InfrastructureError(details=str(exc)) from exc

        logger.info("Revoked %s from role %s (by %s)", permission.slug, role.slug, revoked_by)
        await self.invalidate_holders(role.id)
        return True

    async def set_role_permissions(
        self,
        role_id: uuid.UUID,
        permission_ids: list[uuid.UUID],
        granted_by: uuid.UUID | None = None,
    ) -> tuple[int, int]:
        """Replace a role's bindings. Returns (granted, revoked) counts.

        Raises:
            ValidationError: If the role or any permission does not exist
            ConflictError: If the bindings changed concurrently
            AuditWriteError: If any audit entry failed; nothing is applied
        """
        role = await self._require_role(role_id)
        wanted = {pid: await self._require_permission(pid) for pid in dict.fromkeys(permission_ids)}
        current_ids = await self.role_repo.list_bound_permission_ids(role.id)

        granted = revoked = 0
        try:
            for permission_id in current_ids - wanted.keys():
                permission = await self._require_permission(permission_id)
                if await self.apply_unbind(role, permission, granted_by):
                    revoked += 1
            for permission_id, permission in wanted.items():
                if await self.apply_bind(role, permission, granted_by):
                    granted += 1
            await self._commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError("Role bindings changed concurrently, retry") from exc
        except AuditWriteError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise InfrastructureError(details=str(exc)) from exc

        logger.info(
            "Replaced bindings of role %s: %d granted, %d revoked", role.slug, granted, revoked
        )
        if granted or revoked:
            await self.invalidate_holders(role.id)
        return granted, revoked

    async def create_role(
        self, data: RoleCreate, created_by: uuid.UUID | None = None
    ) -> Role:
        """
        Raises:
            ConflictError: If the slug is taken or reserved for a system role
        """
        if data.slug in SYSTEM_ROLES or await self.role_repo.get_by_slug(data.slug):
            raise ConflictError(f"Role slug '{data.slug}' already exists")

        try:
            role = await self.role_repo.create(
                name=data.name,
                slug=data.slug,
                description=data.description,
                role_type=data.role_type.value,
                hierarchy_level=data.hierarchy_level,
                is_system_role=False,
                created_by=created_by,
            )
            await self._commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError(f"Role slug '{data.slug}' already exists") from exc

        logger.info("Created role %s (level %d)", role.slug, role.hierarchy_level)
        return role

    async def update_role(self, role_id: uuid.UUID, changes: RoleUpdate) -> Role:
        """
        Raises:
            NotFoundError: If the role does not exist
            ValidationError: If a system role's slug or level would change
            ConflictError: If the new slug is taken
        """
        role = await self.get_role(role_id)
        fields = changes.model_dump(exclude_unset=True)

        if role.is_system_role:
            if "slug" in fields and fields["slug"] != role.slug:
                raise ValidationError("System role slugs cannot be changed")
            if "hierarchy_level" in fields and fields["hierarchy_level"] != role.hierarchy_level:
                raise ValidationError("System role hierarchy levels are fixed")

        if "name" in fields:
            if fields["name"] is None or not fields["name"].strip():
                raise ValidationError("Role name is required")
            fields["name"] = fields["name"].strip()

        if "slug" in fields and fields["slug"] != role.slug:
            try:
                validate_role_slug(fields["slug"] or "")
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            if fields["slug"] in SYSTEM_ROLES or await self.role_repo.get_by_slug(fields["slug"]):
                raise ConflictError(f"Role slug '{fields['slug']}' already exists")

        for nullable_field in ("is_active", "hierarchy_level"):
            if nullable_field in fields and fields[nullable_field] is None:
                raise ValidationError(f"{nullable_field} cannot be null")

        affects_resolution = any(
            key in fields and fields[key] != getattr(role, key)
            for key in ("is_active", "hierarchy_level")
        )

        for key, value in fields.items():
            setattr(role, key, value)

        try:
            await self.role_repo.update(role)
            await self._commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError("Role update conflicts with an existing role") from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise InfrastructureError(details=str(exc)) from exc

        logger.info("Updated role %s: %s", role.slug, sorted(fields))
        if affects_resolution:
            await self.invalidate_holders(role.id)
        return role

    async def deactivate_role(self, role_id: uuid.UUID) -> Role:
        """Soft delete. Holders resolve to no permissions from here on."""
        return await self.update_role(role_id, RoleUpdate(is_active=False))
