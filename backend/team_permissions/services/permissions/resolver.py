"""Effective permission resolution for a (user, team) pair.

A user's permissions are exactly the bindings of their active role in the
team. Hierarchy level never adds permissions; it is only compared between
roles. Absence of a membership, an inactive role or an unknown slug are
ordinary denials, never exceptions.
"""

import asyncio
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.catalog import parse_permission
from ...auth.permission_contract import MODULES
from ...config import settings
from ...crud.permission import PermissionRepository
from ...crud.team_member import TeamMemberRepository
from ...errors import InfrastructureError, PermissionDeniedError
from ...models.role import Role
from ...schemas.permission_check import PermissionCheck, PermissionContext, ResourceAccess
from ..audit.audit_service import PermissionAuditService
from ..cache.permission_cache import PermissionCache

logger = logging.getLogger(__name__)

REASON_NO_ACTIVE_ROLE = "no active role"
REASON_INVALID_FORMAT = "invalid permission format"
REASON_CHECK_FAILED = "permission check failed"


def missing_permission_reason(permission: str) -> str:
    return f"missing permission: {permission}"


class PermissionResolver:
    def __init__(
        self,
        session: AsyncSession,
        cache: PermissionCache,
        audit_service: PermissionAuditService | None = None,
        *,
        audit_granted_checks: bool | None = None,
        timeout_seconds: float | None = None,
    ):
        self.session = session
        self.cache = cache
        self.audit_service = audit_service or PermissionAuditService(session)
        self.permission_repo = PermissionRepository(session)
        self.member_repo = TeamMemberRepository(session)
        self._audit_granted_checks = audit_granted_checks
        self._timeout_seconds = timeout_seconds

    @property
    def audit_granted_checks(self) -> bool:
        if self._audit_granted_checks is None:
            return settings.audit_granted_checks
        return self._audit_granted_checks

    @property
    def timeout_seconds(self) -> float:
        if self._timeout_seconds is None:
            return settings.permission_check_timeout_seconds
        return self._timeout_seconds

    async def _active_roles(
        self, user_id: uuid.UUID, team_id: uuid.UUID | None
    ) -> list[Role]:
        try:
            if team_id is not None:
                assignment = await self.member_repo.get_active_assignment(user_id, team_id)
                assignments = [assignment] if assignment else []
            else:
                assignments = await self.member_repo.list_active_assignments(user_id)
        except SQLAlchemyError as exc:
            raise InfrastructureError(details=str(exc)) from exc
        return [role for _, role in assignments if role.is_active]

    async def _load(self, user_id: uuid.UUID, team_id: uuid.UUID | None) -> frozenset[str]:
        roles = await self._active_roles(user_id, team_id)
        if not roles:
            return frozenset()
        try:
            slugs = await self.permission_repo.get_slugs_for_roles([role.id for role in roles])
        except SQLAlchemyError as exc:
            raise InfrastructureError(details=str(exc)) from exc
        return frozenset(slugs)

    async def resolve(
        self, user_id: uuid.UUID, team_id: uuid.UUID | None = None
    ) -> frozenset[str]:
        """Effective permission slugs for the user within a team.

        Without a team id the result is the union over every active
        membership whose role is active.

        Raises:
            InfrastructureError: If storage is unreachable
        """
        return await self.cache.get_or_load(
            user_id, team_id, lambda: self._load(user_id, team_id)
        )

    async def get_user_level(
        self, user_id: uuid.UUID, team_id: uuid.UUID
    ) -> int | None:
        """Hierarchy level of the user's active role in the team, if any."""
        roles = await self._active_roles(user_id, team_id)
        return roles[0].hierarchy_level if roles else None

    async def check(
        self,
        context: PermissionContext,
        permission: str,
        *,
        audit: bool | None = None,
    ) -> PermissionCheck:
        """Decide and explain one check.

        Every denial is written to the audit log. Granted checks are written
        only when ``audit`` is true, or when it is None and granted-check
        auditing is enabled in settings.

        Raises:
            InfrastructureError: If storage is unreachable
            AuditWriteError: If a denial could not be recorded
        """
        permissions = await self.resolve(context.user_id, context.team_id)

        reason: str | None = None
        if not permissions and not await self._active_roles(context.user_id, context.team_id):
            reason = REASON_NO_ACTIVE_ROLE
        elif parse_permission(permission) is None:
            reason = REASON_INVALID_FORMAT
        elif permission not in permissions:
            reason = missing_permission_reason(permission)

        result = PermissionCheck(
            granted=reason is None,
            permission=permission,
            user_id=context.user_id,
            team_id=context.team_id,
            reason=reason,
        )

        if not result.granted:
            logger.info(
                "Permission denied: user=%s team=%s permission=%s reason=%s",
                context.user_id,
                context.team_id,
                permission,
                reason,
            )
            await self.audit_service.log_denied(context, permission, reason)
        elif audit or (audit is None and self.audit_granted_checks):
            await self.audit_service.log_checked(context, permission)

        return result

    async def has_permission(
        self,
        user_id: uuid.UUID,
        permission: str,
        team_id: uuid.UUID | None = None,
    ) -> bool:
        context = PermissionContext(user_id=user_id, team_id=team_id)
        return (await self.check(context, permission)).granted

    async def has_any_permission(
        self,
        user_id: uuid.UUID,
        permissions: list[str],
        team_id: uuid.UUID | None = None,
    ) -> bool:
        for permission in permissions:
            if await self.has_permission(user_id, permission, team_id):
                return True
        return False

    async def has_all_permissions(
        self,
        user_id: uuid.UUID,
        permissions: list[str],
        team_id: uuid.UUID | None = None,
    ) -> bool:
        """True only if every listed permission is granted. An empty list is denied."""
        if not permissions:
            return False
        for permission in permissions:
            if not await self.has_permission(user_id, permission, team_id):
                return False
        return True

    async def require_permission(
        self,
        context: PermissionContext,
        permission: str,
    ) -> PermissionCheck:
        """
        Raises:
            PermissionDeniedError: If the check is denied (after it is audited)
        """
        result = await self.check(context, permission)
        if not result.granted:
            raise PermissionDeniedError(
                f"Permission denied: {permission} required",
                details={"permission": permission, "reason": result.reason},
            )
        return result

    async def can_access_resource(
        self,
        user_id: uuid.UUID,
        module: str,
        team_id: uuid.UUID | None = None,
    ) -> ResourceAccess:
        """Summarize read/update/delete/manage access to one module."""
        module = module.lower()
        if module not in MODULES:
            return ResourceAccess()

        granted = await self.resolve(user_id, team_id)
        flags = {
            action: f"{module}.{action}" in granted
            for action in ("read", "update", "delete", "manage")
        }
        return ResourceAccess(
            can_read=flags["read"],
            can_write=flags["update"],
            can_delete=flags["delete"],
            can_manage=flags["manage"],
            permissions=[f"{module}.{action}" for action, ok in flags.items() if ok],
        )

    async def check_with_deadline(
        self,
        context: PermissionContext,
        permission: str,
        timeout_seconds: float | None = None,
    ) -> PermissionCheck:
        """Fail-closed check: a timeout or infrastructure failure is a denial."""
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        try:
            return await asyncio.wait_for(self.check(context, permission), timeout)
        except asyncio.TimeoutError:
            logger.error(
                "Permission check timed out after %ss: user=%s permission=%s",
                timeout,
                context.user_id,
                permission,
            )
        except InfrastructureError:
            logger.exception(
                "Permission check failed: user=%s permission=%s",
                context.user_id,
                permission,
            )
        return PermissionCheck(
            granted=False,
            permission=permission,
            user_id=context.user_id,
            team_id=context.team_id,
            reason=REASON_CHECK_FAILED,
        )

    async def is_allowed(
        self,
        user_id: uuid.UUID,
        permission: str,
        team_id: uuid.UUID | None = None,
    ) -> bool:
        context = PermissionContext(user_id=user_id, team_id=team_id)
        return (await self.check_with_deadline(context, permission)).granted
