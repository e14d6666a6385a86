import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...auth.permission_contract import AuditAction
from ...crud.audit_log import AuditLogRepository
from ...database import get_sessionmaker
from ...errors import AuditWriteError
from ...models.audit_log import PermissionAuditLog
from ...schemas.audit_log import AuditLogCreate, AuditLogFilter
from ...schemas.permission_check import PermissionContext

logger = logging.getLogger(__name__)


class PermissionAuditService:
    """Append-only audit trail for grants, revocations and check outcomes.

    Grants and revocations are flushed in the caller's session so they
    commit or roll back together with the binding change. Check outcomes
    are written in an isolated session and committed on their own, so they
    never ride on (or are lost with) the caller's business transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.session = session
        self.audit_repo = AuditLogRepository(session)
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_sessionmaker()
        return self._session_factory

    async def append(self, entry: AuditLogCreate) -> uuid.UUID:
        """Write one entry in the caller's session and return its id.

        Raises:
            AuditWriteError: If the entry could not be written
        """
        try:
            audit_log = await self.audit_repo.create(
                **self._entry_fields(entry)
            )
        except SQLAlchemyError as exc:
            logger.error("Audit write failed for %s %s", entry.action.value, entry.permission_slug)
            raise AuditWriteError(details=str(exc)) from exc
        return audit_log.id

    async def _append_isolated(self, entry: AuditLogCreate) -> uuid.UUID:
        try:
            async with self.session_factory() as audit_session:
                audit_log = await AuditLogRepository(audit_session).create(
                    **self._entry_fields(entry)
                )
                await audit_session.commit()
                return audit_log.id
        except (SQLAlchemyError, OSError) as exc:
            raise AuditWriteError(details=str(exc)) from exc

    @staticmethod
    def _entry_fields(entry: AuditLogCreate) -> dict[str, Any]:
        return {
            "user_id": entry.user_id,
            "action": entry.action.value,
            "permission_slug": entry.permission_slug,
            "resource_type": entry.resource_type,
            "resource_id": entry.resource_id,
            "team_id": entry.team_id,
            "details": entry.details,
        }

    async def log_granted(
        self,
        permission_slug: str,
        role_id: uuid.UUID,
        role_slug: str,
        granted_by: uuid.UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> uuid.UUID:
        return await self.append(
            AuditLogCreate(
                user_id=granted_by,
                action=AuditAction.GRANTED,
                permission_slug=permission_slug,
                resource_type="role",
                resource_id=str(role_id),
                details={"role_slug": role_slug, **(details or {})},
            )
        )

    async def log_revoked(
        self,
        permission_slug: str,
        role_id: uuid.UUID,
        role_slug: str,
        revoked_by: uuid.UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> uuid.UUID:
        return await self.append(
            AuditLogCreate(
                user_id=revoked_by,
                action=AuditAction.REVOKED,
                permission_slug=permission_slug,
                resource_type="role",
                resource_id=str(role_id),
                details={"role_slug": role_slug, **(details or {})},
            )
        )

    async def log_denied(
        self,
        context: PermissionContext,
        permission_slug: str,
        reason: str | None = None,
    ) -> uuid.UUID:
        """
        Raises:
            AuditWriteError: If the sink is unavailable; denials are never dropped
        """
        entry = self._check_entry(AuditAction.DENIED, context, permission_slug, reason)
        try:
            return await self._append_isolated(entry)
        except AuditWriteError:
            logger.error(
                "Could not record denial of %s for user %s", permission_slug, context.user_id
            )
            raise

    async def log_checked(
        self,
        context: PermissionContext,
        permission_slug: str,
    ) -> uuid.UUID | None:
        """Record a granted check. Dropped with a warning if the sink is down."""
        entry = self._check_entry(AuditAction.CHECKED, context, permission_slug, None)
        try:
            return await self._append_isolated(entry)
        except AuditWriteError as exc:
            logger.warning(
                "Dropped granted-check audit entry for %s (user %s): %s",
                permission_slug,
                context.user_id,
                exc.details,
            )
            return None

    @staticmethod
    def _check_entry(
        action: AuditAction,
        context: PermissionContext,
        permission_slug: str,
        reason: str | None,
    ) -> AuditLogCreate:
        return AuditLogCreate(
            user_id=context.user_id,
            action=action,
            # Malformed slugs are still recorded; truncate to the column width.
            permission_slug=permission_slug[:150] or "<empty>",
            resource_type=context.resource_type,
            resource_id=context.resource_id,
            team_id=context.team_id,
            details={"reason": reason} if reason else None,
        )

    async def query(self, filters: AuditLogFilter) -> AsyncIterator[PermissionAuditLog]:
        """Stream matching entries newest first.

        The iterator is single-pass; call again for a fresh snapshot.
        """
        fields = filters.model_dump()
        if filters.action is not None:
            fields["action"] = filters.action.value
        async for audit_log in self.audit_repo.stream_by_filters(**fields):
            yield audit_log
