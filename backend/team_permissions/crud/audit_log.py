import uuid
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

from sqlalchemy import Select, and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.audit_log import PermissionAuditLog


class AuditLogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        action: str,
        permission_slug: str,
        user_id: uuid.UUID | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        team_id: uuid.UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> PermissionAuditLog:
        audit_log = PermissionAuditLog(
            user_id=user_id,
            action=action,
            permission_slug=permission_slug,
            resource_type=resource_type,
            resource_id=resource_id,
            team_id=team_id,
            details=details,
        )
        self.session.add(audit_log)
        await self.session.flush()
        return audit_log

    async def get_by_id(self, audit_log_id: uuid.UUID) -> PermissionAuditLog | None:
        return await self.session.get(PermissionAuditLog, audit_log_id)

    def _filtered_query(
        self,
        user_id: uuid.UUID | None = None,
        team_id: uuid.UUID | None = None,
        action: str | None = None,
        permission_slug: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int = 100,
    ) -> Select[tuple[PermissionAuditLog]]:
        query = select(PermissionAuditLog)

        conditions = []
        if user_id is not None:
            conditions.append(PermissionAuditLog.user_id == user_id)
        if team_id is not None:
            conditions.append(PermissionAuditLog.team_id == team_id)
        if action is not None:
            conditions.append(PermissionAuditLog.action == action)
        if permission_slug is not None:
            conditions.append(PermissionAuditLog.permission_slug == permission_slug)
        if resource_type is not None:
            conditions.append(PermissionAuditLog.resource_type == resource_type)
        if resource_id is not None:
            conditions.append(PermissionAuditLog.resource_id == resource_id)
        if from_date is not None:
            conditions.append(PermissionAuditLog.created_at >= from_date)
        if to_date is not None:
            conditions.append(PermissionAuditLog.created_at <= to_date)

        if conditions:
            query = query.where(and_(*conditions))

        return query.order_by(PermissionAuditLog.created_at.desc()).limit(limit)

    async def list_by_filters(self, **filters: Any) -> list[PermissionAuditLog]:
        result = await self.session.execute(self._filtered_query(**filters))
        return list(result.scalars().all())

    async def stream_by_filters(self, **filters: Any) -> AsyncIterator[PermissionAuditLog]:
        """Yield matching entries newest first from a server-side cursor."""
        result = await self.session.stream_scalars(self._filtered_query(**filters))
        async for audit_log in result:
            yield audit_log
