import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from ..auth.permission_contract import AuditAction
from ..dependencies import get_audit_service, require_permission
from ..schemas.audit_log import AuditLogFilter, AuditLogResponse
from ..services.audit.audit_service import PermissionAuditService

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=list[AuditLogResponse])
async def list_audit_logs(
    user_id: uuid.UUID | None = Query(None),
    team_id: uuid.UUID | None = Query(None),
    action: AuditAction | None = Query(None),
    permission_slug: str | None = Query(None),
    resource_type: str | None = Query(None),
    resource_id: str | None = Query(None),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    _actor_id: uuid.UUID = Depends(require_permission("settings.manage")),
    audit_service: PermissionAuditService = Depends(get_audit_service),
):
    """Audit entries newest first. Requires settings.manage."""
    filters = AuditLogFilter(
        user_id=user_id,
        team_id=team_id,
        action=action,
        permission_slug=permission_slug,
        resource_type=resource_type,
        resource_id=resource_id,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
    )
    return [
        AuditLogResponse.model_validate(entry)
        async for entry in audit_service.query(filters)
    ]
