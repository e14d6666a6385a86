import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ..auth.permission_contract import AuditAction
from .permission_check import RESOURCE_ID_MAX_LENGTH, RESOURCE_TYPE_MAX_LENGTH


class AuditLogCreate(BaseModel):
    user_id: uuid.UUID | None = None
    action: AuditAction
    permission_slug: str = Field(..., min_length=1, max_length=150)
    resource_type: str | None = Field(None, max_length=RESOURCE_TYPE_MAX_LENGTH)
    resource_id: str | None = Field(None, max_length=RESOURCE_ID_MAX_LENGTH)
    team_id: uuid.UUID | None = None
    details: dict[str, Any] | None = None


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID | None = None
    action: str
    permission_slug: str
    resource_type: str | None = None
    resource_id: str | None = None
    team_id: uuid.UUID | None = None
    details: dict[str, Any] | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogFilter(BaseModel):
    user_id: uuid.UUID | None = None
    team_id: uuid.UUID | None = None
    action: AuditAction | None = None
    permission_slug: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    limit: int = Field(100, ge=1, le=1000)
