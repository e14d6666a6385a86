import uuid

from pydantic import BaseModel, Field

# Same widths as the audit log columns the fields are recorded in.
RESOURCE_TYPE_MAX_LENGTH = 100
RESOURCE_ID_MAX_LENGTH = 255


class PermissionContext(BaseModel):
    """Who is asking, and optionally about which team and resource."""

    user_id: uuid.UUID
    team_id: uuid.UUID | None = None
    resource_type: str | None = Field(None, max_length=RESOURCE_TYPE_MAX_LENGTH)
    resource_id: str | None = Field(None, max_length=RESOURCE_ID_MAX_LENGTH)


class PermissionCheck(BaseModel):
    granted: bool
    permission: str
    user_id: uuid.UUID
    team_id: uuid.UUID | None = None
    reason: str | None = None


class PermissionCheckRequest(BaseModel):
    permission: str = Field(..., min_length=1, max_length=150)
    team_id: uuid.UUID | None = None
    resource_type: str | None = Field(None, max_length=RESOURCE_TYPE_MAX_LENGTH)
    resource_id: str | None = Field(None, max_length=RESOURCE_ID_MAX_LENGTH)


class ResourceAccess(BaseModel):
    can_read: bool = False
    can_write: bool = False
    can_delete: bool = False
    can_manage: bool = False
    permissions: list[str] = Field(default_factory=list)
