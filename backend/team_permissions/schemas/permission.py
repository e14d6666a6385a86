import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class PermissionResponse(BaseModel):
    id: uuid.UUID
    slug: str
    module: str
    action: str
    resource: str | None = None
    name: str
    description: str | None = None
    is_system_permission: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PermissionCatalogResponse(BaseModel):
    modules: dict[str, list[PermissionResponse]] = Field(default_factory=dict)
