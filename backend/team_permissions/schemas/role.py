import uuid
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from ..auth.permission_contract import (
    MAX_HIERARCHY_LEVEL,
    MIN_HIERARCHY_LEVEL,
    RoleType,
    validate_role_slug,
)


class RoleBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None


class RoleCreate(RoleBase):
    slug: str = Field(..., min_length=1, max_length=100)
    role_type: RoleType = RoleType.CUSTOM
    hierarchy_level: int = Field(1, ge=MIN_HIERARCHY_LEVEL, le=MAX_HIERARCHY_LEVEL)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Role name is required")
        return value.strip()

    @field_validator("slug")
    @classmethod
    def slug_format(cls, value: str) -> str:
        validate_role_slug(value)
        return value

    @field_validator("role_type")
    @classmethod
    def not_system(cls, value: RoleType) -> RoleType:
        if value == RoleType.SYSTEM:
            raise ValueError("System roles are seeded and cannot be created")
        return value


class RoleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    slug: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    is_active: bool | None = None
    hierarchy_level: int | None = Field(
        None, ge=MIN_HIERARCHY_LEVEL, le=MAX_HIERARCHY_LEVEL
    )


class RoleResponse(RoleBase):
    id: uuid.UUID
    slug: str
    role_type: str
    is_system_role: bool
    is_active: bool
    hierarchy_level: int
    created_by: uuid.UUID | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RoleBindingResponse(BaseModel):
    role_id: uuid.UUID
    permission_id: uuid.UUID
    changed: bool
