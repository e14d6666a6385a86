import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, validates

from ..auth.permission_contract import AUDIT_ACTIONS
from .base import Base
from .timestamps import utcnow


class PermissionAuditLog(Base):
    """Append-only record of grants, revocations and check outcomes.

    Rows are never updated or deleted by application code.
    """

    __tablename__ = "permission_audit_logs"
    __table_args__ = (
        CheckConstraint(
            "action IN ('granted', 'revoked', 'checked', 'denied')",
            name="valid_audit_action",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    permission_slug: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    resource_type: Mapped[str | None] = mapped_column(String(100))
    resource_id: Mapped[str | None] = mapped_column(String(255))
    team_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)
    # "metadata" is reserved on declarative classes, hence the attribute name.
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    @validates("action")
    def validate_action(self, key: str, value: str) -> str:
        """
        Raises:
            ValueError: If action is not one of granted/revoked/checked/denied
        """
        if value not in AUDIT_ACTIONS:
            raise ValueError(
                f"Invalid audit action '{value}'. "
                f"Must be one of: {', '.join(sorted(AUDIT_ACTIONS))}"
            )
        return value
