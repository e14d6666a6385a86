from .base import Base
from .permission import Permission
from .role import Role
from .role_permission import RolePermission
from .team_member import TeamMember
from .audit_log import PermissionAuditLog

__all__ = [
    "Base",
    "Permission",
    "Role",
    "RolePermission",
    "TeamMember",
    "PermissionAuditLog",
]
