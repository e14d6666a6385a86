"""
Permission contract - closed vocabulary and role hierarchy.

This module defines the fixed parts of the team permission model:
- The closed set of permission modules and actions
- Role types and audit actions
- System role slugs and their hierarchy levels
- Rank comparison between roles

Hierarchy level is used ONLY for comparisons between roles. It never
implies permission inheritance: a role's bindings are authoritative.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Final


# ============================================================================
# PERMISSION VOCABULARY - CLOSED SETS
# ============================================================================

class PermissionModule(str, Enum):
    PROJECTS = "projects"
    CONTENT = "content"
    COMPETITIVE = "competitive"
    ANALYTICS = "analytics"
    TEAM = "team"
    SETTINGS = "settings"
    BILLING = "billing"


class PermissionAction(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"
    APPROVE = "approve"
    EXPORT = "export"
    INVITE = "invite"


MODULES: Final[frozenset[str]] = frozenset(m.value for m in PermissionModule)
ACTIONS: Final[frozenset[str]] = frozenset(a.value for a in PermissionAction)


class RoleType(str, Enum):
    SYSTEM = "system"
    ORGANIZATIONAL = "organizational"
    PROJECT = "project"
    CUSTOM = "custom"


class AuditAction(str, Enum):
    GRANTED = "granted"
    REVOKED = "revoked"
    CHECKED = "checked"
    DENIED = "denied"


AUDIT_ACTIONS: Final[frozenset[str]] = frozenset(a.value for a in AuditAction)


# ============================================================================
# ROLE HIERARCHY
# ============================================================================

class SystemRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    EDITOR = "editor"
    VIEWER = "viewer"


# Ordered from most to least authority. Levels are fixed for system roles.
SYSTEM_ROLE_LEVELS: Final[dict[str, int]] = {
    SystemRole.OWNER.value: 10,
    SystemRole.ADMIN.value: 8,
    SystemRole.MANAGER.value: 6,
    SystemRole.EDITOR.value: 4,
    SystemRole.VIEWER.value: 2,
}

SYSTEM_ROLES: Final[frozenset[str]] = frozenset(SYSTEM_ROLE_LEVELS)

MIN_HIERARCHY_LEVEL: Final[int] = 0
MAX_HIERARCHY_LEVEL: Final[int] = 10

ROLE_SLUG_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-z0-9_-]+$")


def has_higher_hierarchy(user_level: int, required_level: int) -> bool:
    """Rank gate: ties are granted, so two roles at one level are peers."""
    return user_level >= required_level


def validate_role_slug(slug: str) -> None:
    """
    Raises:
        ValueError: If slug is blank or contains characters outside [a-z0-9_-]
    """
    if not slug or not slug.strip():
        raise ValueError("Role slug is required")
    if not ROLE_SLUG_PATTERN.match(slug):
        raise ValueError(
            "Role slug must contain only lowercase letters, numbers, hyphens, and underscores"
        )


def validate_hierarchy_level(level: int) -> None:
    """
    Raises:
        ValueError: If level is outside the supported range
    """
    if level < MIN_HIERARCHY_LEVEL or level > MAX_HIERARCHY_LEVEL:
        raise ValueError(
            f"Hierarchy level must be between {MIN_HIERARCHY_LEVEL} and {MAX_HIERARCHY_LEVEL}"
        )


def validate_system_levels(levels: dict[str, int]) -> None:
    """
    Check that system role levels are strictly decreasing in contract order.

    Raises:
        ValueError: If a system role is missing or the ordering is broken
    """
    missing = [role.value for role in SystemRole if role.value not in levels]
    if missing:
        raise ValueError(f"Missing system roles: {', '.join(missing)}")

    ordered = [levels[role.value] for role in SystemRole]
    for higher, lower in zip(ordered, ordered[1:]):
        if higher <= lower:
            raise ValueError(
                "System role hierarchy must be strictly decreasing "
                f"(owner > admin > manager > editor > viewer), got {ordered}"
            )
    for level in ordered:
        validate_hierarchy_level(level)


def _validate_contract() -> None:
    """Validate the contract at module import time."""
    try:
        validate_system_levels(SYSTEM_ROLE_LEVELS)
    except ValueError as exc:
        raise RuntimeError(f"Permission contract validation failed: {exc}") from exc


_validate_contract()
