"""Permission catalog and the ``module.action[.resource]`` slug format.

The slug format is a wire contract shared with every caller: lowercase,
dot-separated, two or three segments, no escaping.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Iterable, NamedTuple, Protocol, TypeVar

from .permission_contract import ACTIONS, MODULES

_RESOURCE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-z0-9_]+$")


class ParsedPermission(NamedTuple):
    module: str
    action: str
    resource: str | None = None


class PermissionLike(Protocol):
    module: str
    action: str
    resource: str | None


def parse_permission(slug: str) -> ParsedPermission | None:
    """Parse a permission slug.

    Returns None for anything that is not a recognized permission: wrong
    segment count, unknown module or action, or a malformed resource.
    Callers must treat None as a denial.
    """
    if not isinstance(slug, str):
        return None
    segments = slug.split(".")
    if len(segments) not in (2, 3):
        return None

    module, action = segments[0], segments[1]
    if module not in MODULES or action not in ACTIONS:
        return None

    resource = segments[2] if len(segments) == 3 else None
    if resource is not None and not _RESOURCE_PATTERN.match(resource):
        return None

    return ParsedPermission(module, action, resource)


def format_permission(permission: PermissionLike | ParsedPermission) -> str:
    if permission.resource:
        return f"{permission.module}.{permission.action}.{permission.resource}"
    return f"{permission.module}.{permission.action}"


T = TypeVar("T", bound=PermissionLike)


def group_by_module(permissions: Iterable[T]) -> dict[str, list[T]]:
    """Partition permissions by module, keeping input order within a module.

    Display helper only; never used for authorization decisions.
    """
    grouped: dict[str, list[T]] = {}
    for permission in permissions:
        grouped.setdefault(permission.module, []).append(permission)
    return grouped


@dataclass(frozen=True)
class PermissionDefinition:
    module: str
    action: str
    resource: str | None
    name: str
    description: str
    is_system_permission: bool = True

    @property
    def slug(self) -> str:
        return format_permission(self)


def _define(slug: str, name: str, description: str) -> PermissionDefinition:
    parsed = parse_permission(slug)
    if parsed is None:
        raise RuntimeError(f"Catalog contains malformed permission slug '{slug}'")
    return PermissionDefinition(
        module=parsed.module,
        action=parsed.action,
        resource=parsed.resource,
        name=name,
        description=description,
    )


SYSTEM_PERMISSIONS: Final[tuple[PermissionDefinition, ...]] = (
    # Projects
    _define("projects.create", "Create Projects", "Create new projects"),
    _define("projects.read", "View Projects", "View projects and their details"),
    _define("projects.update", "Edit Projects", "Edit existing projects"),
    _define("projects.delete", "Delete Projects", "Delete projects"),
    _define("projects.manage", "Manage Projects", "Manage project settings and membership"),
    # Content library
    _define("content.create", "Create Content", "Add items to the content library"),
    _define("content.read", "View Content", "View content library items"),
    _define("content.update", "Edit Content", "Edit content library items"),
    _define("content.delete", "Delete Content", "Delete content library items"),
    _define("content.approve", "Approve Content", "Approve content in review workflows"),
    _define("content.export", "Export Content", "Export content library items"),
    # Competitive intelligence
    _define("competitive.create", "Add Competitors", "Add competitors and analyses"),
    _define("competitive.read", "View Competitive Data", "View competitor analyses"),
    _define("competitive.update", "Edit Competitive Data", "Edit competitor analyses"),
    _define("competitive.delete", "Delete Competitive Data", "Delete competitor analyses"),
    _define("competitive.export", "Export Competitive Data", "Export competitor analyses"),
    # Analytics
    _define("analytics.read", "View Analytics", "View analytics dashboards"),
    _define("analytics.export", "Export Analytics", "Export analytics data"),
    _define("analytics.export.reports", "Export Reports", "Export scheduled and executive reports"),
    _define("analytics.manage", "Manage Analytics", "Configure analytics dashboards"),
    # Team
    _define("team.read", "View Team", "View team members and roles"),
    _define("team.update", "Edit Team", "Edit team details"),
    _define("team.invite", "Invite Members", "Invite new team members"),
    _define("team.manage", "Manage Team", "Manage team membership"),
    _define("team.manage.roles", "Manage Roles", "Create roles and change role permissions"),
    # Settings
    _define("settings.read", "View Settings", "View workspace settings"),
    _define("settings.update", "Edit Settings", "Edit workspace settings"),
    _define("settings.manage", "Manage Settings", "Manage integrations, security and audit settings"),
    # Billing
    _define("billing.read", "View Billing", "View billing and subscription details"),
    _define("billing.manage", "Manage Billing", "Change plans and payment details"),
)

SYSTEM_PERMISSION_SLUGS: Final[frozenset[str]] = frozenset(p.slug for p in SYSTEM_PERMISSIONS)


def list_permissions() -> frozenset[PermissionDefinition]:
    return frozenset(SYSTEM_PERMISSIONS)


def _validate_catalog() -> None:
    seen: set[tuple[str, str, str | None]] = set()
    for permission in SYSTEM_PERMISSIONS:
        key = (permission.module, permission.action, permission.resource)
        if key in seen:
            raise RuntimeError(f"Duplicate catalog permission '{permission.slug}'")
        seen.add(key)


_validate_catalog()
