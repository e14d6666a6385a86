"""
Default role-permission seed table.

The seed is data, not runtime policy: it is loaded once into the role
store at install time and the resolver only ever reads bindings back from
storage. Deployments may replace it with a JSON file of the same shape
(see ``load_seed_table``).
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from .catalog import SYSTEM_PERMISSION_SLUGS, parse_permission
from .permission_contract import (
    SYSTEM_ROLE_LEVELS,
    SystemRole,
    validate_hierarchy_level,
    validate_role_slug,
    validate_system_levels,
)


@dataclass(frozen=True)
class RoleSeed:
    slug: str
    name: str
    description: str
    hierarchy_level: int
    permissions: frozenset[str]


@dataclass(frozen=True)
class SeedTable:
    roles: tuple[RoleSeed, ...]

    def get(self, slug: str) -> RoleSeed | None:
        for role in self.roles:
            if role.slug == slug:
                return role
        return None

    def permissions_for(self, slug: str) -> frozenset[str]:
        role = self.get(slug)
        return role.permissions if role else frozenset()


_ALL: Final[frozenset[str]] = SYSTEM_PERMISSION_SLUGS

_MANAGER: Final[frozenset[str]] = frozenset(
    {
        slug
        for slug in SYSTEM_PERMISSION_SLUGS
        if slug.split(".")[0] in {"projects", "content", "competitive"}
        and len(slug.split(".")) == 2
    }
    | {"analytics.read", "analytics.export", "team.read", "team.invite"}
)

_EDITOR: Final[frozenset[str]] = frozenset(
    {
        "projects.create",
        "projects.read",
        "projects.update",
        "content.create",
        "content.read",
        "content.update",
        "competitive.read",
        "analytics.read",
    }
)

_VIEWER: Final[frozenset[str]] = frozenset(
    slug for slug in SYSTEM_PERMISSION_SLUGS if slug.endswith(".read")
)

DEFAULT_SEED_TABLE: Final[SeedTable] = SeedTable(
    roles=(
        RoleSeed(
            slug=SystemRole.OWNER.value,
            name="Owner",
            description="Full administrative access",
            hierarchy_level=SYSTEM_ROLE_LEVELS[SystemRole.OWNER.value],
            permissions=_ALL,
        ),
        RoleSeed(
            slug=SystemRole.ADMIN.value,
            name="Admin",
            description="Administrative access including billing and settings",
            hierarchy_level=SYSTEM_ROLE_LEVELS[SystemRole.ADMIN.value],
            permissions=_ALL,
        ),
        RoleSeed(
            slug=SystemRole.MANAGER.value,
            name="Manager",
            description="Manages projects, content and competitive work; no billing or settings",
            hierarchy_level=SYSTEM_ROLE_LEVELS[SystemRole.MANAGER.value],
            permissions=_MANAGER,
        ),
        RoleSeed(
            slug=SystemRole.EDITOR.value,
            name="Editor",
            description="Creates and edits projects and content",
            hierarchy_level=SYSTEM_ROLE_LEVELS[SystemRole.EDITOR.value],
            permissions=_EDITOR,
        ),
        RoleSeed(
            slug=SystemRole.VIEWER.value,
            name="Viewer",
            description="Read-only access",
            hierarchy_level=SYSTEM_ROLE_LEVELS[SystemRole.VIEWER.value],
            permissions=_VIEWER,
        ),
    )
)


def validate_seed_table(table: SeedTable) -> None:
    """
    Raises:
        ValueError: If a role or permission in the table breaks the contract
    """
    errors: list[str] = []
    slugs: set[str] = set()

    for role in table.roles:
        try:
            validate_role_slug(role.slug)
            validate_hierarchy_level(role.hierarchy_level)
        except ValueError as exc:
            errors.append(f"Role '{role.slug}': {exc}")
        if role.slug in slugs:
            errors.append(f"Duplicate role '{role.slug}'")
        slugs.add(role.slug)

        for permission in sorted(role.permissions):
            if parse_permission(permission) is None:
                errors.append(f"Role '{role.slug}' has malformed permission '{permission}'")
            elif permission not in SYSTEM_PERMISSION_SLUGS:
                errors.append(f"Role '{role.slug}' has unknown permission '{permission}'")

    levels = {role.slug: role.hierarchy_level for role in table.roles}
    try:
        validate_system_levels(levels)
    except ValueError as exc:
        errors.append(str(exc))

    if errors:
        raise ValueError(
            "Seed table validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


def _role_from_dict(data: dict[str, Any]) -> RoleSeed:
    try:
        return RoleSeed(
            slug=str(data["slug"]),
            name=str(data["name"]),
            description=str(data.get("description", "")),
            hierarchy_level=int(data["hierarchy_level"]),
            permissions=frozenset(str(p) for p in data.get("permissions", [])),
        )
    except KeyError as exc:
        raise ValueError(f"Seed role is missing field {exc}") from exc


def load_seed_table(path: str | Path) -> SeedTable:
    """Load and validate a seed table from JSON.

    Expected shape::

        {"roles": [{"slug": "owner", "name": "Owner", "hierarchy_level": 10,
                    "description": "...", "permissions": ["projects.read", ...]}]}
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict) or not isinstance(raw.get("roles"), list):
        raise ValueError("Seed file must be an object with a 'roles' array")

    table = SeedTable(roles=tuple(_role_from_dict(item) for item in raw["roles"]))
    validate_seed_table(table)
    return table


def resolve_seed_table(path: str | Path | None) -> SeedTable:
    if path:
        return load_seed_table(path)
    return DEFAULT_SEED_TABLE


validate_seed_table(DEFAULT_SEED_TABLE)
