import uuid
from unittest.mock import AsyncMock

import pytest

from team_permissions.auth.seed import DEFAULT_SEED_TABLE
from team_permissions.crud.permission import PermissionRepository
from team_permissions.crud.role import RoleRepository
from team_permissions.errors import (
    AuditWriteError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from team_permissions.schemas.role import RoleCreate, RoleUpdate


async def _permission(session, slug):
    permission = await PermissionRepository(session).get_by_slug(slug)
    assert permission is not None
    return permission


async def _role(session, slug):
    role = await RoleRepository(session).get_by_slug(slug)
    assert role is not None
    return role


@pytest.mark.anyio
async def test_get_role_by_slug_and_id(role_service, seeded) -> None:
    editor = await role_service.get_role("editor")

    assert (await role_service.get_role(editor.id)).slug == "editor"
    assert (await role_service.get_role(str(editor.id))).slug == "editor"


@pytest.mark.anyio
async def test_get_role_unknown_is_not_found(role_service, seeded) -> None:
    with pytest.raises(NotFoundError):
        await role_service.get_role("ghost")
    with pytest.raises(NotFoundError):
        await role_service.get_role(uuid.uuid4())


@pytest.mark.anyio
async def test_get_role_falls_back_to_slug_for_hex_slugs(role_service, seeded) -> None:
    slug = "deadbeef" * 4
    created = await role_service.create_role(RoleCreate(name="Hex", slug=slug))

    assert (await role_service.get_role(slug)).id == created.id
    assert (await role_service.get_role(str(created.id))).slug == slug


@pytest.mark.anyio
async def test_get_bindings_returns_seeded_set(role_service, seeded) -> None:
    editor = await role_service.get_role("editor")

    bindings = await role_service.get_bindings(editor.id)

    assert {p.slug for p in bindings} == {
        "projects.create",
        "projects.read",
        "projects.update",
        "content.create",
        "content.read",
        "content.update",
        "competitive.read",
        "analytics.read",
    }


@pytest.mark.anyio
async def test_list_roles_ordered_by_level(role_service, seeded) -> None:
    roles = await role_service.list_roles()
    assert [r.slug for r in roles] == ["owner", "admin", "manager", "editor", "viewer"]


@pytest.mark.anyio
async def test_bind_grants_and_audits_once(
    role_service, resolver, assign, session, count_audit
) -> None:
    user_id = await assign("editor")
    editor = await _role(session, "editor")
    delete = await _permission(session, "content.delete")
    assert "content.delete" not in await resolver.resolve(user_id)

    assert await role_service.bind_permission(editor.id, delete.id, granted_by=user_id) is True
    assert await role_service.bind_permission(editor.id, delete.id, granted_by=user_id) is False

    assert "content.delete" in await resolver.resolve(user_id)
    assert await count_audit(
        action="granted", permission_slug="content.delete", resource_id=str(editor.id)
    ) == 1
    assert len(await role_service.get_bindings(editor.id)) == 9


@pytest.mark.anyio
async def test_unbind_revokes_and_audits(
    role_service, resolver, assign, session, count_audit
) -> None:
    user_id = await assign("editor")
    editor = await _role(session, "editor")
    update = await _permission(session, "content.update")
    assert "content.update" in await resolver.resolve(user_id)

    assert await role_service.unbind_permission(editor.id, update.id) is True

    assert "content.update" not in await resolver.resolve(user_id)
    assert await count_audit(action="revoked", permission_slug="content.update") == 1


@pytest.mark.anyio
async def test_unbind_missing_binding_is_noop(role_service, session, seeded, count_audit) -> None:
    viewer = await _role(session, "viewer")
    delete = await _permission(session, "projects.delete")

    assert await role_service.unbind_permission(viewer.id, delete.id) is False
    assert await count_audit(action="revoked") == 0


@pytest.mark.anyio
async def test_bind_unknown_ids_is_validation_error(role_service, session, seeded) -> None:
    viewer = await _role(session, "viewer")
    read = await _permission(session, "projects.read")

    with pytest.raises(ValidationError):
        await role_service.bind_permission(uuid.uuid4(), read.id)
    with pytest.raises(ValidationError):
        await role_service.bind_permission(viewer.id, uuid.uuid4())
    with pytest.raises(ValidationError):
        await role_service.unbind_permission(uuid.uuid4(), read.id)


@pytest.mark.anyio
async def test_bind_rolls_back_when_audit_fails(
    role_service, session, seeded, count_audit
) -> None:
    viewer = await _role(session, "viewer")
    delete = await _permission(session, "projects.delete")
    viewer_id, delete_id = viewer.id, delete.id
    role_service.audit_service.log_granted = AsyncMock(side_effect=AuditWriteError())

    with pytest.raises(AuditWriteError):
        await role_service.bind_permission(viewer_id, delete_id)

    assert await RoleRepository(session).get_binding(viewer_id, delete_id) is None
    assert await count_audit(
        action="granted", permission_slug="projects.delete", resource_id=str(viewer_id)
    ) == 0


@pytest.mark.anyio
async def test_unbind_rolls_back_when_audit_fails(role_service, session, seeded) -> None:
    viewer = await _role(session, "viewer")
    read = await _permission(session, "projects.read")
    viewer_id, read_id = viewer.id, read.id
    role_service.audit_service.log_revoked = AsyncMock(side_effect=AuditWriteError())

    with pytest.raises(AuditWriteError):
        await role_service.unbind_permission(viewer_id, read_id)

    assert await RoleRepository(session).get_binding(viewer_id, read_id) is not None


@pytest.mark.anyio
async def test_bind_invalidates_cached_holders(role_service, resolver, assign, session, cache) -> None:
    user_id = await assign("viewer")
    await resolver.resolve(user_id)
    viewer = await _role(session, "viewer")
    create = await _permission(session, "projects.create")
    invalidate = AsyncMock(wraps=cache.invalidate_user)
    cache.invalidate_user = invalidate

    await role_service.bind_permission(viewer.id, create.id)

    invalidate.assert_awaited()
    assert "projects.create" in await resolver.resolve(user_id)


@pytest.mark.anyio
async def test_noop_bind_skips_invalidation(role_service, session, seeded, cache) -> None:
    viewer = await _role(session, "viewer")
    read = await _permission(session, "projects.read")
    cache.invalidate_user = AsyncMock()

    assert await role_service.bind_permission(viewer.id, read.id) is False
    cache.invalidate_user.assert_not_awaited()


@pytest.mark.anyio
async def test_set_role_permissions_applies_difference(
    role_service, resolver, assign, session, count_audit
) -> None:
    user_id = await assign("viewer")
    viewer = await _role(session, "viewer")
    wanted = [await _permission(session, s) for s in ("projects.read", "content.create")]
    before = await count_audit(action="revoked")

    granted, revoked = await role_service.set_role_permissions(viewer.id, [p.id for p in wanted])

    assert granted == 1
    assert revoked == len(DEFAULT_SEED_TABLE.permissions_for("viewer")) - 1
    assert await resolver.resolve(user_id) == {"projects.read", "content.create"}
    assert await count_audit(action="revoked") == before + revoked


@pytest.mark.anyio
async def test_create_custom_role(role_service, seeded) -> None:
    creator = uuid.uuid4()

    role = await role_service.create_role(
        RoleCreate(name="Reviewer", slug="reviewer", hierarchy_level=5), created_by=creator
    )

    assert role.is_system_role is False
    assert role.role_type == "custom"
    assert role.created_by == creator
    assert [r.slug for r in await role_service.list_roles()][2:4] == ["manager", "reviewer"]


@pytest.mark.anyio
@pytest.mark.parametrize("slug", ["editor", "reviewer"])
async def test_create_role_duplicate_slug_conflicts(role_service, seeded, slug) -> None:
    await role_service.create_role(RoleCreate(name="Reviewer", slug="reviewer"))

    with pytest.raises(ConflictError):
        await role_service.create_role(RoleCreate(name="Other", slug=slug))


def test_role_create_validates_input() -> None:
    with pytest.raises(ValueError):
        RoleCreate(name="   ", slug="reviewer")
    with pytest.raises(ValueError):
        RoleCreate(name="Reviewer", slug="Reviewer Role")
    with pytest.raises(ValueError):
        RoleCreate(name="Reviewer", slug="reviewer", hierarchy_level=11)
    with pytest.raises(ValueError):
        RoleCreate(name="Reviewer", slug="reviewer", role_type="system")


@pytest.mark.anyio
async def test_system_role_level_and_slug_are_fixed(role_service, seeded) -> None:
    admin = await role_service.get_role("admin")

    with pytest.raises(ValidationError):
        await role_service.update_role(admin.id, RoleUpdate(hierarchy_level=9))
    with pytest.raises(ValidationError):
        await role_service.update_role(admin.id, RoleUpdate(slug="superadmin"))

    updated = await role_service.update_role(admin.id, RoleUpdate(description="Admins"))
    assert updated.description == "Admins"
    assert updated.hierarchy_level == 8


@pytest.mark.anyio
async def test_update_role_level_invalidates_holders(
    role_service, membership_service, cache
) -> None:
    custom = await role_service.create_role(RoleCreate(name="Lead", slug="lead", hierarchy_level=5))
    user_id = uuid.uuid4()
    team_id = uuid.uuid4()
    await membership_service.assign_member_role(team_id, user_id, custom.id)
    await cache.put(user_id, team_id, {"stale.read"})

    await role_service.update_role(custom.id, RoleUpdate(hierarchy_level=7))

    assert await cache.get(user_id, team_id) is None


@pytest.mark.anyio
async def test_deactivate_role_is_soft_delete(role_service, seeded) -> None:
    custom = await role_service.create_role(RoleCreate(name="Temp", slug="temp"))

    deactivated = await role_service.deactivate_role(custom.id)

    assert deactivated.is_active is False
    assert "temp" not in [r.slug for r in await role_service.list_roles()]
    assert "temp" in [r.slug for r in await role_service.list_roles(include_inactive=True)]


@pytest.mark.anyio
async def test_update_role_persists_changes(role_service, session_factory, seeded) -> None:
    custom = await role_service.create_role(RoleCreate(name="Lead", slug="lead"))

    updated = await role_service.update_role(
        custom.id, RoleUpdate(name="  Team Lead ", slug="team-lead", description="Leads")
    )

    assert updated.name == "Team Lead"
    assert updated.updated_at >= updated.created_at
    async with session_factory() as fresh:
        stored = await RoleRepository(fresh).get_by_id(custom.id)
    assert (stored.name, stored.slug, stored.description) == ("Team Lead", "team-lead", "Leads")


@pytest.mark.anyio
async def test_update_role_rejects_taken_slug(role_service, seeded) -> None:
    first = await role_service.create_role(RoleCreate(name="First", slug="first"))
    await role_service.create_role(RoleCreate(name="Second", slug="second"))

    with pytest.raises(ConflictError):
        await role_service.update_role(first.id, RoleUpdate(slug="second"))
