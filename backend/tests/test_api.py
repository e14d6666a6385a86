import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from team_permissions.dependencies import get_audit_service, get_resolver, get_role_service
from team_permissions.errors import InfrastructureError, PermissionDeniedError
from team_permissions.main import create_app
from team_permissions.schemas.permission_check import PermissionCheck, PermissionContext


class StubResolver:
    def __init__(self, granted: set[str], failure: Exception | None = None) -> None:
        self.granted = granted
        self.failure = failure
        self.contexts: list[PermissionContext] = []

    async def require_permission(self, context: PermissionContext, permission: str) -> PermissionCheck:
        self.contexts.append(context)
        if self.failure is not None:
            raise self.failure
        if permission not in self.granted:
            raise PermissionDeniedError(
                f"Permission denied: {permission} required",
                details={"permission": permission, "reason": f"missing permission: {permission}"},
            )
        return PermissionCheck(granted=True, permission=permission, user_id=context.user_id)

    async def check_with_deadline(self, context: PermissionContext, permission: str) -> PermissionCheck:
        self.contexts.append(context)
        granted = permission in self.granted
        return PermissionCheck(
            granted=granted,
            permission=permission,
            user_id=context.user_id,
            team_id=context.team_id,
            reason=None if granted else f"missing permission: {permission}",
        )


def _role(slug: str = "reviewer") -> dict:
    now = datetime.now(timezone.utc)
    return {
        "id": uuid.uuid4(),
        "name": slug.title(),
        "slug": slug,
        "description": None,
        "role_type": "custom",
        "is_system_role": False,
        "is_active": True,
        "hierarchy_level": 3,
        "created_by": None,
        "created_at": now,
        "updated_at": now,
    }


def make_client(resolver: StubResolver, role_service: AsyncMock | None = None) -> TestClient:
    app = create_app()
    service = role_service or AsyncMock()

    async def override_resolver() -> StubResolver:
        return resolver

    async def override_role_service() -> AsyncMock:
        return service

    async def override_audit_service() -> AsyncMock:
        return AsyncMock()

    app.dependency_overrides[get_resolver] = override_resolver
    app.dependency_overrides[get_role_service] = override_role_service
    app.dependency_overrides[get_audit_service] = override_audit_service
    return TestClient(app)


def _headers(user_id: uuid.UUID | None = None, team_id: uuid.UUID | None = None) -> dict[str, str]:
    headers = {"X-User-Id": str(user_id or uuid.uuid4())}
    if team_id is not None:
        headers["X-Team-Id"] = str(team_id)
    return headers


@pytest.mark.parametrize("header", [None, "", "not-a-uuid"])
def test_missing_or_malformed_identity_is_401(header: str | None) -> None:
    client = make_client(StubResolver(set()))
    headers = {} if header is None else {"X-User-Id": header}

    response = client.get("/roles", headers=headers)

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["code"] == "AUTH_ERROR"


def test_malformed_team_header_is_400() -> None:
    client = make_client(StubResolver({"projects.read"}))

    response = client.post(
        "/permissions/check",
        json={"permission": "projects.read"},
        headers={**_headers(), "X-Team-Id": "team-1"},
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_check_endpoint_explains_denial() -> None:
    resolver = StubResolver({"projects.read"})
    client = make_client(resolver)
    user_id, team_id = uuid.uuid4(), uuid.uuid4()

    response = client.post(
        "/permissions/check",
        json={"permission": "billing.manage", "resource_type": "invoice", "resource_id": "42"},
        headers=_headers(user_id, team_id),
    )

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["granted"] is False
    assert body["reason"] == "missing permission: billing.manage"
    assert body["team_id"] == str(team_id)
    assert resolver.contexts[0].resource_id == "42"


def test_check_endpoint_prefers_body_team() -> None:
    resolver = StubResolver({"projects.read"})
    client = make_client(resolver)
    body_team = uuid.uuid4()

    response = client.post(
        "/permissions/check",
        json={"permission": "projects.read", "team_id": str(body_team)},
        headers=_headers(team_id=uuid.uuid4()),
    )

    assert response.json()["granted"] is True
    assert resolver.contexts[0].team_id == body_team


def test_list_roles() -> None:
    service = AsyncMock()
    service.list_roles.return_value = [_role("owner"), _role("reviewer")]
    client = make_client(StubResolver(set()), service)

    response = client.get("/roles", headers=_headers())

    assert response.status_code == status.HTTP_200_OK
    assert [role["slug"] for role in response.json()] == ["owner", "reviewer"]
    service.list_roles.assert_awaited_once_with(include_inactive=False)


def test_bind_requires_manage_roles() -> None:
    service = AsyncMock()
    client = make_client(StubResolver({"team.read"}), service)

    response = client.put(f"/roles/{uuid.uuid4()}/permissions/{uuid.uuid4()}", headers=_headers())

    assert response.status_code == status.HTTP_403_FORBIDDEN
    error = response.json()["error"]
    assert error["code"] == "PERMISSION_DENIED"
    assert error["details"]["permission"] == "team.manage.roles"
    service.bind_permission.assert_not_awaited()


def test_bind_reports_change_and_actor() -> None:
    service = AsyncMock()
    service.bind_permission.return_value = False
    client = make_client(StubResolver({"team.manage.roles"}), service)
    actor, role_id, permission_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

    response = client.put(f"/roles/{role_id}/permissions/{permission_id}", headers=_headers(actor))

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {
        "role_id": str(role_id),
        "permission_id": str(permission_id),
        "changed": False,
    }
    service.bind_permission.assert_awaited_once_with(role_id, permission_id, granted_by=actor)


def test_create_role_records_creator() -> None:
    service = AsyncMock()
    service.create_role.return_value = _role("reviewer")
    client = make_client(StubResolver({"team.manage.roles"}), service)
    actor = uuid.uuid4()

    response = client.post(
        "/roles",
        json={"name": "Reviewer", "slug": "reviewer", "hierarchy_level": 3},
        headers=_headers(actor),
    )

    assert response.status_code == status.HTTP_201_CREATED
    assert service.create_role.await_args.kwargs["created_by"] == actor


def test_create_role_rejects_system_type() -> None:
    client = make_client(StubResolver({"team.manage.roles"}))

    response = client.post(
        "/roles",
        json={"name": "Root", "slug": "root", "role_type": "system"},
        headers=_headers(),
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_guard_failure_is_503_and_never_admits() -> None:
    service = AsyncMock()
    client = make_client(StubResolver({"team.manage.roles"}, failure=InfrastructureError()), service)

    response = client.delete(f"/roles/{uuid.uuid4()}", headers=_headers())

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.headers["Retry-After"] == "1"
    service.deactivate_role.assert_not_awaited()


def test_audit_log_requires_settings_manage() -> None:
    client = make_client(StubResolver({"team.manage.roles"}))

    response = client.get("/audit-logs", headers=_headers())

    assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.parametrize(
    "extra",
    [{"resource_id": "x" * 256}, {"resource_type": "c" * 101}],
)
def test_check_endpoint_rejects_oversized_resource_fields(extra: dict) -> None:
    resolver = StubResolver({"content.read"})
    client = make_client(resolver)

    response = client.post(
        "/permissions/check",
        json={"permission": "content.delete", **extra},
        headers=_headers(),
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert resolver.contexts == []
