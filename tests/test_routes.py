import pytest
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient

from app.core.database.engine import get_db
from app.features.organizations.models import Organization, OrganizationType
from app.features.permissions.dependencies import get_permission_service, require_permission
from app.features.permissions.models import Feature, Role, user_roles
from app.features.permissions.patterns import category_of
from app.features.permissions.service import PermissionService
from app.features.permissions.types import Principal
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.main import app


ORG1 = "01HX0000000000000000000RG1"
ORG2 = "01HX0000000000000000000RG2"
ADMIN = "01HX00000000000000000ADM1N"
MANAGER = "01HX000000000000000MANAGER"
WORKER = "01HX0000000000000000W0RKER"
OPERATOR = "01HX000000000000000PERAT0R"
ORG_ADMIN = "01HX0000000000000000RGADM1"
GHOST_USER = "01HX00000000000000000GH0ST"
GHOST_ORG = "01HX0000000000000000GH0RG1"

CODES = ["production.create", "production.view", "inventory.view", "users.manage"]


@pytest.fixture
async def users(session):
    for code in CODES:
        session.add(Feature(code=code, name=code, category=category_of(code)))
    producer = OrganizationType(name="producer", default_feature_patterns=["production.*", "users.manage"])
    admin = User(id=ADMIN, appwrite_id="aw-admin", email="admin@example.com", name="Admin", is_platform_admin=True)
    manager = User(id=MANAGER, appwrite_id="aw-manager", email="m@example.com", name="Manager",
                   current_organization_id=ORG1)
    worker = User(id=WORKER, appwrite_id="aw-worker", email="w@example.com", name="Worker",
                  current_organization_id=ORG1)
    session.add_all([
        producer,
        Organization(id=ORG1, name="Org One", types=[producer]),
        Organization(id=ORG2, name="Org Two"),
        admin, manager, worker,
        Role(id=ORG_ADMIN, name="org_admin", is_system=True, permission_patterns=["*"]),
        Role(id=OPERATOR, name="operator", permission_patterns=["production.create"]),
    ])
    await session.commit()
    await session.execute(user_roles.insert(), [
        {"user_id": MANAGER, "organization_id": ORG1, "role_id": ORG_ADMIN},
        {"user_id": WORKER, "organization_id": ORG1, "role_id": OPERATOR},
    ])
    await session.commit()
    return {"admin": admin, "manager": manager, "worker": worker}


class AuthenticatedClient(AsyncClient):
    """AsyncClient that authenticates as whichever seeded user was last logged in."""

    def __init__(self, users, **kwargs):
        super().__init__(**kwargs)
        self.users = users
        self.current_user = users["worker"]

    def login(self, name):
        self.current_user = self.users[name]


@pytest.fixture
async def client(session, cache, users):
    async with AuthenticatedClient(users, transport=ASGITransport(app=app), base_url="http://test") as ac:
        async def override_get_db():
            yield session

        async def override_get_current_user():
            return ac.current_user

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = override_get_current_user
        app.dependency_overrides[get_permission_service] = lambda: PermissionService.for_session(session, cache)
        yield ac

    app.dependency_overrides.clear()


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_my_permissions(client):
    response = await client.get("/permissions/me")
    assert response.status_code == 200
    body = response.json()
    assert body["permissions"] == ["production.create"]
    assert body["organization_id"] == ORG1
    assert body["is_platform_admin"] is False


async def test_admin_sees_whole_catalog(client):
    client.login("admin")
    response = await client.get("/permissions/me")
    assert response.json()["permissions"] == sorted(CODES)


async def test_check(client):
    response = await client.post("/permissions/check", json={"feature_code": "production.create"})
    assert response.json() == {"feature_code": "production.create", "allowed": True}

    response = await client.post("/permissions/check", json={"feature_code": "inventory.view"})
    assert response.json()["allowed"] is False


async def test_check_rejects_empty_body(client):
    response = await client.post("/permissions/check", json={})
    assert response.status_code == 400
    assert "feature_code" in response.json()


async def test_features_by_category(client):
    response = await client.get("/permissions/features/by-category")
    assert response.status_code == 200
    assert sorted(response.json()) == ["inventory", "production", "users"]


async def test_roles_require_platform_admin(client):
    response = await client.get("/permissions/roles")
    assert response.status_code == 403

    client.login("admin")
    response = await client.get("/permissions/roles")
    assert response.status_code == 200
    roles = {role["name"]: role for role in response.json()}
    assert roles["operator"]["user_count"] == 1
    assert roles["org_admin"]["is_system"] is True


async def test_create_update_delete_role(client):
    client.login("admin")
    response = await client.post(
        "/permissions/roles",
        json={"name": "auditor", "permission_patterns": ["production.view"]},
    )
    assert response.status_code == 201
    role_id = response.json()["id"]

    response = await client.patch(f"/permissions/roles/{role_id}", json={"permission_patterns": ["production.*"]})
    assert response.status_code == 200
    assert response.json()["permission_patterns"] == ["production.*"]

    response = await client.delete(f"/permissions/roles/{role_id}")
    assert response.status_code == 204

    response = await client.get(f"/permissions/roles/{role_id}")
    assert response.status_code == 404


async def test_role_validation_errors_are_400(client):
    client.login("admin")
    response = await client.post("/permissions/roles", json={"name": "broken", "permission_patterns": ["missing.code"]})
    assert response.status_code == 400
    assert "missing.code" in response.json()["error"]

    response = await client.delete(f"/permissions/roles/{ORG_ADMIN}")
    assert response.status_code == 400


async def test_manager_assigns_roles_in_own_organization(client):
    client.login("manager")
    response = await client.put(
        f"/permissions/organizations/{ORG1}/users/{WORKER}/roles",
        json={"role_ids": [ORG_ADMIN]},
    )
    assert response.status_code == 204

    response = await client.get(f"/permissions/organizations/{ORG1}/users/{WORKER}/roles")
    assigned = {role["role_name"] for role in response.json() if role["assigned"]}
    assert assigned == {"org_admin"}

    client.login("worker")
    response = await client.get("/permissions/me")
    assert response.json()["permissions"] == ["production.create", "production.view", "users.manage"]


async def test_manager_cannot_manage_other_organization(client):
    client.login("manager")
    response = await client.get(f"/permissions/organizations/{ORG2}/users/{WORKER}/roles")
    assert response.status_code == 403


async def test_worker_without_users_manage_is_denied(client):
    response = await client.put(
        f"/permissions/organizations/{ORG1}/users/{WORKER}/roles",
        json={"role_ids": [ORG_ADMIN]},
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Permission denied: users.manage"


async def test_manager_cannot_change_own_roles_or_overrides(client):
    client.login("manager")
    response = await client.put(
        f"/permissions/organizations/{ORG1}/users/{MANAGER}/roles",
        json={"role_ids": [OPERATOR]},
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "You cannot change your own roles or overrides"

    response = await client.put(
        f"/permissions/organizations/{ORG1}/users/{MANAGER}/overrides",
        json={"overrides": [{"feature_code": "inventory.view", "state": "grant"}]},
    )
    assert response.status_code == 403

    response = await client.get(f"/permissions/organizations/{ORG1}/users/{MANAGER}/roles")
    assigned = {role["role_name"] for role in response.json() if role["assigned"]}
    assert assigned == {"org_admin"}


async def test_platform_admin_can_change_own_roles(client):
    client.login("admin")
    response = await client.put(
        f"/permissions/organizations/{ORG1}/users/{ADMIN}/roles",
        json={"role_ids": [OPERATOR]},
    )
    assert response.status_code == 204


async def test_unknown_user_or_organization_is_404(client):
    client.login("admin")
    for organization_id, user_id in [(ORG1, GHOST_USER), (GHOST_ORG, WORKER)]:
        response = await client.put(
            f"/permissions/organizations/{organization_id}/users/{user_id}/roles",
            json={"role_ids": [OPERATOR]},
        )
        assert response.status_code == 404

        response = await client.put(
            f"/permissions/organizations/{organization_id}/users/{user_id}/overrides",
            json={"overrides": [{"feature_code": "production.view", "state": "grant"}]},
        )
        assert response.status_code == 404


async def test_overrides_round_trip(client):
    client.login("manager")
    response = await client.put(
        f"/permissions/organizations/{ORG1}/users/{WORKER}/overrides",
        json={"overrides": [
            {"feature_code": "production.create", "state": "deny"},
            {"feature_code": "production.view", "state": "grant"},
        ]},
    )
    assert response.status_code == 204

    response = await client.get(f"/permissions/organizations/{ORG1}/users/{WORKER}/overrides")
    rows = {row["feature_code"]: row for row in response.json()}
    assert rows["production.create"]["override"] == "deny"
    assert rows["production.create"]["from_roles"] is True
    assert rows["production.create"]["allowed"] is False
    assert rows["production.view"]["allowed"] is True
    assert rows["inventory.view"]["organization_enabled"] is False


async def test_invalid_override_state_is_400(client):
    client.login("manager")
    response = await client.put(
        f"/permissions/organizations/{ORG1}/users/{WORKER}/overrides",
        json={"overrides": [{"feature_code": "production.create", "state": "maybe"}]},
    )
    assert response.status_code == 400


async def test_malformed_ids_are_rejected(client):
    client.login("admin")
    response = await client.get(f"/permissions/organizations/not-a-ulid/users/{WORKER}/roles")
    assert response.status_code == 400


async def test_organization_features(client):
    response = await client.get(f"/organizations/{ORG1}/features")
    assert response.status_code == 403

    client.login("admin")
    response = await client.put(f"/organizations/{ORG1}/features", json={"flags": {"production.create": False}})
    assert response.status_code == 204

    response = await client.get(f"/organizations/{ORG1}/features")
    rows = {row["feature_code"]: row for row in response.json()}
    assert rows["production.create"] == {
        "feature_code": "production.create",
        "feature_name": "production.create",
        "feature_description": None,
        "category": "production",
        "explicit": False,
        "enabled": False,
    }
    assert rows["production.view"]["explicit"] is None
    assert rows["production.view"]["enabled"] is True

    client.login("worker")
    response = await client.post("/permissions/check", json={"feature_code": "production.create"})
    assert response.json()["allowed"] is False


async def test_organization_types(client):
    client.login("admin")
    types = (await client.get("/organizations/types")).json()
    assert [t["name"] for t in types] == ["producer"]

    response = await client.put(f"/organizations/{ORG2}/types", json={"type_ids": [types[0]["id"]]})
    assert response.status_code == 204
    response = await client.get(f"/organizations/{ORG2}/types")
    assert [t["name"] for t in response.json()] == ["producer"]

    response = await client.put(f"/organizations/{ORG2}/types", json={"type_ids": ["01HX00000000000000000NOPE0"]})
    assert response.status_code == 400


async def test_unknown_organization_is_404(client):
    client.login("admin")
    response = await client.get("/organizations/01HX00000000000000000NOPE0/features")
    assert response.status_code == 404


async def test_store_outage_is_503_not_403(client, stores):
    stores.fail_reads()
    app.dependency_overrides[get_permission_service] = lambda: stores.service()

    response = await client.post("/permissions/check", json={"feature_code": "production.create"})
    assert response.status_code == 503
    assert response.headers["retry-after"] == "1"


async def test_require_permission_dependency(session, cache, users):
    service = PermissionService.for_session(session, cache)
    worker = Principal(WORKER, ORG1)

    assert await require_permission("production.create")(worker, service) == worker
    with pytest.raises(HTTPException) as denied:
        await require_permission("inventory.view")(worker, service)
    assert denied.value.status_code == 403
    assert denied.value.detail == "Permission denied: inventory.view"
