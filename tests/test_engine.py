import random

import pytest

from app.core.errors import StoreUnavailable
from app.features.permissions.engine import PermissionEngine
from app.features.permissions.resolver import OrganizationFeatureResolver
from app.features.permissions.types import OverrideState, Principal

from tests.fakes import Stores


ORG1 = "01HX000000000000000000ORG1"
ORG2 = "01HX000000000000000000ORG2"
U1 = "01HX0000000000000000USER01"
U2 = "01HX0000000000000000USER02"


def build_engine(stores: Stores) -> PermissionEngine:
    resolver = OrganizationFeatureResolver(stores.organizations, stores.catalog)
    return PermissionEngine(stores.catalog, resolver, stores.roles, stores.assignments, stores.overrides)


@pytest.fixture
def world(stores):
    """ORG1 is a producer, U1 an operator in it."""
    producer = stores.organizations.add_type("producer", ["production.*"])
    stores.organizations.assigned_types[ORG1] = [producer.id]
    operator = stores.roles.add("operator", ["production.create"])
    stores.assignments.assignments[(U1, ORG1)] = {operator.id}
    return stores


@pytest.fixture
def engine(world):
    return build_engine(world)


async def test_producer_operator_scenario(world, engine):
    u1 = Principal(U1, ORG1)

    assert await engine.allows(u1, "production.create")
    assert not await engine.allows(u1, "production.delete")

    world.overrides.overrides[(U1, ORG1)] = {"production.delete": True}
    assert await engine.allows(u1, "production.delete")

    world.organizations.flags[ORG1] = {"production.delete": False}
    assert not await engine.allows(u1, "production.delete")


async def test_platform_admin_allowed_everything(world, engine):
    admin = Principal(U2, None, is_platform_admin=True)

    assert await engine.allows(admin, "shipments.create")
    assert await engine.allows(admin, "not.in.catalog")
    assert await engine.effective_set(admin) == frozenset(await world.catalog.codes())


async def test_platform_admin_ignores_organization_gate(world, engine):
    world.organizations.flags[ORG1] = {"production.create": False}
    admin = Principal(U1, ORG1, is_platform_admin=True)
    assert await engine.allows(admin, "production.create")


async def test_no_organization_denies_everything(world, engine):
    orphan = Principal(U1, None)
    assert not await engine.allows(orphan, "production.create")
    assert await engine.effective_set(orphan) == frozenset()


async def test_gate_beats_grant_override(world, engine):
    world.overrides.overrides[(U1, ORG1)] = {"shipments.view": True}
    assert not await engine.allows(Principal(U1, ORG1), "shipments.view")


async def test_gate_beats_global_wildcard_role(world, engine):
    admin_role = world.roles.add("org_admin", ["*"])
    world.assignments.assignments[(U2, ORG1)] = {admin_role.id}

    u2 = Principal(U2, ORG1)
    assert await engine.allows(u2, "production.validate")
    assert not await engine.allows(u2, "inventory.view")
    assert await engine.effective_set(u2) == {
        "production.create", "production.view", "production.delete", "production.validate",
    }


async def test_deny_override_beats_role(world, engine):
    world.overrides.overrides[(U1, ORG1)] = {"production.create": False}
    assert not await engine.allows(Principal(U1, ORG1), "production.create")


async def test_category_wildcard_role(world, engine):
    manager = world.roles.add("production_manager", ["production.*"])
    world.assignments.assignments[(U1, ORG1)] = {manager.id}

    assert await engine.effective_set(Principal(U1, ORG1)) == {
        "production.create", "production.view", "production.delete", "production.validate",
    }


async def test_roles_are_scoped_to_organization(world, engine):
    trader = world.organizations.add_type("trader", ["*"])
    world.organizations.assigned_types[ORG2] = [trader.id]

    # U1 is an operator in ORG1 only
    assert not await engine.allows(Principal(U1, ORG2), "production.create")
    assert await engine.effective_set(Principal(U1, ORG2)) == frozenset()


async def test_unknown_role_ids_contribute_nothing(world, engine):
    world.assignments.assignments[(U2, ORG1)] = {"01HX000000000000000DELETED"}
    assert await engine.effective_set(Principal(U2, ORG1)) == frozenset()


async def test_evaluate_propagates_store_failures(world, engine):
    world.overrides.fail_reads = True
    with pytest.raises(StoreUnavailable):
        await engine.evaluate(Principal(U1, ORG1), "production.create")
    with pytest.raises(StoreUnavailable):
        await engine.compute_effective_set(Principal(U1, ORG1))


async def test_public_methods_fail_closed(world, engine):
    world.fail_reads()
    u1 = Principal(U1, ORG1)

    assert await engine.allows(u1, "production.create") is False
    assert await engine.effective_set(u1) == frozenset()


async def test_admin_decision_needs_no_store(world, engine):
    world.fail_reads()
    assert await engine.allows(Principal(U1, ORG1, is_platform_admin=True), "production.create")


async def test_explain_reports_each_input(world, engine):
    world.overrides.overrides[(U1, ORG1)] = {"production.view": False, "production.validate": True}
    rows = {row.feature.code: row for row in await engine.explain(U1, ORG1)}

    create = rows["production.create"]
    assert create.organization_enabled and create.from_roles and create.allowed
    assert create.override is OverrideState.INHERIT
    assert create.matched_patterns == ["production.create"]

    assert rows["production.view"].override is OverrideState.DENY
    assert not rows["production.view"].allowed

    assert rows["production.validate"].override is OverrideState.GRANT
    assert rows["production.validate"].allowed

    assert not rows["inventory.view"].organization_enabled
    assert not rows["inventory.view"].allowed


def _random_world(rng: random.Random, codes: list[str]) -> Stores:
    stores = Stores(codes)
    categories = sorted({code.split(".")[0] for code in codes})
    pattern_pool = ["*"] + [f"{category}.*" for category in categories] + codes

    type_ids = []
    for i in range(rng.randint(0, 3)):
        patterns = rng.sample(pattern_pool, rng.randint(0, 3))
        type_ids.append(stores.organizations.add_type(f"type_{i}", patterns).id)
    stores.organizations.assigned_types[ORG1] = rng.sample(type_ids, rng.randint(0, len(type_ids)))
    stores.organizations.flags[ORG1] = {
        code: rng.random() < 0.5 for code in rng.sample(codes, rng.randint(0, len(codes)))
    }

    role_ids = []
    for i in range(rng.randint(0, 4)):
        patterns = rng.sample(pattern_pool, rng.randint(0, 4))
        role_ids.append(stores.roles.add(f"role_{i}", patterns).id)
    stores.assignments.assignments[(U1, ORG1)] = set(rng.sample(role_ids, rng.randint(0, len(role_ids))))
    stores.overrides.overrides[(U1, ORG1)] = {
        code: rng.random() < 0.5 for code in rng.sample(codes, rng.randint(0, len(codes) // 2))
    }
    return stores


async def test_bulk_and_point_queries_agree_on_random_states():
    rng = random.Random(20240611)
    codes = [
        "production.create", "production.view", "production.delete",
        "inventory.view", "inventory.edit", "shipments.view", "reports.view",
    ]
    principal = Principal(U1, ORG1)

    for _ in range(100):
        stores = _random_world(rng, codes)
        engine = build_engine(stores)

        effective = await engine.effective_set(principal)
        pointwise = {code for code in codes if await engine.evaluate(principal, code)}
        assert effective == pointwise

        explained = {row.feature.code for row in await engine.explain(U1, ORG1) if row.allowed}
        assert explained == pointwise


async def test_codes_outside_catalog_are_denied_by_cached_path(stores):
    everything = stores.organizations.add_type("everything", ["*"])
    stores.organizations.assigned_types[ORG1] = [everything.id]
    admin_role = stores.roles.add("org_admin", ["*"])
    stores.assignments.assignments[(U1, ORG1)] = {admin_role.id}
    u1 = Principal(U1, ORG1)
    engine = build_engine(stores)
    service = stores.service()

    # the point path matches "*" against any code
    assert await engine.evaluate(u1, "not.in.catalog")

    assert "not.in.catalog" not in await service.effective_set(u1)
    assert not await service.authorize(u1, "not.in.catalog")
    assert await service.authorize(u1, "production.create")
    assert await service.authorize(Principal(U1, ORG1, is_platform_admin=True), "not.in.catalog")
