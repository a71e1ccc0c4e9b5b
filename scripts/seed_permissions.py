"""
Seed script to populate the feature catalog, organization types and system roles.

Run this script after database initialization to create:
- The feature catalog
- Default organization types with their feature patterns
- System roles with their permission patterns

Existing rows are left untouched, so the script can be re-run safely.

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.organizations.models import OrganizationType
from app.features.permissions.models import Feature, Role
from app.features.permissions.patterns import category_of, validate_patterns
from app.utils import get_logger


log = get_logger(__name__)


# (code, name, description); the category is the code's first segment
DEFAULT_FEATURES = [
    # Production
    ("production.view", "View production", "View production entries"),
    ("production.create", "Create production", "Create production entries"),
    ("production.edit", "Edit production", "Edit draft production entries"),
    ("production.delete", "Delete production", "Delete production entries"),
    ("production.validate", "Validate production", "Validate and lock production entries"),

    # Inventory
    ("inventory.view", "View inventory", "View inventory packages"),
    ("inventory.edit", "Edit inventory", "Create and edit inventory packages"),
    ("inventory.delete", "Delete inventory", "Delete inventory packages"),

    # Shipments
    ("shipments.view", "View shipments", "View incoming and outgoing shipments"),
    ("shipments.create", "Create shipments", "Create and submit shipments"),
    ("shipments.receive", "Receive shipments", "Accept or reject incoming shipments"),
    ("shipments.delete", "Delete shipments", "Delete draft shipments"),

    # Reference data
    ("reference_data.view", "View reference data", "View dropdown reference options"),
    ("reference_data.manage", "Manage reference data", "Create, edit and delete reference options"),

    # Reports
    ("reports.view", "View reports", "View dashboards and metrics"),
    ("reports.export", "Export reports", "Export report data"),

    # Organization administration
    ("users.view", "View users", "View organization users"),
    ("users.manage", "Manage users", "Assign roles and permission overrides to organization users"),
]


DEFAULT_ORGANIZATION_TYPES = {
    "producer": {
        "description": "Produces and packages goods",
        "sort_order": 1,
        "patterns": ["production.*", "inventory.*", "shipments.*", "reference_data.view", "reports.*", "users.*"],
    },
    "trader": {
        "description": "Buys and resells goods",
        "sort_order": 2,
        "patterns": ["inventory.*", "shipments.*", "reference_data.view", "reports.*", "users.*"],
    },
    "logistics": {
        "description": "Moves goods between organizations",
        "sort_order": 3,
        "patterns": ["shipments.view", "shipments.receive", "users.*"],
    },
}


DEFAULT_ROLES = {
    "org_admin": {
        "description": "Organization administrator",
        "patterns": ["*"],
    },
    "operator": {
        "description": "Day-to-day production and inventory work",
        "patterns": [
            "production.view", "production.create", "production.edit",
            "inventory.view", "inventory.edit",
            "shipments.view", "shipments.create",
            "reference_data.view",
        ],
    },
    "viewer": {
        "description": "Read-only access",
        "patterns": [
            "production.view", "inventory.view", "shipments.view",
            "reference_data.view", "reports.view",
        ],
    },
}


async def seed_features(db: AsyncSession) -> set[str]:
    """
    Create catalog features.

    Returns:
        Every feature code in the catalog after seeding
    """
    log.info("Creating feature catalog...")
    result = await db.execute(select(Feature.code))
    existing = set(result.scalars().all())

    for sort_order, (code, name, description) in enumerate(DEFAULT_FEATURES):
        if code in existing:
            log.debug(f"Feature '{code}' already exists, skipping")
            continue
        db.add(Feature(
            code=code,
            name=name,
            description=description,
            category=category_of(code),
            sort_order=sort_order,
        ))
        existing.add(code)
        log.info(f"Created feature: {code}")

    await db.commit()
    return existing


async def seed_organization_types(db: AsyncSession, codes: set[str]):
    log.info("Creating organization types...")
    for type_name, type_config in DEFAULT_ORGANIZATION_TYPES.items():
        result = await db.execute(select(OrganizationType).where(OrganizationType.name == type_name))
        if result.scalars().first():
            log.debug(f"Organization type '{type_name}' already exists, skipping")
            continue

        db.add(OrganizationType(
            name=type_name,
            description=type_config["description"],
            sort_order=type_config["sort_order"],
            default_feature_patterns=validate_patterns(type_config["patterns"], codes),
        ))
        log.info(f"Created organization type '{type_name}'")

    await db.commit()


async def seed_roles(db: AsyncSession, codes: set[str]):
    log.info("Creating system roles...")
    for role_name, role_config in DEFAULT_ROLES.items():
        result = await db.execute(select(Role).where(Role.name == role_name))
        if result.scalars().first():
            log.debug(f"Role '{role_name}' already exists, skipping")
            continue

        patterns = validate_patterns(role_config["patterns"], codes)
        db.add(Role(
            name=role_name,
            description=role_config["description"],
            is_system=True,
            permission_patterns=patterns,
        ))
        log.info(f"Created role '{role_name}' with {len(patterns)} patterns")

    await db.commit()


async def main():
    """Seed the catalog, organization types and system roles."""
    log.info("Starting permission seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            codes = await seed_features(db)
            await seed_organization_types(db, codes)
            await seed_roles(db, codes)
            log.info("Permission seeding completed successfully!")
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
