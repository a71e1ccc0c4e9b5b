"""
Typed store interfaces for the permission engine and their SQLAlchemy
implementations.

The engine depends only on the Protocol classes; any backing store (SQL
table, in-memory map in tests) can be plugged in. SQL reads surface
infrastructure failures as StoreUnavailable; replace operations delete and
insert inside one transaction via `atomic`.
"""
import functools
from typing import Iterable, Optional, Protocol

from sqlalchemy import select, delete, insert, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import atomic
from app.core.errors import StoreUnavailable
from app.features.organizations.models import (
    Organization,
    OrganizationFeature,
    OrganizationType,
    organization_type_assignments,
)
from app.features.permissions.models import (
    Feature,
    Role,
    UserPermissionOverride,
    user_roles,
)
from app.features.permissions.types import (
    FeatureDefinition,
    OrganizationTypeDefinition,
    RoleDefinition,
)
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Store Interfaces
# ============================================================================

class FeatureCatalog(Protocol):
    async def list_all(self) -> list[FeatureDefinition]: ...

    async def codes(self) -> list[str]: ...

    async def exists(self, code: str) -> bool: ...


class OrganizationFeatureStore(Protocol):
    async def flag_for(self, organization_id: str, code: str) -> Optional[bool]: ...

    async def flags_for(self, organization_id: str) -> dict[str, bool]: ...

    async def types_for(self, organization_id: str) -> list[OrganizationTypeDefinition]: ...

    async def list_types(self) -> list[OrganizationTypeDefinition]: ...

    async def replace_flags(self, organization_id: str, flags: dict[str, bool]) -> None: ...

    async def replace_types(self, organization_id: str, type_ids: Iterable[str]) -> None: ...


class RoleRegistry(Protocol):
    async def get(self, role_id: str) -> Optional[RoleDefinition]: ...

    async def get_many(self, role_ids: Iterable[str]) -> list[RoleDefinition]: ...

    async def list_all(self) -> list[RoleDefinition]: ...


class RoleAssignmentStore(Protocol):
    async def roles_for(self, user_id: str, organization_id: str) -> set[str]: ...

    async def replace(self, user_id: str, organization_id: str, role_ids: Iterable[str]) -> None: ...

    async def holders_of(self, role_id: str) -> set[tuple[str, str]]: ...


class OverrideStore(Protocol):
    async def override_for(self, user_id: str, organization_id: str, code: str) -> Optional[bool]: ...

    async def overrides_for(self, user_id: str, organization_id: str) -> dict[str, bool]: ...

    async def replace(self, user_id: str, organization_id: str, overrides: dict[str, bool]) -> None: ...


class PrincipalDirectory(Protocol):
    async def user_exists(self, user_id: str) -> bool: ...

    async def organization_exists(self, organization_id: str) -> bool: ...


# ============================================================================
# Helpers
# ============================================================================

def store_read(what: str):
    """Translate SQLAlchemy failures on a read into StoreUnavailable."""
    def decorator(func_):
        @functools.wraps(func_)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func_(self, *args, **kwargs)
            except SQLAlchemyError as exc:
                log.warning("Store read failed while %s: %s", what, exc)
                raise StoreUnavailable(f"Failed while {what}") from exc
        return wrapper
    return decorator


def _feature(row: Feature) -> FeatureDefinition:
    return FeatureDefinition(
        code=row.code,
        name=row.name,
        description=row.description,
        category=row.category,
        sort_order=row.sort_order,
    )


def _role(row: Role) -> RoleDefinition:
    return RoleDefinition(
        id=row.id,
        name=row.name,
        description=row.description,
        is_system=row.is_system,
        permission_patterns=tuple(row.permission_patterns or ()),
    )


def _organization_type(row: OrganizationType) -> OrganizationTypeDefinition:
    return OrganizationTypeDefinition(
        id=row.id,
        name=row.name,
        description=row.description,
        sort_order=row.sort_order,
        default_feature_patterns=tuple(row.default_feature_patterns or ()),
    )


# ============================================================================
# SQLAlchemy Implementations
# ============================================================================

class SqlFeatureCatalog:
    def __init__(self, session: AsyncSession):
        self.session = session

    @store_read("listing features")
    async def list_all(self) -> list[FeatureDefinition]:
        result = await self.session.execute(
            select(Feature).order_by(Feature.category, Feature.sort_order, Feature.code)
        )
        return [_feature(row) for row in result.scalars().all()]

    @store_read("listing feature codes")
    async def codes(self) -> list[str]:
        result = await self.session.execute(select(Feature.code).order_by(Feature.code))
        return list(result.scalars().all())

    @store_read("looking up a feature")
    async def exists(self, code: str) -> bool:
        result = await self.session.execute(select(Feature.id).where(Feature.code == code))
        return result.scalar_one_or_none() is not None


class SqlOrganizationFeatureStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    @store_read("reading an organization feature flag")
    async def flag_for(self, organization_id: str, code: str) -> Optional[bool]:
        result = await self.session.execute(
            select(OrganizationFeature.enabled).where(
                OrganizationFeature.organization_id == organization_id,
                OrganizationFeature.feature_code == code,
            )
        )
        return result.scalar_one_or_none()

    @store_read("reading organization feature flags")
    async def flags_for(self, organization_id: str) -> dict[str, bool]:
        result = await self.session.execute(
            select(OrganizationFeature.feature_code, OrganizationFeature.enabled)
            .where(OrganizationFeature.organization_id == organization_id)
        )
        return {code: enabled for code, enabled in result.all()}

    @store_read("reading organization types")
    async def types_for(self, organization_id: str) -> list[OrganizationTypeDefinition]:
        result = await self.session.execute(
            select(OrganizationType)
            .join(
                organization_type_assignments,
                organization_type_assignments.c.organization_type_id == OrganizationType.id,
            )
            .where(organization_type_assignments.c.organization_id == organization_id)
            .order_by(OrganizationType.sort_order, OrganizationType.name)
        )
        return [_organization_type(row) for row in result.scalars().all()]

    @store_read("listing organization types")
    async def list_types(self) -> list[OrganizationTypeDefinition]:
        result = await self.session.execute(
            select(OrganizationType).order_by(OrganizationType.sort_order, OrganizationType.name)
        )
        return [_organization_type(row) for row in result.scalars().all()]

    async def replace_flags(self, organization_id: str, flags: dict[str, bool]) -> None:
        async with atomic(self.session, f"replacing feature flags of organization {organization_id}"):
            await self.session.execute(
                delete(OrganizationFeature).where(OrganizationFeature.organization_id == organization_id)
            )
            if flags:
                await self.session.execute(
                    insert(OrganizationFeature),
                    [
                        {"organization_id": organization_id, "feature_code": code, "enabled": enabled}
                        for code, enabled in flags.items()
                    ],
                )

    async def replace_types(self, organization_id: str, type_ids: Iterable[str]) -> None:
        type_ids = list(dict.fromkeys(type_ids))
        async with atomic(self.session, f"replacing types of organization {organization_id}"):
            await self.session.execute(
                delete(organization_type_assignments)
                .where(organization_type_assignments.c.organization_id == organization_id)
            )
            if type_ids:
                await self.session.execute(
                    insert(organization_type_assignments),
                    [{"organization_id": organization_id, "organization_type_id": type_id} for type_id in type_ids],
                )


class SqlRoleRegistry:
    def __init__(self, session: AsyncSession):
        self.session = session

    @store_read("reading a role")
    async def get(self, role_id: str) -> Optional[RoleDefinition]:
        row = await self.session.get(Role, role_id)
        return _role(row) if row is not None else None

    @store_read("reading roles")
    async def get_many(self, role_ids: Iterable[str]) -> list[RoleDefinition]:
        role_ids = list(role_ids)
        if not role_ids:
            return []
        result = await self.session.execute(select(Role).where(Role.id.in_(role_ids)))
        return [_role(row) for row in result.scalars().all()]

    @store_read("listing roles")
    async def list_all(self) -> list[RoleDefinition]:
        result = await self.session.execute(
            select(Role).order_by(Role.is_system.desc(), Role.name)
        )
        return [_role(row) for row in result.scalars().all()]

    @store_read("looking up a role by name")
    async def get_by_name(self, name: str) -> Optional[RoleDefinition]:
        result = await self.session.execute(select(Role).where(Role.name == name))
        row = result.scalar_one_or_none()
        return _role(row) if row is not None else None

    async def create(self, name: str, description: Optional[str], permission_patterns: list[str]) -> RoleDefinition:
        role = Role(
            name=name,
            description=description,
            permission_patterns=list(permission_patterns),
            is_system=False,
        )
        async with atomic(self.session, f"creating role {name!r}"):
            self.session.add(role)
            await self.session.flush()
        return _role(role)

    async def update(self, role_id: str, **changes) -> RoleDefinition:
        async with atomic(self.session, f"updating role {role_id}"):
            role = await self.session.get(Role, role_id)
            for key, value in changes.items():
                if key == "permission_patterns":
                    value = list(value)
                setattr(role, key, value)
            await self.session.flush()
        return _role(role)

    async def delete(self, role_id: str) -> None:
        async with atomic(self.session, f"deleting role {role_id}"):
            # assignments first; SQLite does not enforce ON DELETE CASCADE by default
            await self.session.execute(delete(user_roles).where(user_roles.c.role_id == role_id))
            await self.session.execute(delete(Role).where(Role.id == role_id))


class SqlRoleAssignmentStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    @store_read("reading role assignments")
    async def roles_for(self, user_id: str, organization_id: str) -> set[str]:
        result = await self.session.execute(
            select(user_roles.c.role_id).where(
                user_roles.c.user_id == user_id,
                user_roles.c.organization_id == organization_id,
            )
        )
        return set(result.scalars().all())

    async def replace(self, user_id: str, organization_id: str, role_ids: Iterable[str]) -> None:
        role_ids = list(dict.fromkeys(role_ids))
        async with atomic(self.session, f"replacing roles of user {user_id} in {organization_id}"):
            await self.session.execute(
                delete(user_roles).where(
                    user_roles.c.user_id == user_id,
                    user_roles.c.organization_id == organization_id,
                )
            )
            if role_ids:
                await self.session.execute(
                    insert(user_roles),
                    [
                        {"user_id": user_id, "organization_id": organization_id, "role_id": role_id}
                        for role_id in role_ids
                    ],
                )

    @store_read("reading role holders")
    async def holders_of(self, role_id: str) -> set[tuple[str, str]]:
        result = await self.session.execute(
            select(user_roles.c.user_id, user_roles.c.organization_id)
            .where(user_roles.c.role_id == role_id)
        )
        return {(user_id, organization_id) for user_id, organization_id in result.all()}

    @store_read("counting role assignments")
    async def count_by_role(self) -> dict[str, int]:
        result = await self.session.execute(
            select(user_roles.c.role_id, func.count()).group_by(user_roles.c.role_id)
        )
        return {role_id: count for role_id, count in result.all()}


class SqlOverrideStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    @store_read("reading a permission override")
    async def override_for(self, user_id: str, organization_id: str, code: str) -> Optional[bool]:
        result = await self.session.execute(
            select(UserPermissionOverride.granted).where(
                UserPermissionOverride.user_id == user_id,
                UserPermissionOverride.organization_id == organization_id,
                UserPermissionOverride.feature_code == code,
            )
        )
        return result.scalar_one_or_none()

    @store_read("reading permission overrides")
    async def overrides_for(self, user_id: str, organization_id: str) -> dict[str, bool]:
        result = await self.session.execute(
            select(UserPermissionOverride.feature_code, UserPermissionOverride.granted).where(
                UserPermissionOverride.user_id == user_id,
                UserPermissionOverride.organization_id == organization_id,
            )
        )
        return {code: granted for code, granted in result.all()}

    async def replace(self, user_id: str, organization_id: str, overrides: dict[str, bool]) -> None:
        async with atomic(self.session, f"replacing overrides of user {user_id} in {organization_id}"):
            await self.session.execute(
                delete(UserPermissionOverride).where(
                    UserPermissionOverride.user_id == user_id,
                    UserPermissionOverride.organization_id == organization_id,
                )
            )
            if overrides:
                await self.session.execute(
                    insert(UserPermissionOverride),
                    [
                        {
                            "user_id": user_id,
                            "organization_id": organization_id,
                            "feature_code": code,
                            "granted": granted,
                        }
                        for code, granted in overrides.items()
                    ],
                )


class SqlPrincipalDirectory:
    """Existence checks for the users and organizations a write targets."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @store_read("looking up a user")
    async def user_exists(self, user_id: str) -> bool:
        result = await self.session.execute(select(User.id).where(User.id == user_id))
        return result.scalar_one_or_none() is not None

    @store_read("looking up an organization")
    async def organization_exists(self, organization_id: str) -> bool:
        result = await self.session.execute(
            select(Organization.id).where(Organization.id == organization_id)
        )
        return result.scalar_one_or_none() is not None
