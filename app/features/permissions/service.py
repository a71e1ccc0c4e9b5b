"""
Permission service: the engine plus the cache, and every write path.

Writes validate first, run one atomic replace against the store, then
invalidate the cache before returning. A read that started before the
write cannot re-install a stale set (see PermissionCache.put).
"""
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, StoreUnavailable, ValidationError
from app.features.permissions.cache import PermissionCache, get_permission_cache
from app.features.permissions.engine import PermissionEngine
from app.features.permissions.patterns import validate_patterns
from app.features.permissions.repositories import (
    SqlFeatureCatalog,
    SqlOrganizationFeatureStore,
    SqlOverrideStore,
    SqlPrincipalDirectory,
    SqlRoleAssignmentStore,
    SqlRoleRegistry,
)
from app.features.permissions.resolver import OrganizationFeatureResolver
from app.features.permissions.types import (
    FeatureDefinition,
    OrganizationTypeDefinition,
    OverrideEntry,
    OverrideState,
    PermissionExplanation,
    Principal,
    RoleDefinition,
)
from app.utils import get_logger


log = get_logger(__name__)


class PermissionService:
    def __init__(self, catalog, organization_store, roles, assignments, overrides, directory, cache: PermissionCache):
        self.catalog = catalog
        self.directory = directory
        self.organization_store = organization_store
        self.roles = roles
        self.assignments = assignments
        self.overrides = overrides
        self.cache = cache
        self.resolver = OrganizationFeatureResolver(organization_store, catalog)
        self.engine = PermissionEngine(catalog, self.resolver, roles, assignments, overrides)

    @classmethod
    def for_session(cls, session: AsyncSession, cache: Optional[PermissionCache] = None) -> "PermissionService":
        return cls(
            catalog=SqlFeatureCatalog(session),
            organization_store=SqlOrganizationFeatureStore(session),
            roles=SqlRoleRegistry(session),
            assignments=SqlRoleAssignmentStore(session),
            overrides=SqlOverrideStore(session),
            directory=SqlPrincipalDirectory(session),
            cache=cache if cache is not None else get_permission_cache(),
        )

    # ========================================================================
    # Decisions
    # ========================================================================

    async def compute_effective_set(self, principal: Principal) -> frozenset[str]:
        """Cached effective set. Raises StoreUnavailable."""
        cached = self.cache.get(principal)
        if cached is not None:
            return cached

        version = self.cache.version()
        codes = await self.engine.compute_effective_set(principal)
        self.cache.put(principal, codes, version=version)
        return codes

    async def effective_set(self, principal: Principal) -> frozenset[str]:
        try:
            return await self.compute_effective_set(principal)
        except StoreUnavailable:
            log.exception("Could not resolve permissions for user %s; returning none", principal.user_id)
            return frozenset()

    async def authorize(self, principal: Principal, code: str) -> bool:
        """
        Decide one feature through the cached effective set.

        The set only holds catalog codes, so a code missing from the catalog
        is denied to everyone but platform admins, even where
        PermissionEngine.evaluate would match it against "*".

        Raises StoreUnavailable so callers can report a retryable error
        rather than a denial.
        """
        if principal.is_platform_admin:
            return True
        if principal.organization_id is None:
            return False
        allowed = code in await self.compute_effective_set(principal)
        log.debug(f"User {principal.user_id} {'granted' if allowed else 'denied'} {code} in {principal.organization_id}")
        return allowed

    async def allows(self, principal: Principal, code: str) -> bool:
        try:
            return await self.authorize(principal, code)
        except StoreUnavailable:
            log.exception("Permission check for user %s on %s failed; denying", principal.user_id, code)
            return False

    async def explain(self, user_id: str, organization_id: str) -> list[PermissionExplanation]:
        return await self.engine.explain(user_id, organization_id)

    # ========================================================================
    # Catalog and role reads
    # ========================================================================

    async def list_features(self) -> list[FeatureDefinition]:
        return await self.catalog.list_all()

    async def features_by_category(self) -> dict[str, list[FeatureDefinition]]:
        grouped: dict[str, list[FeatureDefinition]] = {}
        for feature in await self.catalog.list_all():
            grouped.setdefault(feature.category or "Other", []).append(feature)
        return grouped

    async def list_roles(self) -> list[RoleDefinition]:
        return await self.roles.list_all()

    async def get_role(self, role_id: str) -> RoleDefinition:
        role = await self.roles.get(role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found")
        return role

    async def role_user_counts(self) -> dict[str, int]:
        return await self.assignments.count_by_role()

    async def user_role_ids(self, user_id: str, organization_id: str) -> set[str]:
        return await self.assignments.roles_for(user_id, organization_id)

    # ========================================================================
    # Organization features
    # ========================================================================

    async def list_organization_types(self) -> list[OrganizationTypeDefinition]:
        return await self.organization_store.list_types()

    async def organization_types(self, organization_id: str) -> list[OrganizationTypeDefinition]:
        return await self.organization_store.types_for(organization_id)

    async def organization_feature_flags(self, organization_id: str) -> dict[str, bool]:
        return await self.organization_store.flags_for(organization_id)

    async def organization_enabled_features(self, organization_id: str) -> set[str]:
        return await self.resolver.enabled_set(organization_id)

    async def set_organization_feature_flags(self, organization_id: str, flags: dict[str, bool]) -> None:
        await self.resolver.set_flags(organization_id, flags)
        self.cache.invalidate_organization(organization_id)

    async def set_organization_types(self, organization_id: str, type_ids: Iterable[str]) -> None:
        await self.resolver.set_types(organization_id, type_ids)
        self.cache.invalidate_organization(organization_id)

    # ========================================================================
    # Role assignments and overrides
    # ========================================================================

    async def _require_member_targets(self, user_id: str, organization_id: str) -> None:
        if not await self.directory.user_exists(user_id):
            raise NotFoundError(f"User {user_id} not found")
        if not await self.directory.organization_exists(organization_id):
            raise NotFoundError(f"Organization {organization_id} not found")

    async def replace_role_assignments(self, user_id: str, organization_id: str, role_ids: Iterable[str]) -> None:
        await self._require_member_targets(user_id, organization_id)
        role_ids = list(dict.fromkeys(role_ids))
        found = {role.id for role in await self.roles.get_many(role_ids)}
        missing = [role_id for role_id in role_ids if role_id not in found]
        if missing:
            raise ValidationError(f"Unknown roles: {', '.join(missing)}")

        await self.assignments.replace(user_id, organization_id, role_ids)
        self.cache.invalidate(user_id, organization_id)
        log.info("User %s now holds %d roles in organization %s", user_id, len(role_ids), organization_id)

    async def replace_permission_overrides(
        self,
        user_id: str,
        organization_id: str,
        entries: Iterable[OverrideEntry],
    ) -> None:
        await self._require_member_targets(user_id, organization_id)
        known = set(await self.catalog.codes())
        overrides: dict[str, bool] = {}
        for entry in entries:
            if entry.feature_code not in known:
                raise ValidationError(f"Unknown feature code: {entry.feature_code!r}")
            # last entry for a code wins; inherit removes it
            overrides.pop(entry.feature_code, None)
            if entry.state is not OverrideState.INHERIT:
                overrides[entry.feature_code] = entry.state is OverrideState.GRANT

        await self.overrides.replace(user_id, organization_id, overrides)
        self.cache.invalidate(user_id, organization_id)
        log.info("User %s now has %d overrides in organization %s", user_id, len(overrides), organization_id)

    # ========================================================================
    # Role definitions
    # ========================================================================

    async def _validated_patterns(self, patterns: Iterable[str]) -> list[str]:
        return validate_patterns(patterns, set(await self.catalog.codes()))

    async def create_role(
        self,
        name: str,
        permission_patterns: Iterable[str],
        description: Optional[str] = None,
    ) -> RoleDefinition:
        patterns = await self._validated_patterns(permission_patterns)
        if await self.roles.get_by_name(name) is not None:
            raise ValidationError(f"Role {name!r} already exists")

        role = await self.roles.create(name, description, patterns)
        log.info("Created role %s (%s)", role.name, role.id)
        return role

    async def update_role(
        self,
        role_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        permission_patterns: Optional[Iterable[str]] = None,
    ) -> RoleDefinition:
        role = await self.get_role(role_id)
        changes = {}

        if name is not None and name != role.name:
            if role.is_system:
                raise ValidationError("System roles cannot be renamed")
            if await self.roles.get_by_name(name) is not None:
                raise ValidationError(f"Role {name!r} already exists")
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if permission_patterns is not None:
            changes["permission_patterns"] = await self._validated_patterns(permission_patterns)

        if not changes:
            return role

        holders = await self.assignments.holders_of(role_id)
        updated = await self.roles.update(role_id, **changes)
        if "permission_patterns" in changes:
            for user_id, organization_id in holders:
                self.cache.invalidate(user_id, organization_id)
        log.info("Updated role %s: %s", role_id, ", ".join(sorted(changes)))
        return updated

    async def delete_role(self, role_id: str) -> None:
        role = await self.get_role(role_id)
        if role.is_system:
            raise ValidationError("System roles cannot be deleted")

        holders = await self.assignments.holders_of(role_id)
        await self.roles.delete(role_id)
        for user_id, organization_id in holders:
            self.cache.invalidate(user_id, organization_id)
        log.info("Deleted role %s, affecting %d assignments", role.name, len(holders))
