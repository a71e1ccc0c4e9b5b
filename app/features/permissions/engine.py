"""
Effective-permission evaluation.

Decision order for allows(principal, code), each step final:
1. platform admin            -> allowed
2. no organization context   -> denied
3. organization disables it  -> denied (no role or override can bypass this)
4. override row present      -> its value
5. any assigned role pattern matches -> allowed
6. otherwise                 -> denied

effective_set() is the same rule applied to every catalog code; the bulk
path reads each store once and costs O(features x role patterns).

Public methods fail closed: a StoreUnavailable becomes False / an empty set.
The strict variants (evaluate, compute_effective_set) let it propagate so an
HTTP caller can answer 503 instead of 403.
"""
from app.core.errors import StoreUnavailable
from app.features.permissions.patterns import expand, matches_any, matching_patterns
from app.features.permissions.repositories import (
    FeatureCatalog,
    OverrideStore,
    RoleAssignmentStore,
    RoleRegistry,
)
from app.features.permissions.resolver import OrganizationFeatureResolver
from app.features.permissions.types import (
    OverrideState,
    PermissionExplanation,
    Principal,
)
from app.utils import get_logger


log = get_logger(__name__)


class PermissionEngine:
    def __init__(
        self,
        catalog: FeatureCatalog,
        resolver: OrganizationFeatureResolver,
        roles: RoleRegistry,
        assignments: RoleAssignmentStore,
        overrides: OverrideStore,
    ):
        self.catalog = catalog
        self.resolver = resolver
        self.roles = roles
        self.assignments = assignments
        self.overrides = overrides

    async def _role_patterns(self, user_id: str, organization_id: str) -> list[str]:
        role_ids = await self.assignments.roles_for(user_id, organization_id)
        if not role_ids:
            return []
        patterns: list[str] = []
        for role in await self.roles.get_many(role_ids):
            patterns.extend(role.permission_patterns)
        return patterns

    # ------------------------------------------------------------------
    # Point queries
    # ------------------------------------------------------------------

    async def evaluate(self, principal: Principal, code: str) -> bool:
        """Decide a single feature. Raises StoreUnavailable on store failure."""
        if principal.is_platform_admin:
            return True

        organization_id = principal.organization_id
        if organization_id is None:
            return False

        if not await self.resolver.is_enabled(organization_id, code):
            log.debug(f"{code} not enabled for organization {organization_id}")
            return False

        override = await self.overrides.override_for(principal.user_id, organization_id, code)
        if override is not None:
            log.debug(f"Override for user {principal.user_id} on {code}: {override}")
            return override

        return matches_any(await self._role_patterns(principal.user_id, organization_id), code)

    async def allows(self, principal: Principal, code: str) -> bool:
        try:
            return await self.evaluate(principal, code)
        except StoreUnavailable:
            log.exception("Permission check for %s on %s failed; denying", principal.user_id, code)
            return False

    # ------------------------------------------------------------------
    # Bulk queries
    # ------------------------------------------------------------------

    async def compute_effective_set(self, principal: Principal) -> frozenset[str]:
        """Every catalog code `evaluate` would allow. Raises StoreUnavailable."""
        if principal.is_platform_admin:
            return frozenset(await self.catalog.codes())

        organization_id = principal.organization_id
        if organization_id is None:
            return frozenset()

        codes = await self.catalog.codes()
        enabled = await self.resolver.enabled_set(organization_id, codes)
        if not enabled:
            return frozenset()

        overrides = await self.overrides.overrides_for(principal.user_id, organization_id)
        patterns = await self._role_patterns(principal.user_id, organization_id)

        allowed = expand(patterns, enabled)
        for code, granted in overrides.items():
            if code not in enabled:
                continue
            if granted:
                allowed.add(code)
            else:
                allowed.discard(code)
        return frozenset(allowed)

    async def effective_set(self, principal: Principal) -> frozenset[str]:
        try:
            return await self.compute_effective_set(principal)
        except StoreUnavailable:
            log.exception("Effective permissions for %s failed; returning none", principal.user_id)
            return frozenset()

    async def explain(self, user_id: str, organization_id: str) -> list[PermissionExplanation]:
        """
        Per-feature breakdown for the user permission editor.

        `allowed` on each row equals evaluate() for a non-admin principal in
        `organization_id`.
        """
        features = await self.catalog.list_all()
        enabled = await self.resolver.enabled_set(organization_id, [feature.code for feature in features])
        overrides = await self.overrides.overrides_for(user_id, organization_id)
        patterns = await self._role_patterns(user_id, organization_id)

        rows = []
        for feature in features:
            matched = matching_patterns(patterns, feature.code)
            override = OverrideState.INHERIT
            if feature.code in overrides:
                override = OverrideState.GRANT if overrides[feature.code] else OverrideState.DENY

            organization_enabled = feature.code in enabled
            if not organization_enabled:
                allowed = False
            elif override is not OverrideState.INHERIT:
                allowed = override is OverrideState.GRANT
            else:
                allowed = bool(matched)

            rows.append(PermissionExplanation(
                feature=feature,
                organization_enabled=organization_enabled,
                from_roles=bool(matched),
                override=override,
                allowed=allowed,
                matched_patterns=matched,
            ))
        return rows
