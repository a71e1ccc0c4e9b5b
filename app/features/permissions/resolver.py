"""
Organization feature enablement.

An explicit flag row decides on its own. Without one, the feature is enabled
iff a default pattern of any assigned organization type matches it. An
organization with neither has nothing enabled.
"""
from typing import Iterable, Optional

from app.core.errors import ValidationError
from app.features.permissions.patterns import matches_any
from app.features.permissions.repositories import FeatureCatalog, OrganizationFeatureStore
from app.features.permissions.types import OrganizationTypeDefinition
from app.utils import get_logger


log = get_logger(__name__)


def _default_patterns(types: list[OrganizationTypeDefinition]) -> list[str]:
    patterns: list[str] = []
    for organization_type in types:
        patterns.extend(organization_type.default_feature_patterns)
    return patterns


class OrganizationFeatureResolver:
    def __init__(self, store: OrganizationFeatureStore, catalog: FeatureCatalog):
        self.store = store
        self.catalog = catalog

    async def is_enabled(self, organization_id: str, code: str) -> bool:
        flag = await self.store.flag_for(organization_id, code)
        if flag is not None:
            return flag

        types = await self.store.types_for(organization_id)
        return matches_any(_default_patterns(types), code)

    async def enabled_set(self, organization_id: str, codes: Optional[Iterable[str]] = None) -> set[str]:
        """
        All catalog codes the organization enables.

        Same answer as calling is_enabled for every code, computed from a
        single read of the flags and the type defaults.
        """
        if codes is None:
            codes = await self.catalog.codes()
        flags = await self.store.flags_for(organization_id)
        patterns = _default_patterns(await self.store.types_for(organization_id))

        enabled = set()
        for code in codes:
            if code in flags:
                if flags[code]:
                    enabled.add(code)
            elif matches_any(patterns, code):
                enabled.add(code)
        return enabled

    async def set_flags(self, organization_id: str, flags: dict[str, bool]) -> None:
        """Replace the organization's whole flag set in one transaction."""
        known = set(await self.catalog.codes())
        unknown = sorted(code for code in flags if code not in known)
        if unknown:
            raise ValidationError(f"Unknown feature codes: {', '.join(unknown)}")

        await self.store.replace_flags(organization_id, dict(flags))
        log.info("Replaced %d feature flags for organization %s", len(flags), organization_id)

    async def set_types(self, organization_id: str, type_ids: Iterable[str]) -> None:
        """Replace the organization's assigned types in one transaction."""
        type_ids = list(dict.fromkeys(type_ids))
        known = {organization_type.id for organization_type in await self.store.list_types()}
        unknown = sorted(type_id for type_id in type_ids if type_id not in known)
        if unknown:
            raise ValidationError(f"Unknown organization types: {', '.join(unknown)}")

        await self.store.replace_types(organization_id, type_ids)
        log.info("Assigned %d types to organization %s", len(type_ids), organization_id)
