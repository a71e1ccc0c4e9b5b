"""
Plain value types passed between the stores, the engine and the routes.

The engine never sees ORM objects; stores convert rows into these.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class OverrideState(str, Enum):
    """Override state as edited in the admin UI. INHERIT means "no row"."""
    INHERIT = "inherit"
    GRANT = "grant"
    DENY = "deny"


@dataclass(frozen=True)
class Principal:
    """
    Identity context a decision is evaluated against.

    Attributes:
        user_id: Local user ID
        organization_id: Organization the user is acting in, or None
        is_platform_admin: Grants every catalog feature when set
    """
    user_id: str
    organization_id: Optional[str]
    is_platform_admin: bool = False


@dataclass(frozen=True)
class FeatureDefinition:
    code: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    sort_order: int = 0


@dataclass(frozen=True)
class RoleDefinition:
    id: str
    name: str
    permission_patterns: tuple[str, ...] = ()
    description: Optional[str] = None
    is_system: bool = False


@dataclass(frozen=True)
class OrganizationTypeDefinition:
    id: str
    name: str
    default_feature_patterns: tuple[str, ...] = ()
    description: Optional[str] = None
    sort_order: int = 0


@dataclass(frozen=True)
class OverrideEntry:
    feature_code: str
    state: OverrideState


@dataclass
class PermissionExplanation:
    """One row of the per-user permission view: how each input contributed."""
    feature: FeatureDefinition
    organization_enabled: bool
    from_roles: bool
    override: OverrideState
    allowed: bool
    matched_patterns: list[str] = field(default_factory=list)
