"""
Pydantic schemas for permission management.

Request and response models for features, roles, role assignments,
overrides and permission checks.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.types import OverrideState


# ============================================================================
# Feature Schemas
# ============================================================================

class FeatureResponse(BaseModel):
    """Schema for a catalog feature."""
    code: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    sort_order: int = 0

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

def _check_role_name(v: str) -> str:
    if not v.replace('_', '').replace('-', '').isalnum():
        raise ValueError('Role name must contain only alphanumeric characters, underscores, and hyphens')
    return v


class RoleCreate(BaseModel):
    """Schema for creating a new role."""
    name: str = Field(..., min_length=1, max_length=50, description="Unique role name")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")
    permission_patterns: List[str] = Field(
        default_factory=list,
        description="Feature codes, 'category.*' or '*'"
    )

    @field_validator('name')
    @classmethod
    def name_alphanumeric_underscore(cls, v: str) -> str:
        return _check_role_name(v)


class RoleUpdate(BaseModel):
    """Schema for updating a role. System roles keep their name."""
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=1000)
    permission_patterns: Optional[List[str]] = None

    @field_validator('name')
    @classmethod
    def name_alphanumeric_underscore(cls, v: Optional[str]) -> Optional[str]:
        return _check_role_name(v) if v is not None else v


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    name: str
    description: Optional[str] = None
    is_system: bool
    permission_patterns: List[str]
    user_count: int = 0

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Assignment Schemas
# ============================================================================

class UserRoleAssignment(BaseModel):
    """A role and whether the user holds it in the organization."""
    role_id: str
    role_name: str
    role_description: Optional[str] = None
    is_system: bool
    assigned: bool


class ReplaceUserRoles(BaseModel):
    """Full set of roles the user should hold in the organization."""
    role_ids: List[str] = Field(default_factory=list)


class OverrideItem(BaseModel):
    feature_code: str = Field(..., min_length=1, max_length=100)
    state: OverrideState


class ReplaceUserOverrides(BaseModel):
    """Full override list; 'inherit' entries are dropped."""
    overrides: List[OverrideItem] = Field(default_factory=list)


class UserPermission(BaseModel):
    """One row of the user permission editor."""
    feature_code: str
    feature_name: str
    feature_description: Optional[str] = None
    category: str
    organization_enabled: bool
    from_roles: bool
    override: OverrideState
    allowed: bool


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Check one feature for the current principal."""
    feature_code: str = Field(..., min_length=1, max_length=100)


class PermissionCheckResponse(BaseModel):
    feature_code: str
    allowed: bool


class EffectivePermissionsResponse(BaseModel):
    """Everything the current principal may use. Advisory for UI visibility only."""
    user_id: str
    organization_id: Optional[str]
    is_platform_admin: bool
    permissions: List[str]


FeaturesByCategory = Dict[str, List[FeatureResponse]]
