"""
Permission API routes.

Provides the effective-permission surface for the current principal and the
endpoints administrators use to manage roles, role assignments and
per-user overrides.
"""
from typing import Annotated, List
from fastapi import APIRouter, Depends, Path, status

from app.features.permissions.dependencies import (
    get_permission_service,
    require_member_management,
    require_organization_permission,
)
from app.features.permissions.schemas import (
    EffectivePermissionsResponse,
    FeatureResponse,
    FeaturesByCategory,
    PermissionCheckRequest,
    PermissionCheckResponse,
    ReplaceUserOverrides,
    ReplaceUserRoles,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
    UserPermission,
    UserRoleAssignment,
)
from app.features.permissions.service import PermissionService
from app.features.permissions.types import OverrideEntry, Principal, RoleDefinition
from app.features.users.dependencies import get_current_admin_user, get_current_principal
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

ULID_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"

# Required to edit another user's roles or overrides inside one's own organization
MANAGE_USERS = "users.manage"


def _role_response(role: RoleDefinition, user_count: int = 0) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        description=role.description,
        is_system=role.is_system,
        permission_patterns=list(role.permission_patterns),
        user_count=user_count,
    )


# ============================================================================
# Current Principal
# ============================================================================

@router.get("/me", response_model=EffectivePermissionsResponse)
async def get_my_permissions(
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Effective permissions in the current organization, for menu/button visibility."""
    codes = await service.compute_effective_set(principal)
    return EffectivePermissionsResponse(
        user_id=principal.user_id,
        organization_id=principal.organization_id,
        is_platform_admin=principal.is_platform_admin,
        permissions=sorted(codes),
    )


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check: PermissionCheckRequest,
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Check a single feature for the current principal."""
    allowed = await service.authorize(principal, check.feature_code)
    return PermissionCheckResponse(feature_code=check.feature_code, allowed=allowed)


# ============================================================================
# Feature Catalog
# ============================================================================

@router.get("/features", response_model=List[FeatureResponse])
async def list_features(
    _principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """List all features ordered by category."""
    return await service.list_features()


@router.get("/features/by-category", response_model=FeaturesByCategory)
async def list_features_by_category(
    _principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Features grouped by category; uncategorized ones under 'Other'."""
    grouped = await service.features_by_category()
    return {
        category: [FeatureResponse.model_validate(feature) for feature in features]
        for category, features in grouped.items()
    }


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    _admin: Annotated[User, Depends(get_current_admin_user)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """List roles, system roles first, with how many assignments each has."""
    counts = await service.role_user_counts()
    return [_role_response(role, counts.get(role.id, 0)) for role in await service.list_roles()]


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role_data: RoleCreate,
    admin: Annotated[User, Depends(get_current_admin_user)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Create a new role (platform admin only)."""
    role = await service.create_role(
        name=role_data.name,
        description=role_data.description,
        permission_patterns=role_data.permission_patterns,
    )
    log.info(f"Role {role.name} created by {admin.id}")
    return _role_response(role)


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    _admin: Annotated[User, Depends(get_current_admin_user)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    role = await service.get_role(role_id)
    counts = await service.role_user_counts()
    return _role_response(role, counts.get(role.id, 0))


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    update_data: RoleUpdate,
    admin: Annotated[User, Depends(get_current_admin_user)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Update a role. System roles can change description and patterns but not name."""
    role = await service.update_role(
        role_id,
        name=update_data.name,
        description=update_data.description,
        permission_patterns=update_data.permission_patterns,
    )
    log.info(f"Role {role_id} updated by {admin.id}")
    return _role_response(role)


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    admin: Annotated[User, Depends(get_current_admin_user)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Delete a non-system role and its assignments."""
    await service.delete_role(role_id)
    log.info(f"Role {role_id} deleted by {admin.id}")


# ============================================================================
# User Role Assignments
# ============================================================================

OrganizationId = Annotated[str, Path(pattern=ULID_PATTERN)]
UserId = Annotated[str, Path(pattern=ULID_PATTERN)]


@router.get(
    "/organizations/{organization_id}/users/{user_id}/roles",
    response_model=List[UserRoleAssignment],
)
async def get_user_roles(
    organization_id: OrganizationId,
    user_id: UserId,
    _principal: Annotated[Principal, Depends(require_organization_permission(MANAGE_USERS))],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """All roles, flagged with whether the user holds each in the organization."""
    assigned = await service.user_role_ids(user_id, organization_id)
    return [
        UserRoleAssignment(
            role_id=role.id,
            role_name=role.name,
            role_description=role.description,
            is_system=role.is_system,
            assigned=role.id in assigned,
        )
        for role in await service.list_roles()
    ]


@router.put(
    "/organizations/{organization_id}/users/{user_id}/roles",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def replace_user_roles(
    organization_id: OrganizationId,
    user_id: UserId,
    data: ReplaceUserRoles,
    principal: Annotated[Principal, Depends(require_member_management(MANAGE_USERS))],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Replace the user's role set in the organization."""
    await service.replace_role_assignments(user_id, organization_id, data.role_ids)
    log.info(f"Roles of {user_id} in {organization_id} replaced by {principal.user_id}")


# ============================================================================
# User Overrides
# ============================================================================

@router.get(
    "/organizations/{organization_id}/users/{user_id}/overrides",
    response_model=List[UserPermission],
)
async def get_user_permissions(
    organization_id: OrganizationId,
    user_id: UserId,
    _principal: Annotated[Principal, Depends(require_organization_permission(MANAGE_USERS))],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Per-feature view: org enablement, role contribution, override state, result."""
    rows = await service.explain(user_id, organization_id)
    return [
        UserPermission(
            feature_code=row.feature.code,
            feature_name=row.feature.name,
            feature_description=row.feature.description,
            category=row.feature.category or "Other",
            organization_enabled=row.organization_enabled,
            from_roles=row.from_roles,
            override=row.override,
            allowed=row.allowed,
        )
        for row in rows
    ]


@router.put(
    "/organizations/{organization_id}/users/{user_id}/overrides",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def replace_user_overrides(
    organization_id: OrganizationId,
    user_id: UserId,
    data: ReplaceUserOverrides,
    principal: Annotated[Principal, Depends(require_member_management(MANAGE_USERS))],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Replace the user's override set in the organization."""
    await service.replace_permission_overrides(
        user_id,
        organization_id,
        [OverrideEntry(item.feature_code, item.state) for item in data.overrides],
    )
    log.info(f"Overrides of {user_id} in {organization_id} replaced by {principal.user_id}")
