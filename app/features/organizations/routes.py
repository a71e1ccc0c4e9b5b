"""
Organization feature configuration routes.

Organization types and explicit feature flags decide what an organization
can use at all; both are platform-admin only.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, status

from app.features.organizations.dependencies import get_organization_by_id
from app.features.organizations.models import Organization
from app.features.organizations.schemas import (
    OrganizationFeatureStatus,
    OrganizationTypeResponse,
    ReplaceOrganizationFeatures,
    ReplaceOrganizationTypes,
)
from app.features.permissions.dependencies import get_permission_service
from app.features.permissions.service import PermissionService
from app.features.users.dependencies import get_current_admin_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["organizations"])


@router.get("/types", response_model=list[OrganizationTypeResponse])
async def list_organization_types(
    _admin: Annotated[User, Depends(get_current_admin_user)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """List all organization types."""
    return await service.list_organization_types()


@router.get("/{organization_id}/types", response_model=list[OrganizationTypeResponse])
async def get_organization_types(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _admin: Annotated[User, Depends(get_current_admin_user)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Types assigned to the organization."""
    return await service.organization_types(organization.id)


@router.put("/{organization_id}/types", status_code=status.HTTP_204_NO_CONTENT)
async def replace_organization_types(
    data: ReplaceOrganizationTypes,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    admin: Annotated[User, Depends(get_current_admin_user)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Replace the organization's types."""
    await service.set_organization_types(organization.id, data.type_ids)
    log.info(f"Types of organization {organization.id} replaced by {admin.id}")


@router.get("/{organization_id}/features", response_model=list[OrganizationFeatureStatus])
async def get_organization_features(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _admin: Annotated[User, Depends(get_current_admin_user)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Every catalog feature with its explicit flag and resulting enablement."""
    flags = await service.organization_feature_flags(organization.id)
    enabled = await service.organization_enabled_features(organization.id)
    return [
        OrganizationFeatureStatus(
            feature_code=feature.code,
            feature_name=feature.name,
            feature_description=feature.description,
            category=feature.category or "Other",
            explicit=flags.get(feature.code),
            enabled=feature.code in enabled,
        )
        for feature in await service.list_features()
    ]


@router.put("/{organization_id}/features", status_code=status.HTTP_204_NO_CONTENT)
async def replace_organization_features(
    data: ReplaceOrganizationFeatures,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    admin: Annotated[User, Depends(get_current_admin_user)],
    service: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Replace the organization's explicit feature flags."""
    await service.set_organization_feature_flags(organization.id, data.flags)
    log.info(f"Feature flags of organization {organization.id} replaced by {admin.id}")
