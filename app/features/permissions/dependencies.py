"""
Permission dependencies for route protection.

Client-side permission lists are advisory; every privileged route re-checks
here on each request.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.cache import get_permission_cache
from app.features.permissions.service import PermissionService
from app.features.permissions.types import Principal
from app.features.users.dependencies import get_current_principal
from app.utils import get_logger


log = get_logger(__name__)


async def get_permission_service(
    db: Annotated[AsyncSession, Depends(get_db)]
) -> PermissionService:
    return PermissionService.for_session(db, get_permission_cache())


def require_permission(feature_code: str):
    """
    FastAPI dependency to require a feature in the principal's current organization.

    Usage:
        @router.post("/production")
        async def create_production(
            principal: Principal = Depends(require_permission("production.create"))
        ):
            ...

    Raises:
        HTTPException: 403 if the feature is not allowed
        StoreUnavailable: the decision could not be made (mapped to 503)
    """
    async def permission_dependency(
        principal: Annotated[Principal, Depends(get_current_principal)],
        service: Annotated[PermissionService, Depends(get_permission_service)],
    ) -> Principal:
        if not await service.authorize(principal, feature_code):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {feature_code}"
            )
        return principal

    return permission_dependency


def require_organization_permission(feature_code: str):
    """
    Like require_permission, for routes that manage a specific organization.

    Platform admins pass for any organization. Everyone else must be acting
    in the organization named by the `organization_id` path parameter and be
    allowed `feature_code` there.
    """
    async def permission_dependency(
        organization_id: str,
        principal: Annotated[Principal, Depends(get_current_principal)],
        service: Annotated[PermissionService, Depends(get_permission_service)],
    ) -> Principal:
        if principal.is_platform_admin:
            return principal
        if principal.organization_id != organization_id:
            log.debug(f"User {principal.user_id} is not acting in organization {organization_id}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You are not acting in this organization"
            )
        if not await service.authorize(principal, feature_code):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {feature_code}"
            )
        return principal

    return permission_dependency


def require_member_management(feature_code: str):
    """
    require_organization_permission for routes that change another user's
    roles or overrides. Only platform admins may change their own.
    """
    async def management_dependency(
        user_id: str,
        principal: Annotated[Principal, Depends(require_organization_permission(feature_code))],
    ) -> Principal:
        if user_id == principal.user_id and not principal.is_platform_admin:
            log.warning(f"User {principal.user_id} tried to change their own permissions")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You cannot change your own roles or overrides"
            )
        return principal

    return management_dependency
