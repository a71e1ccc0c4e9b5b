"""
Path resolution for organization-scoped admin routes.
"""
from typing import Annotated
from fastapi import Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import NotFoundError
from app.features.organizations.models import Organization


async def get_organization_by_id(
    organization_id: Annotated[str, Path(min_length=1, max_length=26)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Organization:
    """The organization named in the path. Unknown ids are a 404."""
    organization = await db.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError(f"Organization {organization_id} not found")
    return organization
