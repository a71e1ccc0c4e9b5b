"""
Pydantic schemas for organization types and feature configuration.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict


class OrganizationTypeResponse(BaseModel):
    """An organization type and its default feature patterns."""
    id: str
    name: str
    description: Optional[str] = None
    default_feature_patterns: List[str]
    sort_order: int = 0

    model_config = ConfigDict(from_attributes=True)


class ReplaceOrganizationTypes(BaseModel):
    """Full set of types the organization should have."""
    type_ids: List[str] = Field(default_factory=list)


class OrganizationFeatureStatus(BaseModel):
    """One feature as configured for an organization."""
    feature_code: str
    feature_name: str
    feature_description: Optional[str] = None
    category: str
    explicit: Optional[bool] = Field(None, description="Explicit flag, or null when type defaults apply")
    enabled: bool


class ReplaceOrganizationFeatures(BaseModel):
    """Full explicit flag set; features left out fall back to type defaults."""
    flags: Dict[str, bool] = Field(default_factory=dict)
