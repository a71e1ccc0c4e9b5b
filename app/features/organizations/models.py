"""
Organization models.

An organization's enabled features come from two places:
- explicit flags in organization_features (one row per org/feature)
- default patterns of the organization types assigned to it
A flag row, when present, always wins over the type defaults.
"""
from sqlalchemy import String, ForeignKey, Table, Column, Boolean, JSON, Text, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


# Organization <-> OrganizationType (an organization may have several types)
organization_type_assignments = Table(
    "organization_type_assignments",
    Base.metadata,
    Column("organization_id", String(26), ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True),
    Column("organization_type_id", String(26), ForeignKey("organization_types.id", ondelete="CASCADE"), primary_key=True),
)


class Organization(Base, TimestampMixin):
    """Tenant that users act within."""
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    types: Mapped[list["OrganizationType"]] = relationship(
        "OrganizationType",
        secondary=organization_type_assignments,
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"


class OrganizationType(Base, TimestampMixin):
    """
    Tag on an organization supplying a default bundle of feature patterns.

    Patterns use the same grammar as role permissions:
    "production.create", "production.*" or "*".
    """
    __tablename__ = "organization_types"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    default_feature_patterns: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<OrganizationType(id={self.id}, name={self.name!r})>"


class OrganizationFeature(Base):
    """Explicit per-organization feature flag. Absence means "use type defaults"."""
    __tablename__ = "organization_features"

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        primary_key=True
    )
    feature_code: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("features.code", ondelete="CASCADE"),
        primary_key=True
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)

    def __repr__(self) -> str:
        return f"<OrganizationFeature(org_id={self.organization_id}, code={self.feature_code}, enabled={self.enabled})>"
