"""
Feature, Role, assignment and override models.

- features: the catalog of gateable capabilities, keyed by dot-namespaced code
- roles: named bundles of permission patterns
- user_roles: roles a user holds within one organization
- user_permission_overrides: per-user grant/deny on a single feature
"""
from sqlalchemy import String, ForeignKey, Table, Column, JSON, Text, Boolean, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


# User-Role relationship scoped to an organization
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("organization_id", String(26), ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Feature(Base, TimestampMixin):
    """
    A gateable unit of application capability.

    Codes are dot-namespaced ("production.create"); the segment before the
    first dot is the category by convention. Codes are never renamed once a
    role or override references them.
    """
    __tablename__ = "features"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Feature(code={self.code!r}, category={self.category})>"


class Role(Base, TimestampMixin):
    """
    Role model for grouping permission patterns.

    System roles are seeded; their name is fixed and they cannot be deleted.
    Examples: org_admin, operator, viewer
    """
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Ordered list of patterns, e.g. ["production.*", "inventory.view"]
    permission_patterns: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, system={self.is_system})>"


class UserPermissionOverride(Base):
    """Grant (granted=True) or deny (granted=False) one feature for a user in an organization."""
    __tablename__ = "user_permission_overrides"

    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )
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
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<UserPermissionOverride(user_id={self.user_id}, org_id={self.organization_id}, "
            f"code={self.feature_code}, granted={self.granted})>"
        )
