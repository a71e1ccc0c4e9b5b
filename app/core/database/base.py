"""
SQLAlchemy declarative base, shared columns and ID generation.

Every table in the permission service is registered on Base.metadata.
"""
from datetime import datetime
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import ulid


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ulid.new())


class Base(DeclarativeBase):
    """
    Base class for all models.

    Usage:
        from app.core.database.base import Base

        class Feature(Base):
            __tablename__ = "features"

            id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
            code: Mapped[str] = mapped_column(String(100), unique=True)
    """
    pass


class TimestampMixin:
    """
    Adds created_at and updated_at to entity tables (features, roles,
    organization types). Pure association rows such as role assignments
    and overrides do not use it.
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
