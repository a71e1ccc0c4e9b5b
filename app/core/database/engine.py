"""
Database engine configuration and session management.

Current: SQLite (async with aiosqlite)
Future: PostgreSQL (switch to asyncpg)

Replace operations on permission data run inside `atomic(session)` so that
the delete and the insert commit together or not at all.
"""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core import config
from app.core.errors import StoreUnavailable
from app.utils import get_logger


log = get_logger(__name__)


def build_engine(url: str):
    """Create an async engine; NullPool for SQLite to avoid sharing connections across loops."""
    return create_async_engine(
        url,
        poolclass=NullPool if url.startswith("sqlite") else None,
        echo=False,  # Set to True for SQL query logging during development
        future=True,
    )


def build_sessionmaker(bind) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine(config.SQLALCHEMY_DATABASE_URL)
AsyncSessionLocal = build_sessionmaker(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    Usage in FastAPI routes:
        @router.get("/features")
        async def list_features(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def atomic(session: AsyncSession, what: str):
    """
    Run a unit of work and commit it once.

    Any SQLAlchemy failure rolls the whole transaction back and is re-raised
    as StoreUnavailable, so callers never see a half-applied replace.
    """
    try:
        yield session
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        log.exception("Transaction failed while %s", what)
        raise StoreUnavailable(f"Failed while {what}") from exc
    except Exception:
        await session.rollback()
        raise


async def init_db(bind=None):
    """
    Initialize database tables.
    Called on application startup and by the seed script.
    """
    from app.core.database.base import Base

    # Import all models to ensure they're registered with SQLAlchemy
    from app.features.users.models import User  # noqa: F401
    from app.features.organizations.models import (  # noqa: F401
        Organization, OrganizationType, OrganizationFeature
    )
    from app.features.permissions.models import (  # noqa: F401
        Feature, Role, UserPermissionOverride
    )

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
