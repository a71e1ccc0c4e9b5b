import pytest

from app.core.database.engine import build_engine, build_sessionmaker, init_db
from app.features.permissions.cache import PermissionCache

from tests.fakes import Stores


@pytest.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(db_engine):
    async with build_sessionmaker(db_engine)() as session:
        yield session


@pytest.fixture
def cache():
    return PermissionCache(ttl=60)


@pytest.fixture
def stores():
    return Stores([
        "production.create",
        "production.view",
        "production.delete",
        "production.validate",
        "inventory.view",
        "inventory.edit",
        "shipments.view",
        "shipments.create",
        "users.manage",
        "reports.view",
    ])
