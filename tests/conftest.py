import pytest
from httpx import ASGITransport, AsyncClient

from afrodite.api.app import create_app
from afrodite.db.engine import get_engine, get_session_factory, init_engine
from afrodite.db.models import Base


def _reset_config():
    """Reset the in-memory config singleton to defaults."""
    import afrodite.config as _cfg
    _cfg._db_values.clear()
    _cfg._reload_all()


@pytest.fixture()
def app():
    return create_app("sqlite+aiosqlite://")


@pytest.fixture()
async def db(app):
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(autouse=True)
def _clear_state():
    _reset_config()
    yield
    _reset_config()


@pytest.fixture()
async def client(app, db):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c


@pytest.fixture()
async def file_db(tmp_path):
    """A file-backed SQLite database, for tests that need real concurrent connections."""
    engine = init_engine(f"sqlite+aiosqlite:///{tmp_path / 'afrodite.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await engine.dispose()
