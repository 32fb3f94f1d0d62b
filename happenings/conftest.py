import contextlib

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker

from happenings.config.database import create_engine
from happenings.events.repository import orm_models  # noqa: F401  registers the tables
from happenings.events.repository.write_models import SqlEventWriteModel
from happenings.main import app
from happenings.models.base import BaseModel
from happenings.occurrences.dates import FixedClock
from happenings.occurrences.expander import EventDefinition

TODAY = "2026-02-06"


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def client_factory():
    @contextlib.asynccontextmanager
    async def factory(overrides: dict):
        app.dependency_overrides.update(overrides)
        try:
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as ac:
                yield ac
        finally:
            app.dependency_overrides.clear()

    return factory


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """Session maker bound to a throwaway SQLite database with all tables created."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'happenings.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def clock():
    return FixedClock(TODAY)


@pytest_asyncio.fixture
async def create_event(session_maker):
    write_model = SqlEventWriteModel(session_maker=session_maker)

    async def factory(**fields) -> EventDefinition:
        fields.setdefault("title", "Thursday Song Circle")
        return await write_model.create_event(EventDefinition(id=None, **fields))

    return factory
