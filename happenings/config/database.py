import contextlib
import sys
from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from happenings.config.settings import settings


def create_engine(url: str) -> AsyncEngine:
    url = str(url)
    use_echo = settings.LOG_DB
    connect_args = {}
    if "sqlite" in url:
        connect_args = {"timeout": 15}
    return create_async_engine(
        url,
        echo=use_echo,
        future=True,  # use the sqlalchemy 2.0 classes
        connect_args=connect_args,
    )


def generate_test_db_dsn(dsn: str) -> str:
    part_dsn, db_name = str(dsn).rsplit("/", 1)
    return f"{part_dsn}/test_{db_name}"


engine = create_engine(settings.database_url)
if "pytest" in sys.modules:
    # keep test runs away from the configured database
    engine = create_engine(generate_test_db_dsn(settings.database_url))


async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


@contextlib.asynccontextmanager
async def async_session_manager(
    auto_commit=True,
    session_overwrite: AsyncSession | None = None,
    session_maker: async_sessionmaker | None = None,
) -> AsyncIterator[AsyncSession]:
    if session_overwrite:
        yield session_overwrite
    else:
        async with (session_maker or async_session_maker)() as session:
            try:
                yield session
            except Exception as e:
                await session.rollback()
                raise e
            else:
                if auto_commit:
                    await session.commit()
