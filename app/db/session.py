from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings


def _engine_options(url: str) -> dict:
    # SQLite (local runs, tests) keeps SQLAlchemy's default pool
    if url.startswith("sqlite"):
        return {}
    # pool_pre_ping: check connection is alive before use.
    # pool_recycle: discard connections after this many seconds.
    return {"pool_pre_ping": True, "pool_recycle": 300}


engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
    **_engine_options(settings.database_url),
)

# expire_on_commit=False: services build responses from objects after committing
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    """One session per request; uncommitted work is rolled back when the request ends."""
    async with AsyncSessionLocal() as session:
        yield session
