from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from classpoint.core.config import settings

# pool_pre_ping: check connection is alive before use (avoids "connection is closed" errors
# when DB or network closed idle connections).
# pool_timeout: fail fast instead of waiting forever for a free connection.
_engine_kwargs = {"echo": False, "future": True, "pool_pre_ping": True}
if not settings.database_url.startswith("sqlite"):
    _engine_kwargs.update(pool_recycle=300, pool_timeout=settings.db_pool_timeout)

engine = create_async_engine(settings.database_url, **_engine_kwargs)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


async def init_models() -> None:
    """Create missing tables. Existing tables are left untouched."""
    import classpoint.core.models  # noqa: F401  registers mappers on Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
