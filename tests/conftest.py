import os
from typing import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from classpoint.api.v1.levels.resolver import level_for
from classpoint.api.v1.levels.schemas import LevelThresholds
from classpoint.api.v1.levels.store import ThresholdStore
from classpoint.core.models import Reward, SchoolClass, Student
from classpoint.db.session import Base, get_db
from classpoint.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
DEFAULT_THRESHOLDS = LevelThresholds(hat=0, nay_mam=50, cay_con=100, cay_to=200)


@pytest.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory schema per test. StaticPool keeps every session on the same connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def store() -> ThresholdStore:
    return ThresholdStore(DEFAULT_THRESHOLDS)


@pytest.fixture()
async def client(db_session: AsyncSession, store: ThresholdStore) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, sharing the test session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.threshold_store = store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def make_class(db: AsyncSession, name: str = "9B") -> SchoolClass:
    obj = SchoolClass(name=name)
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj


async def make_student(
    db: AsyncSession,
    class_id,
    name: str = "An",
    points: int = 0,
    order_number: int = 1,
    thresholds: LevelThresholds = DEFAULT_THRESHOLDS,
) -> Student:
    obj = Student(
        class_id=class_id,
        name=name,
        order_number=order_number,
        total_points=points,
        level=level_for(points, thresholds).value,
    )
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj


async def make_reward(
    db: AsyncSession,
    class_id,
    name: str = "Sticker",
    cost: int = 10,
    order_number: int = 1,
    is_active: bool = True,
) -> Reward:
    obj = Reward(
        class_id=class_id,
        name=name,
        points_required=cost,
        order_number=order_number,
        is_active=is_active,
    )
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj
