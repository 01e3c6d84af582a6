from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classpoint.api.v1.classes.router import router as classes_router
from classpoint.api.v1.ledger.router import router as students_router
from classpoint.api.v1.levels.router import router as levels_router
from classpoint.api.v1.levels.store import ThresholdStore
from classpoint.api.v1.rewards.router import router as rewards_router
from classpoint.api.v1.spreadsheets.router import router as spreadsheets_router
from classpoint.api.v1.statistics.router import router as statistics_router
from classpoint.core.app_logger import logger
from classpoint.core.config import settings
from classpoint.db.session import AsyncSessionLocal, init_models


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    store = ThresholdStore()
    async with AsyncSessionLocal() as db:
        await store.load(db)
    app.state.threshold_store = store
    logger.info("ClassPoint started (thresholds v%s)", store.version)
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="ClassPoint", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(classes_router)
    app.include_router(students_router)
    app.include_router(rewards_router)
    app.include_router(levels_router)
    app.include_router(statistics_router)
    app.include_router(spreadsheets_router)

    return app


app = create_app()
