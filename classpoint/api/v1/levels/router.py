from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.core.enums import LEVEL_DISPLAY, LEVEL_ORDER
from classpoint.core.exceptions import ServiceError
from classpoint.db.session import get_db

from .schemas import LevelInfo, LevelListResponse, ThresholdsResponse, ThresholdUpdate
from .store import ThresholdStore, get_threshold_store

router = APIRouter(prefix="/api/v1/levels", tags=["levels"])


def _to_response(store: ThresholdStore) -> ThresholdsResponse:
    return ThresholdsResponse(**store.get().model_dump(), version=store.version)


@router.get("", response_model=LevelListResponse)
async def list_levels(
    db: AsyncSession = Depends(get_db),
    store: ThresholdStore = Depends(get_threshold_store),
) -> LevelListResponse:
    """All levels in order with their display info and current minimum points."""
    try:
        thresholds = await store.refresh(db)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return LevelListResponse(
        version=store.version,
        levels=[
            LevelInfo(
                level=level,
                name=LEVEL_DISPLAY[level]["name"],
                icon=LEVEL_DISPLAY[level]["icon"],
                color=LEVEL_DISPLAY[level]["color"],
                min_points=thresholds.threshold(level),
                next_level=level.next(),
            )
            for level in LEVEL_ORDER
        ],
    )


@router.get("/thresholds", response_model=ThresholdsResponse)
async def get_thresholds(
    db: AsyncSession = Depends(get_db),
    store: ThresholdStore = Depends(get_threshold_store),
) -> ThresholdsResponse:
    try:
        await store.refresh(db)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return _to_response(store)


@router.put("/thresholds", response_model=ThresholdsResponse)
async def update_thresholds(
    payload: ThresholdUpdate,
    db: AsyncSession = Depends(get_db),
    store: ThresholdStore = Depends(get_threshold_store),
) -> ThresholdsResponse:
    """Save thresholds. Out-of-order values are pushed up (nay_mam >= 1, each next level > previous)."""
    try:
        await store.set(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return _to_response(store)
