from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.core.exceptions import ServiceError
from classpoint.db.session import get_db

from .schemas import RewardCreate, RewardResponse, RewardUpdate
from . import service

router = APIRouter(prefix="/api/v1/rewards", tags=["rewards"])


@router.post("", response_model=RewardResponse, status_code=status.HTTP_201_CREATED)
async def add_reward(
    payload: RewardCreate,
    db: AsyncSession = Depends(get_db),
) -> RewardResponse:
    try:
        return await service.add_reward(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=List[RewardResponse])
async def list_rewards(
    class_id: UUID = Query(..., description="Class whose catalog to list"),
    active_only: bool = Query(False, description="Only rewards that can currently be redeemed"),
    db: AsyncSession = Depends(get_db),
) -> List[RewardResponse]:
    return await service.list_rewards(db, class_id, active_only=active_only)


@router.put("/{reward_id}", response_model=RewardResponse)
async def update_reward(
    reward_id: UUID,
    payload: RewardUpdate,
    db: AsyncSession = Depends(get_db),
) -> RewardResponse:
    try:
        return await service.update_reward(db, reward_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{reward_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reward(
    reward_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.delete_reward(db, reward_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
