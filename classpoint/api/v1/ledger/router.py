from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.api.v1.levels.store import ThresholdStore, get_threshold_store
from classpoint.api.v1.rewards import service as reward_service
from classpoint.core.enums import StudentSort
from classpoint.core.exceptions import ImportPartialError, ServiceError
from classpoint.db.session import get_db

from .schemas import (
    ImportRequest,
    ImportResult,
    LeaderboardEntry,
    PointChangeRequest,
    PointChangeResult,
    PointHistoryResponse,
    RedeemRequest,
    RedemptionResponse,
    RedemptionResult,
    StudentCreate,
    StudentDetailResponse,
    StudentResponse,
    StudentStatsResponse,
    StudentUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1/students", tags=["students"])


@router.post("", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
async def add_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
) -> StudentResponse:
    try:
        return await service.add_student(db, payload.class_id, payload.name, payload.order_number)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=List[StudentResponse])
async def list_students(
    class_id: UUID = Query(...),
    sort: StudentSort = Query(StudentSort.POINTS, description="points (high first), name (A-Z) or order (STT)"),
    db: AsyncSession = Depends(get_db),
) -> List[StudentResponse]:
    return await service.list_students(db, class_id, sort)


@router.post("/import", response_model=ImportResult, status_code=status.HTTP_201_CREATED)
async def import_students(
    payload: ImportRequest,
    db: AsyncSession = Depends(get_db),
) -> ImportResult:
    """
    Bulk import rows of {name, order_number, class_name?}. Rows without class_name go
    to default_class_id. On a partial failure the detail lists succeeded and failed groups.
    """
    try:
        return await service.import_students(db, payload.rows, payload.default_class_id)
    except ImportPartialError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
async def leaderboard(
    class_id: UUID = Query(...),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> List[LeaderboardEntry]:
    return await service.leaderboard(db, class_id, limit=limit)


@router.get("/{student_id}", response_model=StudentDetailResponse)
async def get_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    store: ThresholdStore = Depends(get_threshold_store),
) -> StudentDetailResponse:
    try:
        return await service.get_student(db, store, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{student_id}", response_model=StudentResponse)
async def update_student(
    student_id: UUID,
    payload: StudentUpdate,
    db: AsyncSession = Depends(get_db),
) -> StudentResponse:
    try:
        return await service.update_student(db, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    """Deletes the student and all of their point history and redemptions."""
    try:
        await service.delete_student(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{student_id}/points", response_model=PointChangeResult)
async def apply_point_change(
    student_id: UUID,
    payload: PointChangeRequest,
    db: AsyncSession = Depends(get_db),
    store: ThresholdStore = Depends(get_threshold_store),
) -> PointChangeResult:
    """Add or deduct points. `level_up` is set when a positive change moved the student up a level."""
    try:
        return await service.apply_point_change(db, store, student_id, payload.change, payload.reason)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{student_id}/redemptions", response_model=RedemptionResult, status_code=status.HTTP_201_CREATED)
async def redeem_reward(
    student_id: UUID,
    payload: RedeemRequest,
    db: AsyncSession = Depends(get_db),
    store: ThresholdStore = Depends(get_threshold_store),
) -> RedemptionResult:
    try:
        points_cost = payload.points_cost
        if points_cost is None:
            points_cost = (await reward_service.require_reward(db, payload.reward_id)).points_required
        return await service.redeem_reward(db, store, student_id, payload.reward_id, points_cost)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{student_id}/history", response_model=List[PointHistoryResponse])
async def list_history(
    student_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> List[PointHistoryResponse]:
    try:
        return await service.list_history(db, student_id, limit=limit)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{student_id}/redemptions", response_model=List[RedemptionResponse])
async def list_redemptions(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[RedemptionResponse]:
    try:
        return await service.list_redemptions(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{student_id}/stats", response_model=StudentStatsResponse)
async def student_stats(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> StudentStatsResponse:
    try:
        return await service.student_stats(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
