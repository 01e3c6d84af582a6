from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.core.exceptions import ServiceError
from classpoint.db.session import get_db

from .schemas import ClassStatisticsResponse
from . import service

router = APIRouter(prefix="/api/v1/statistics", tags=["statistics"])


@router.get("/classes/{class_id}", response_model=ClassStatisticsResponse)
async def class_statistics(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ClassStatisticsResponse:
    """Level distribution, top reasons, 14-day average trend and point totals for a class."""
    try:
        return await service.class_statistics(db, class_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
