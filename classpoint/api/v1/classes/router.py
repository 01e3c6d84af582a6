from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.core.exceptions import ServiceError
from classpoint.db.session import get_db

from .schemas import ClassCreate, ClassResponse, ClassStudentsDeleted, ClassUpdate
from . import service

router = APIRouter(prefix="/api/v1/classes", tags=["classes"])


@router.post("", response_model=ClassResponse, status_code=status.HTTP_201_CREATED)
async def create_class(
    payload: ClassCreate,
    db: AsyncSession = Depends(get_db),
) -> ClassResponse:
    try:
        return await service.create_class(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=List[ClassResponse])
async def list_classes(db: AsyncSession = Depends(get_db)) -> List[ClassResponse]:
    return await service.list_classes(db)


@router.get("/{class_id}", response_model=ClassResponse)
async def get_class(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ClassResponse:
    obj = await service.get_class(db, class_id)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found")
    return obj


@router.put("/{class_id}", response_model=ClassResponse)
async def update_class(
    class_id: UUID,
    payload: ClassUpdate,
    db: AsyncSession = Depends(get_db),
) -> ClassResponse:
    try:
        obj = await service.update_class(db, class_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found")
    return obj


@router.delete("/{class_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_class(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        deleted = await service.delete_class(db, class_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found")


@router.delete("/{class_id}/students", response_model=ClassStudentsDeleted)
async def delete_all_students(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ClassStudentsDeleted:
    """Delete every student in the class (with their history). Cannot be undone."""
    try:
        deleted = await service.delete_all_students(db, class_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ClassStudentsDeleted(class_id=class_id, deleted=deleted)
