from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.core.app_logger import get_logger
from classpoint.core.exceptions import NotFoundError, PersistenceError, ValidationError
from classpoint.core.models import PointHistory, Reward, RewardRedemption, SchoolClass, Student

from .schemas import ClassCreate, ClassResponse, ClassUpdate

logger = get_logger("classes")


def _class_to_response(c: SchoolClass, student_count: int = 0) -> ClassResponse:
    return ClassResponse(
        id=c.id,
        name=c.name,
        student_count=student_count or 0,
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Class name is required")
    return cleaned


async def _count_students(db: AsyncSession, class_id: UUID) -> int:
    result = await db.execute(select(func.count(Student.id)).where(Student.class_id == class_id))
    return result.scalar_one()


async def require_class(db: AsyncSession, class_id: UUID) -> SchoolClass:
    """Load a class or raise NotFoundError."""
    obj = await db.get(SchoolClass, class_id)
    if obj is None:
        raise NotFoundError(f"Class {class_id} not found")
    return obj


async def find_class_by_name(db: AsyncSession, name: str) -> Optional[SchoolClass]:
    """
    Case-insensitive match on the trimmed name; oldest class wins on duplicates.

    Folded with str.lower() in Python, as import grouping does. SQLite's lower()
    folds ASCII only.
    """
    wanted = name.strip().lower()
    result = await db.execute(select(SchoolClass).order_by(SchoolClass.created_at))
    for cls in result.scalars().all():
        if cls.name.strip().lower() == wanted:
            return cls
    return None


async def create_class(db: AsyncSession, payload: ClassCreate) -> ClassResponse:
    obj = SchoolClass(name=_clean_name(payload.name))
    try:
        db.add(obj)
        await db.commit()
        await db.refresh(obj)
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Could not create class '{obj.name}'") from e
    logger.info("Created class %s (%s)", obj.id, obj.name)
    return _class_to_response(obj)


async def list_classes(db: AsyncSession) -> List[ClassResponse]:
    """Newest class first, each with its student count."""
    counts = (
        select(Student.class_id, func.count(Student.id).label("student_count"))
        .group_by(Student.class_id)
        .subquery()
    )
    stmt = (
        select(SchoolClass, counts.c.student_count)
        .outerjoin(counts, counts.c.class_id == SchoolClass.id)
        .order_by(SchoolClass.created_at.desc())
    )
    result = await db.execute(stmt)
    return [_class_to_response(c, n) for c, n in result.all()]


async def get_class(db: AsyncSession, class_id: UUID) -> Optional[ClassResponse]:
    obj = await db.get(SchoolClass, class_id)
    if not obj:
        return None
    return _class_to_response(obj, await _count_students(db, class_id))


async def update_class(db: AsyncSession, class_id: UUID, payload: ClassUpdate) -> Optional[ClassResponse]:
    obj = await db.get(SchoolClass, class_id)
    if not obj:
        return None
    if payload.name is not None:
        obj.name = _clean_name(payload.name)
    try:
        await db.commit()
        await db.refresh(obj)
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Could not update class {class_id}") from e
    return _class_to_response(obj, await _count_students(db, class_id))


async def delete_class(db: AsyncSession, class_id: UUID) -> bool:
    """Delete an empty class and its reward catalog. Refused while students remain."""
    obj = await db.get(SchoolClass, class_id)
    if not obj:
        return False
    count = await _count_students(db, class_id)
    if count > 0:
        raise ValidationError(
            f"Cannot delete class '{obj.name}': it still has {count} student(s). Delete the students first."
        )
    try:
        await db.execute(delete(Reward).where(Reward.class_id == class_id))
        await db.delete(obj)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Could not delete class {class_id}") from e
    logger.info("Deleted class %s (%s)", class_id, obj.name)
    return True


async def delete_all_students(db: AsyncSession, class_id: UUID) -> int:
    """Remove every student of a class together with their history and redemptions."""
    await require_class(db, class_id)
    student_ids = select(Student.id).where(Student.class_id == class_id)
    try:
        await db.execute(delete(RewardRedemption).where(RewardRedemption.student_id.in_(student_ids)))
        await db.execute(delete(PointHistory).where(PointHistory.student_id.in_(student_ids)))
        result = await db.execute(delete(Student).where(Student.class_id == class_id))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Could not delete students of class {class_id}") from e
    logger.info("Deleted %s student(s) from class %s", result.rowcount, class_id)
    return result.rowcount
