"""
Ledger service: every change to a student's balance goes through here.

Balance and level are written with a compare-and-swap UPDATE on the balance
that was read, in the same transaction as the history row (and the redemption
row, for rewards). A lost race re-reads and retries a bounded number of times.
"""

from collections import OrderedDict
from typing import List, Optional
from uuid import UUID

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.api.v1.classes import service as class_service
from classpoint.api.v1.levels.resolver import level_for, progress
from classpoint.api.v1.levels.store import ThresholdStore
from classpoint.api.v1.rewards import service as reward_service
from classpoint.core.app_logger import get_logger
from classpoint.core.config import settings
from classpoint.core.enums import REDEMPTION_REASON, Level, StudentSort
from classpoint.core.exceptions import (
    ImportPartialError,
    InsufficientBalanceError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from classpoint.core.models import PointHistory, RewardRedemption, SchoolClass, Student

from .schemas import (
    ImportGroupResult,
    ImportResult,
    ImportRow,
    LeaderboardEntry,
    LevelUpEvent,
    PointChangeResult,
    PointHistoryResponse,
    RedemptionResponse,
    RedemptionResult,
    StudentDetailResponse,
    StudentResponse,
    StudentStatsResponse,
    StudentUpdate,
)

logger = get_logger("ledger")


def _student_to_response(s: Student) -> StudentResponse:
    return StudentResponse.model_validate(s)


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Student name is required")
    return cleaned


async def _fetch_student(db: AsyncSession, student_id: UUID) -> Student:
    """Read the persisted row, bypassing whatever the session has cached."""
    result = await db.execute(
        select(Student)
        .where(Student.id == student_id)
        .execution_options(populate_existing=True)
    )
    student = result.scalar_one_or_none()
    if student is None:
        raise NotFoundError(f"Student {student_id} not found")
    return student


async def _swap_balance(
    db: AsyncSession,
    student_id: UUID,
    expected_total: int,
    new_total: int,
    new_level: Level,
) -> bool:
    """UPDATE only if the balance is still what we read. False means someone else got there first."""
    result = await db.execute(
        update(Student)
        .where(Student.id == student_id, Student.total_points == expected_total)
        .values(total_points=new_total, level=new_level.value)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def apply_point_change(
    db: AsyncSession,
    store: ThresholdStore,
    student_id: UUID,
    delta: int,
    reason: Optional[str] = None,
) -> PointChangeResult:
    """
    Add `delta` points (negative to deduct). The balance never goes below 0.

    History records the requested delta, not the clamped one, while
    points_after is the balance actually stored: 3 - 10 is logged as
    change=-10, points_after=0.
    """
    reason = (reason or "").strip() or None
    thresholds = await store.refresh(db)

    for attempt in range(1, settings.ledger_max_retries + 1):
        student = await _fetch_student(db, student_id)
        old_total = student.total_points
        old_level = Level(student.level)
        new_total = max(0, old_total + delta)
        new_level = level_for(new_total, thresholds)

        try:
            if not await _swap_balance(db, student_id, old_total, new_total, new_level):
                await db.rollback()
                logger.warning(
                    "Balance of student %s changed concurrently (attempt %s/%s)",
                    student_id, attempt, settings.ledger_max_retries,
                )
                continue
            entry = PointHistory(
                student_id=student_id,
                change=delta,
                reason=reason,
                points_after=new_total,
            )
            db.add(entry)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError(f"Could not apply {delta:+d} points to student {student_id}") from e

        student = await _fetch_student(db, student_id)
        level_up = None
        if delta > 0 and new_level.rank > old_level.rank:
            level_up = LevelUpEvent(student_id=student_id, old_level=old_level, new_level=new_level)
        logger.info(
            "Student %s: %+d (%s) %s -> %s points, level %s -> %s",
            student_id, delta, reason or "-", old_total, new_total, old_level.value, new_level.value,
        )
        return PointChangeResult(
            student=_student_to_response(student),
            history=PointHistoryResponse.model_validate(entry),
            level_up=level_up,
        )

    raise PersistenceError(
        f"Could not apply {delta:+d} points to student {student_id}: "
        f"balance kept changing after {settings.ledger_max_retries} attempts"
    )


async def redeem_reward(
    db: AsyncSession,
    store: ThresholdStore,
    student_id: UUID,
    reward_id: UUID,
    points_cost: int,
) -> RedemptionResult:
    """
    Spend `points_cost` points on a reward. Fails without writing anything if the
    persisted balance is below the cost.
    """
    if points_cost is None or points_cost <= 0:
        raise ValidationError("Redemption cost must be a positive number of points")

    reward = await reward_service.require_reward(db, reward_id)
    # Plain values: a rollback below expires ORM instances.
    reward_name, reward_class_id, reward_active = reward.name, reward.class_id, reward.is_active
    if not reward_active:
        raise ValidationError(f"Reward '{reward_name}' is not available")
    thresholds = await store.refresh(db)

    for attempt in range(1, settings.ledger_max_retries + 1):
        student = await _fetch_student(db, student_id)
        if student.class_id != reward_class_id:
            raise ValidationError(f"Reward {reward_id} does not belong to the class of student {student_id}")
        old_total = student.total_points
        if old_total < points_cost:
            raise InsufficientBalanceError(student_id, old_total, points_cost)
        new_total = old_total - points_cost
        new_level = level_for(new_total, thresholds)

        try:
            if not await _swap_balance(db, student_id, old_total, new_total, new_level):
                await db.rollback()
                logger.warning(
                    "Balance of student %s changed during redemption (attempt %s/%s)",
                    student_id, attempt, settings.ledger_max_retries,
                )
                continue
            redemption = RewardRedemption(
                student_id=student_id,
                reward_id=reward_id,
                reward_name=reward_name,
                points_spent=points_cost,
            )
            entry = PointHistory(
                student_id=student_id,
                change=-points_cost,
                reason=REDEMPTION_REASON,
                points_after=new_total,
            )
            db.add_all([redemption, entry])
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError(f"Could not redeem reward {reward_id} for student {student_id}") from e

        student = await _fetch_student(db, student_id)
        logger.info(
            "Student %s redeemed '%s' for %s points, %s -> %s",
            student_id, reward_name, points_cost, old_total, new_total,
        )
        return RedemptionResult(
            redemption=RedemptionResponse.model_validate(redemption),
            student=_student_to_response(student),
            history=PointHistoryResponse.model_validate(entry),
        )

    raise PersistenceError(
        f"Could not redeem reward {reward_id} for student {student_id}: "
        f"balance kept changing after {settings.ledger_max_retries} attempts"
    )


async def add_student(db: AsyncSession, class_id: UUID, name: str, order_number: int) -> StudentResponse:
    name = _clean_name(name)
    await class_service.require_class(db, class_id)
    obj = Student(
        class_id=class_id,
        name=name,
        order_number=order_number,
        total_points=0,
        level=Level.HAT.value,
        avatar=None,
    )
    try:
        db.add(obj)
        await db.commit()
        await db.refresh(obj)
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Could not add student '{name}' to class {class_id}") from e
    logger.info("Added student %s (%s) to class %s", obj.id, name, class_id)
    return _student_to_response(obj)


async def update_student(db: AsyncSession, student_id: UUID, payload: StudentUpdate) -> StudentResponse:
    student = await _fetch_student(db, student_id)
    if payload.name is not None:
        student.name = _clean_name(payload.name)
    if payload.order_number is not None:
        student.order_number = payload.order_number
    if payload.avatar is not None:
        student.avatar = payload.avatar or None
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Could not update student {student_id}") from e
    return _student_to_response(await _fetch_student(db, student_id))


async def delete_student(db: AsyncSession, student_id: UUID) -> None:
    """Delete a student together with all of their history and redemptions."""
    student = await _fetch_student(db, student_id)
    try:
        await db.execute(delete(RewardRedemption).where(RewardRedemption.student_id == student_id))
        await db.execute(delete(PointHistory).where(PointHistory.student_id == student_id))
        await db.delete(student)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Could not delete student {student_id}") from e
    logger.info("Deleted student %s", student_id)


async def import_students(
    db: AsyncSession,
    rows: List[ImportRow],
    default_class_id: Optional[UUID],
) -> ImportResult:
    """
    Bulk insert students, grouped by their optional class name.

    Named groups go to the class with the same name (case-insensitive), created
    if missing. Rows without a class name go to `default_class_id`. Each group
    is committed on its own; if one fails the others are kept and
    ImportPartialError lists both sides.
    """
    if not rows:
        raise ValidationError("No students to import")
    for idx, row in enumerate(rows, start=1):
        if not (row.name or "").strip():
            raise ValidationError(f"Row {idx}: student name is required")

    named: "OrderedDict[str, tuple[str, List[ImportRow]]]" = OrderedDict()
    unclassed: List[ImportRow] = []
    for row in rows:
        class_name = (row.class_name or "").strip()
        if not class_name:
            unclassed.append(row)
            continue
        key = class_name.lower()
        if key not in named:
            named[key] = (class_name, [])
        named[key][1].append(row)

    default_class_name = None
    if unclassed:
        if default_class_id is None:
            raise ValidationError(
                f"{len(unclassed)} row(s) have no class name and no current class is selected"
            )
        default_class_name = (await class_service.require_class(db, default_class_id)).name

    succeeded: List[ImportGroupResult] = []
    failed: List[dict] = []

    async def _insert_group(label: str, class_id: Optional[UUID], group_rows: List[ImportRow]) -> None:
        try:
            created = False
            if class_id is None:
                cls = await class_service.find_class_by_name(db, label)
                if cls is None:
                    cls = SchoolClass(name=label)
                    db.add(cls)
                    await db.flush()
                    created = True
                class_id, class_name = cls.id, cls.name
            else:
                class_name = default_class_name
            db.add_all(
                [
                    Student(
                        class_id=class_id,
                        name=row.name.strip(),
                        order_number=row.order_number,
                        total_points=0,
                        level=Level.HAT.value,
                        avatar=None,
                    )
                    for row in group_rows
                ]
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning("Import group '%s' failed: %s", label, e)
            failed.append({"group": label, "rows": len(group_rows), "error": str(e)})
            return
        logger.info("Imported %s student(s) into class %s (%s)", len(group_rows), class_id, class_name)
        succeeded.append(
            ImportGroupResult(
                group=label,
                class_id=class_id,
                class_name=class_name,
                class_created=created,
                inserted=len(group_rows),
            )
        )

    for display_name, group_rows in named.values():
        await _insert_group(display_name, None, group_rows)
    if unclassed:
        await _insert_group(default_class_name, default_class_id, unclassed)

    if failed:
        raise ImportPartialError(
            succeeded=[g.model_dump(mode="json") for g in succeeded],
            failed=failed,
        )
    return ImportResult(groups=succeeded, inserted=sum(g.inserted for g in succeeded))


# --- Read side ---

async def get_student(db: AsyncSession, store: ThresholdStore, student_id: UUID) -> StudentDetailResponse:
    thresholds = await store.refresh(db)
    student = await _fetch_student(db, student_id)
    level = Level(student.level)
    return StudentDetailResponse(
        **_student_to_response(student).model_dump(),
        next_level=level.next(),
        progress=progress(student.total_points, level, thresholds),
    )


async def list_students(
    db: AsyncSession,
    class_id: UUID,
    sort: StudentSort = StudentSort.POINTS,
) -> List[StudentResponse]:
    stmt = select(Student).where(Student.class_id == class_id)
    if sort == StudentSort.NAME:
        stmt = stmt.order_by(Student.name, Student.order_number)
    elif sort == StudentSort.ORDER:
        stmt = stmt.order_by(Student.order_number, Student.name)
    else:
        stmt = stmt.order_by(Student.total_points.desc(), Student.order_number)
    result = await db.execute(stmt)
    return [_student_to_response(s) for s in result.scalars().all()]


async def leaderboard(db: AsyncSession, class_id: UUID, limit: int = 10) -> List[LeaderboardEntry]:
    result = await db.execute(
        select(Student)
        .where(Student.class_id == class_id)
        .order_by(Student.total_points.desc(), Student.order_number)
        .limit(limit)
    )
    return [
        LeaderboardEntry(rank=idx, student=_student_to_response(s))
        for idx, s in enumerate(result.scalars().all(), start=1)
    ]


async def list_history(db: AsyncSession, student_id: UUID, limit: int = 50) -> List[PointHistoryResponse]:
    """Newest first."""
    await _fetch_student(db, student_id)
    result = await db.execute(
        select(PointHistory)
        .where(PointHistory.student_id == student_id)
        .order_by(PointHistory.created_at.desc())
        .limit(limit)
    )
    return [PointHistoryResponse.model_validate(h) for h in result.scalars().all()]


async def list_redemptions(db: AsyncSession, student_id: UUID) -> List[RedemptionResponse]:
    await _fetch_student(db, student_id)
    result = await db.execute(
        select(RewardRedemption)
        .where(RewardRedemption.student_id == student_id)
        .order_by(RewardRedemption.created_at.desc())
    )
    return [RedemptionResponse.model_validate(r) for r in result.scalars().all()]


async def student_stats(db: AsyncSession, student_id: UUID) -> StudentStatsResponse:
    await _fetch_student(db, student_id)
    history = await db.execute(
        select(
            func.coalesce(func.sum(case((PointHistory.change > 0, PointHistory.change), else_=0)), 0),
            func.coalesce(func.sum(case((PointHistory.change < 0, -PointHistory.change), else_=0)), 0),
        ).where(PointHistory.student_id == student_id)
    )
    total_added, total_deducted = history.one()
    redemptions = await db.execute(
        select(
            func.count(RewardRedemption.id),
            func.coalesce(func.sum(RewardRedemption.points_spent), 0),
        ).where(RewardRedemption.student_id == student_id)
    )
    rewards_count, total_spent = redemptions.one()
    return StudentStatsResponse(
        student_id=student_id,
        total_added=total_added,
        total_deducted=total_deducted,
        rewards_count=rewards_count,
        total_spent=total_spent,
    )
