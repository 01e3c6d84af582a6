"""Reward catalog: per-class redeemable items, listed by order_number."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.api.v1.classes import service as class_service
from classpoint.core.app_logger import get_logger
from classpoint.core.exceptions import NotFoundError, PersistenceError, ValidationError
from classpoint.core.models import Reward

from .schemas import RewardCreate, RewardResponse, RewardUpdate

logger = get_logger("rewards")


def _reward_to_response(r: Reward) -> RewardResponse:
    return RewardResponse.model_validate(r)


def _check_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Reward name is required")
    return cleaned


def _check_cost(points_required: int) -> int:
    if points_required is None or points_required <= 0:
        raise ValidationError("Reward cost must be a positive number of points")
    return points_required


async def require_reward(db: AsyncSession, reward_id: UUID) -> Reward:
    obj = await db.get(Reward, reward_id)
    if obj is None:
        raise NotFoundError(f"Reward {reward_id} not found")
    return obj


async def _next_order_number(db: AsyncSession, class_id: UUID) -> int:
    result = await db.execute(select(func.max(Reward.order_number)).where(Reward.class_id == class_id))
    current_max = result.scalar_one_or_none()
    return (current_max or 0) + 1


async def add_reward(db: AsyncSession, payload: RewardCreate) -> RewardResponse:
    name = _check_name(payload.name)
    cost = _check_cost(payload.points_required)
    await class_service.require_class(db, payload.class_id)

    obj = Reward(
        class_id=payload.class_id,
        name=name,
        description=payload.description,
        points_required=cost,
        icon=payload.icon,
        order_number=await _next_order_number(db, payload.class_id),
        is_active=True,
    )
    try:
        db.add(obj)
        await db.commit()
        await db.refresh(obj)
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Could not create reward '{name}'") from e
    logger.info("Added reward %s (%s, %s pts) to class %s", obj.id, name, cost, payload.class_id)
    return _reward_to_response(obj)


async def list_rewards(db: AsyncSession, class_id: UUID, active_only: bool = False) -> List[RewardResponse]:
    stmt = select(Reward).where(Reward.class_id == class_id)
    if active_only:
        stmt = stmt.where(Reward.is_active.is_(True))
    stmt = stmt.order_by(Reward.order_number, Reward.created_at)
    result = await db.execute(stmt)
    return [_reward_to_response(r) for r in result.scalars().all()]


async def update_reward(db: AsyncSession, reward_id: UUID, payload: RewardUpdate) -> RewardResponse:
    """Edits apply to future redemptions only; past redemptions keep their points_spent."""
    obj = await require_reward(db, reward_id)
    if payload.name is not None:
        obj.name = _check_name(payload.name)
    if payload.points_required is not None:
        obj.points_required = _check_cost(payload.points_required)
    if payload.description is not None:
        obj.description = payload.description
    if payload.icon is not None:
        obj.icon = payload.icon
    if payload.order_number is not None:
        obj.order_number = payload.order_number
    if payload.is_active is not None:
        obj.is_active = payload.is_active
    try:
        await db.commit()
        await db.refresh(obj)
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Could not update reward {reward_id}") from e
    return _reward_to_response(obj)


async def delete_reward(db: AsyncSession, reward_id: UUID) -> None:
    obj = await require_reward(db, reward_id)
    try:
        await db.delete(obj)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Could not delete reward {reward_id}") from e
    logger.info("Deleted reward %s (%s)", reward_id, obj.name)
