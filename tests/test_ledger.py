"""Ledger service tests: point changes, redemptions, student lifecycle."""

import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.api.v1.ledger import service
from classpoint.api.v1.levels.schemas import ThresholdUpdate
from classpoint.api.v1.levels.store import ThresholdStore
from classpoint.core.config import settings
from classpoint.core.enums import REDEMPTION_REASON, Level
from classpoint.core.exceptions import InsufficientBalanceError, NotFoundError, PersistenceError, ValidationError
from classpoint.core.models import PointHistory, RewardRedemption, Student

from conftest import make_class, make_reward, make_student


async def _history(db: AsyncSession, student_id) -> list:
    result = await db.execute(
        select(PointHistory).where(PointHistory.student_id == student_id).order_by(PointHistory.created_at)
    )
    return list(result.scalars().all())


async def _count(db: AsyncSession, model, student_id) -> int:
    result = await db.execute(select(func.count(model.id)).where(model.student_id == student_id))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_point_change_crosses_level_and_reports_level_up(db_session: AsyncSession, store: ThresholdStore) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=48)

    result = await service.apply_point_change(db_session, store, student.id, 5, "Phát biểu")

    assert result.student.total_points == 53
    assert result.student.level == Level.NAY_MAM
    assert result.level_up is not None
    assert result.level_up.student_id == student.id
    assert result.level_up.old_level == Level.HAT
    assert result.level_up.new_level == Level.NAY_MAM
    assert result.history.change == 5
    assert result.history.reason == "Phát biểu"
    assert result.history.points_after == 53


@pytest.mark.asyncio
async def test_negative_change_is_clamped_but_history_keeps_requested_delta(
    db_session: AsyncSession, store: ThresholdStore
) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=3)

    result = await service.apply_point_change(db_session, store, student.id, -10)

    assert result.student.total_points == 0
    assert result.level_up is None
    history = await _history(db_session, student.id)
    assert len(history) == 1
    assert history[0].change == -10
    assert history[0].points_after == 0
    assert history[0].reason is None


@pytest.mark.asyncio
@pytest.mark.parametrize("start,delta", [(0, -1), (0, 7), (7, 0), (10, -10), (10, -11), (120, -500), (199, 1)])
async def test_balance_is_never_negative(db_session: AsyncSession, store: ThresholdStore, start: int, delta: int) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=start)

    result = await service.apply_point_change(db_session, store, student.id, delta)

    assert result.student.total_points == max(0, start + delta)
    persisted = (await db_session.execute(select(Student.total_points).where(Student.id == student.id))).scalar_one()
    assert persisted == max(0, start + delta)


@pytest.mark.asyncio
async def test_deduction_drops_level_without_level_up(db_session: AsyncSession, store: ThresholdStore) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=105)

    result = await service.apply_point_change(db_session, store, student.id, -10, "Nói chuyện")

    assert result.student.level == Level.NAY_MAM
    assert result.level_up is None


@pytest.mark.asyncio
async def test_positive_change_within_level_has_no_event(db_session: AsyncSession, store: ThresholdStore) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=10)

    result = await service.apply_point_change(db_session, store, student.id, 1)

    assert result.level_up is None
    assert result.student.level == Level.HAT


@pytest.mark.asyncio
async def test_point_change_uses_saved_thresholds(db_session: AsyncSession, store: ThresholdStore) -> None:
    await store.set(db_session, ThresholdUpdate(nay_mam=5, cay_con=10, cay_to=15))
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=0)

    result = await service.apply_point_change(db_session, store, student.id, 12)

    assert result.student.level == Level.CAY_CON
    assert result.level_up.new_level == Level.CAY_CON


@pytest.mark.asyncio
async def test_zero_change_keeps_total_and_is_logged(db_session: AsyncSession, store: ThresholdStore) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=7)

    result = await service.apply_point_change(db_session, store, student.id, 0, "Nhắc nhở")

    assert result.student.total_points == 7
    assert result.level_up is None
    history = await _history(db_session, student.id)
    assert [(h.change, h.points_after, h.reason) for h in history] == [(0, 7, "Nhắc nhở")]


@pytest.mark.asyncio
async def test_point_change_unknown_student(db_session: AsyncSession, store: ThresholdStore) -> None:
    with pytest.raises(NotFoundError):
        await service.apply_point_change(db_session, store, uuid.uuid4(), 5)


@pytest.mark.asyncio
async def test_history_is_append_only(db_session: AsyncSession, store: ThresholdStore) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=0)

    await service.apply_point_change(db_session, store, student.id, 5, "A")
    first = [(h.id, h.change, h.points_after) for h in await _history(db_session, student.id)]
    await service.apply_point_change(db_session, store, student.id, -2, "B")
    reward = await make_reward(db_session, cls.id, cost=3)
    await service.redeem_reward(db_session, store, student.id, reward.id, 3)

    history = await _history(db_session, student.id)
    assert [(h.id, h.change, h.points_after) for h in history[:1]] == first
    assert [h.change for h in history] == [5, -2, -3]
    assert [h.points_after for h in history] == [5, 3, 0]


@pytest.mark.asyncio
async def test_stale_balance_swap_is_refused(db_session: AsyncSession) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=20)
    # rollback() expires the instance
    sid = student.id

    assert await service._swap_balance(db_session, sid, 19, 30, Level.HAT) is False
    await db_session.rollback()
    assert await service._swap_balance(db_session, sid, 20, 30, Level.HAT) is True
    await db_session.commit()
    persisted = (await db_session.execute(select(Student.total_points).where(Student.id == sid))).scalar_one()
    assert persisted == 30


async def _always_stale(*args, **kwargs) -> bool:
    _always_stale.calls += 1
    return False


@pytest.mark.asyncio
async def test_point_change_gives_up_after_repeated_lost_races(
    db_session: AsyncSession, store: ThresholdStore, monkeypatch
) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=10)
    sid = student.id
    _always_stale.calls = 0
    monkeypatch.setattr(service, "_swap_balance", _always_stale)

    with pytest.raises(PersistenceError):
        await service.apply_point_change(db_session, store, sid, 5)

    assert _always_stale.calls == settings.ledger_max_retries
    persisted = (await db_session.execute(select(Student.total_points).where(Student.id == sid))).scalar_one()
    assert persisted == 10
    assert await _count(db_session, PointHistory, sid) == 0


@pytest.mark.asyncio
async def test_redemption_gives_up_after_repeated_lost_races(
    db_session: AsyncSession, store: ThresholdStore, monkeypatch
) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=50)
    reward = await make_reward(db_session, cls.id, cost=10)
    sid, reward_id = student.id, reward.id
    _always_stale.calls = 0
    monkeypatch.setattr(service, "_swap_balance", _always_stale)

    with pytest.raises(PersistenceError):
        await service.redeem_reward(db_session, store, sid, reward_id, 10)

    assert _always_stale.calls == settings.ledger_max_retries
    persisted = (await db_session.execute(select(Student.total_points).where(Student.id == sid))).scalar_one()
    assert persisted == 50
    assert await _count(db_session, RewardRedemption, sid) == 0


@pytest.mark.asyncio
async def test_failed_history_insert_rolls_back_balance(
    db_session: AsyncSession, store: ThresholdStore, monkeypatch
) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=10)
    sid = student.id

    def broken_entry(**kwargs) -> PointHistory:
        # points_after is NOT NULL
        return PointHistory(**{**kwargs, "points_after": None})

    monkeypatch.setattr(service, "PointHistory", broken_entry)

    with pytest.raises(PersistenceError) as exc:
        await service.apply_point_change(db_session, store, sid, 5)

    assert isinstance(exc.value.__cause__, SQLAlchemyError)
    persisted = (await db_session.execute(select(Student.total_points).where(Student.id == sid))).scalar_one()
    assert persisted == 10
    assert await _count(db_session, PointHistory, sid) == 0


@pytest.mark.asyncio
async def test_failed_redemption_insert_rolls_back_balance(
    db_session: AsyncSession, store: ThresholdStore, monkeypatch
) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=30)
    reward = await make_reward(db_session, cls.id, cost=10)
    sid, reward_id = student.id, reward.id

    def broken_redemption(**kwargs) -> RewardRedemption:
        return RewardRedemption(**{**kwargs, "points_spent": None})

    monkeypatch.setattr(service, "RewardRedemption", broken_redemption)

    with pytest.raises(PersistenceError):
        await service.redeem_reward(db_session, store, sid, reward_id, 10)

    persisted = (await db_session.execute(select(Student.total_points).where(Student.id == sid))).scalar_one()
    assert persisted == 30
    assert await _count(db_session, PointHistory, sid) == 0
    assert await _count(db_session, RewardRedemption, sid) == 0


@pytest.mark.asyncio
async def test_redeem_insufficient_balance_writes_nothing(db_session: AsyncSession, store: ThresholdStore) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=80)
    reward = await make_reward(db_session, cls.id, cost=100)

    with pytest.raises(InsufficientBalanceError) as exc:
        await service.redeem_reward(db_session, store, student.id, reward.id, 100)

    assert exc.value.balance == 80
    assert exc.value.cost == 100
    persisted = (await db_session.execute(select(Student.total_points).where(Student.id == student.id))).scalar_one()
    assert persisted == 80
    assert await _count(db_session, PointHistory, student.id) == 0
    assert await _count(db_session, RewardRedemption, student.id) == 0


@pytest.mark.asyncio
async def test_redeem_exact_balance(db_session: AsyncSession, store: ThresholdStore) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=80)
    reward = await make_reward(db_session, cls.id, name="Bút chì", cost=80)

    result = await service.redeem_reward(db_session, store, student.id, reward.id, 80)

    assert result.student.total_points == 0
    assert result.student.level == Level.HAT
    assert result.redemption.points_spent == 80
    assert result.redemption.reward_name == "Bút chì"
    assert await _count(db_session, RewardRedemption, student.id) == 1
    history = await _history(db_session, student.id)
    assert len(history) == 1
    assert history[0].change == -80
    assert history[0].reason == REDEMPTION_REASON
    assert history[0].points_after == 0


@pytest.mark.asyncio
async def test_redeem_recomputes_level(db_session: AsyncSession, store: ThresholdStore) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=120)
    reward = await make_reward(db_session, cls.id, cost=30)

    result = await service.redeem_reward(db_session, store, student.id, reward.id, 30)

    assert result.student.total_points == 90
    assert result.student.level == Level.NAY_MAM


@pytest.mark.asyncio
async def test_redeem_rejects_bad_input(db_session: AsyncSession, store: ThresholdStore) -> None:
    cls = await make_class(db_session)
    other = await make_class(db_session, "10A")
    student = await make_student(db_session, cls.id, points=100)
    inactive = await make_reward(db_session, cls.id, cost=10, is_active=False)
    foreign = await make_reward(db_session, other.id, cost=10)

    with pytest.raises(ValidationError):
        await service.redeem_reward(db_session, store, student.id, inactive.id, 10)
    with pytest.raises(ValidationError):
        await service.redeem_reward(db_session, store, student.id, foreign.id, 10)
    with pytest.raises(ValidationError):
        await service.redeem_reward(db_session, store, student.id, foreign.id, 0)
    with pytest.raises(NotFoundError):
        await service.redeem_reward(db_session, store, student.id, uuid.uuid4(), 10)
    assert await _count(db_session, PointHistory, student.id) == 0


@pytest.mark.asyncio
async def test_redemption_keeps_snapshot_after_reward_edit_and_delete(
    db_session: AsyncSession, store: ThresholdStore
) -> None:
    from classpoint.api.v1.rewards import service as reward_service
    from classpoint.api.v1.rewards.schemas import RewardUpdate

    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=50)
    reward = await make_reward(db_session, cls.id, name="Kẹo", cost=20)
    await service.redeem_reward(db_session, store, student.id, reward.id, 20)

    await reward_service.update_reward(db_session, reward.id, RewardUpdate(points_required=40))
    await reward_service.delete_reward(db_session, reward.id)

    redemptions = await service.list_redemptions(db_session, student.id)
    assert len(redemptions) == 1
    assert redemptions[0].points_spent == 20
    assert redemptions[0].reward_name == "Kẹo"


@pytest.mark.asyncio
async def test_add_student_starts_at_zero(db_session: AsyncSession) -> None:
    cls = await make_class(db_session)

    student = await service.add_student(db_session, cls.id, "  Bình  ", 4)

    assert student.name == "Bình"
    assert student.order_number == 4
    assert student.total_points == 0
    assert student.level == Level.HAT


@pytest.mark.asyncio
async def test_add_student_validation(db_session: AsyncSession) -> None:
    cls = await make_class(db_session)
    with pytest.raises(ValidationError):
        await service.add_student(db_session, cls.id, "   ", 1)
    with pytest.raises(NotFoundError):
        await service.add_student(db_session, uuid.uuid4(), "Chi", 1)


@pytest.mark.asyncio
async def test_delete_student_cascades(db_session: AsyncSession, store: ThresholdStore) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=30)
    keeper = await make_student(db_session, cls.id, name="Dũng", points=30, order_number=2)
    reward = await make_reward(db_session, cls.id, cost=10)
    for sid in (student.id, keeper.id):
        await service.apply_point_change(db_session, store, sid, 5)
        await service.redeem_reward(db_session, store, sid, reward.id, 10)

    await service.delete_student(db_session, student.id)

    assert await db_session.get(Student, student.id) is None
    assert await _count(db_session, PointHistory, student.id) == 0
    assert await _count(db_session, RewardRedemption, student.id) == 0
    assert await _count(db_session, PointHistory, keeper.id) == 2
    assert await _count(db_session, RewardRedemption, keeper.id) == 1
    with pytest.raises(NotFoundError):
        await service.delete_student(db_session, student.id)


@pytest.mark.asyncio
async def test_student_stats(db_session: AsyncSession, store: ThresholdStore) -> None:
    cls = await make_class(db_session)
    student = await make_student(db_session, cls.id, points=0)
    reward = await make_reward(db_session, cls.id, cost=4)
    await service.apply_point_change(db_session, store, student.id, 10)
    await service.apply_point_change(db_session, store, student.id, -3)
    await service.redeem_reward(db_session, store, student.id, reward.id, 4)

    stats = await service.student_stats(db_session, student.id)

    assert stats.total_added == 10
    assert stats.total_deducted == 7
    assert stats.rewards_count == 1
    assert stats.total_spent == 4


@pytest.mark.asyncio
async def test_list_students_sorting_and_leaderboard(db_session: AsyncSession) -> None:
    from classpoint.core.enums import StudentSort

    cls = await make_class(db_session)
    await make_student(db_session, cls.id, name="Chi", points=10, order_number=1)
    await make_student(db_session, cls.id, name="An", points=30, order_number=3)
    await make_student(db_session, cls.id, name="Bảo", points=20, order_number=2)

    by_points = await service.list_students(db_session, cls.id, StudentSort.POINTS)
    by_order = await service.list_students(db_session, cls.id, StudentSort.ORDER)
    board = await service.leaderboard(db_session, cls.id, limit=2)

    assert [s.total_points for s in by_points] == [30, 20, 10]
    assert [s.order_number for s in by_order] == [1, 2, 3]
    assert [(e.rank, e.student.name) for e in board] == [(1, "An"), (2, "Bảo")]
