"""
Class statistics, derived from students and point history on every call.

The aggregation helpers are pure: they take already-loaded rows (anything with
the right attributes) and keep no state of their own.
"""

import math
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint.api.v1.classes import service as class_service
from classpoint.core.config import settings
from classpoint.core.enums import DEFAULT_NEGATIVE_REASON, DEFAULT_POSITIVE_REASON, LEVEL_ORDER, Level
from classpoint.core.models import PointHistory, Student

from .schemas import ClassStatisticsResponse, DailyAverage, PointTotals, ReasonStats

TOP_REASONS_LIMIT = 5
TREND_DAYS = 14


def level_distribution(students: Iterable) -> Dict[str, int]:
    counts = {level.value: 0 for level in LEVEL_ORDER}
    for s in students:
        counts[Level(s.level).value] += 1
    return counts


def top_reasons(history: Iterable, positive: bool, limit: int = TOP_REASONS_LIMIT) -> List[ReasonStats]:
    """Most frequent reasons among gains (positive=True) or deductions. Ties keep first-seen order."""
    default_reason = DEFAULT_POSITIVE_REASON if positive else DEFAULT_NEGATIVE_REASON
    grouped: Dict[str, ReasonStats] = {}
    for h in history:
        if (positive and h.change <= 0) or (not positive and h.change >= 0):
            continue
        reason = h.reason or default_reason
        stats = grouped.setdefault(reason, ReasonStats(reason=reason, count=0, total_points=0))
        stats.count += 1
        stats.total_points += abs(h.change)
    return sorted(grouped.values(), key=lambda r: r.count, reverse=True)[:limit]


def _local_day(ts: datetime, tz: ZoneInfo) -> date:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(tz).date()


def daily_average_trend(history: Iterable, tz_name: str | None = None, days: int = TREND_DAYS) -> List[DailyAverage]:
    """Average points_after per local calendar day, the last `days` days that have entries, oldest first."""
    tz = ZoneInfo(tz_name or settings.stats_timezone)
    daily: Dict[date, List[int]] = {}
    for h in history:
        bucket = daily.setdefault(_local_day(h.created_at, tz), [0, 0])
        bucket[0] += h.points_after
        bucket[1] += 1
    recent = sorted(daily)[-days:] if days > 0 else []
    return [
        DailyAverage(day=d, average_points=math.floor(daily[d][0] / daily[d][1] + 0.5))
        for d in recent
    ]


def point_totals(history: Iterable) -> PointTotals:
    positive = negative = 0
    for h in history:
        if h.change > 0:
            positive += h.change
        elif h.change < 0:
            negative += -h.change
    return PointTotals(positive=positive, negative=negative)


async def class_statistics(db: AsyncSession, class_id: UUID) -> ClassStatisticsResponse:
    await class_service.require_class(db, class_id)
    students = (await db.execute(select(Student).where(Student.class_id == class_id))).scalars().all()
    history = (
        await db.execute(
            select(PointHistory)
            .join(Student, PointHistory.student_id == Student.id)
            .where(Student.class_id == class_id)
            .order_by(PointHistory.created_at)
        )
    ).scalars().all()

    return ClassStatisticsResponse(
        class_id=class_id,
        student_count=len(students),
        level_distribution=level_distribution(students),
        top_positive_reasons=top_reasons(history, positive=True),
        top_negative_reasons=top_reasons(history, positive=False),
        daily_average_trend=daily_average_trend(history),
        point_totals=point_totals(history),
    )
