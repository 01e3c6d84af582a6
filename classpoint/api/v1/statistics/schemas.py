from datetime import date
from typing import Dict, List
from uuid import UUID

from pydantic import BaseModel


class ReasonStats(BaseModel):
    reason: str
    count: int
    total_points: int


class DailyAverage(BaseModel):
    day: date
    average_points: int


class PointTotals(BaseModel):
    positive: int
    negative: int


class ClassStatisticsResponse(BaseModel):
    class_id: UUID
    student_count: int
    level_distribution: Dict[str, int]
    top_positive_reasons: List[ReasonStats]
    top_negative_reasons: List[ReasonStats]
    daily_average_trend: List[DailyAverage]
    point_totals: PointTotals
