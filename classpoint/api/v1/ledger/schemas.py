from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from classpoint.api.v1.levels.schemas import LevelProgress
from classpoint.core.enums import Level


class StudentCreate(BaseModel):
    class_id: UUID
    name: str = Field(..., max_length=255)
    order_number: int = Field(..., description="Position in the class list (STT)")


class StudentUpdate(BaseModel):
    """Profile fields only. Points and level change through the ledger operations."""

    name: Optional[str] = Field(None, max_length=255)
    order_number: Optional[int] = None
    avatar: Optional[str] = Field(None, max_length=500)


class StudentResponse(BaseModel):
    id: UUID
    class_id: UUID
    name: str
    order_number: int
    avatar: Optional[str] = None
    total_points: int
    level: Level
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StudentDetailResponse(StudentResponse):
    next_level: Optional[Level] = None
    progress: LevelProgress


class PointChangeRequest(BaseModel):
    change: int = Field(..., description="Signed number of points to add (negative to deduct)")
    reason: Optional[str] = Field(None, max_length=255)


class PointHistoryResponse(BaseModel):
    id: UUID
    student_id: UUID
    change: int
    reason: Optional[str] = None
    points_after: int
    created_at: datetime

    class Config:
        from_attributes = True


class LevelUpEvent(BaseModel):
    student_id: UUID
    old_level: Level
    new_level: Level


class PointChangeResult(BaseModel):
    student: StudentResponse
    history: PointHistoryResponse
    level_up: Optional[LevelUpEvent] = None


class RedeemRequest(BaseModel):
    reward_id: UUID
    points_cost: Optional[int] = Field(None, description="Defaults to the reward's current cost")


class RedemptionResponse(BaseModel):
    id: UUID
    student_id: UUID
    reward_id: Optional[UUID] = None
    reward_name: Optional[str] = None
    points_spent: int
    created_at: datetime

    class Config:
        from_attributes = True


class RedemptionResult(BaseModel):
    redemption: RedemptionResponse
    student: StudentResponse
    history: PointHistoryResponse


class StudentStatsResponse(BaseModel):
    student_id: UUID
    total_added: int
    total_deducted: int
    rewards_count: int
    total_spent: int


class LeaderboardEntry(BaseModel):
    rank: int
    student: StudentResponse


class ImportRow(BaseModel):
    name: str = Field(..., max_length=255)
    order_number: int
    class_name: Optional[str] = Field(None, max_length=100)


class ImportRequest(BaseModel):
    rows: List[ImportRow]
    default_class_id: Optional[UUID] = Field(None, description="Class for rows without class_name")


class ImportGroupResult(BaseModel):
    group: str
    class_id: UUID
    class_name: str
    class_created: bool
    inserted: int


class ImportResult(BaseModel):
    groups: List[ImportGroupResult]
    inserted: int
