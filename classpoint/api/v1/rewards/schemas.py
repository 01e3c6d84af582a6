from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from classpoint.core.enums import DEFAULT_REWARD_ICON


class RewardCreate(BaseModel):
    class_id: UUID
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    points_required: int = Field(..., description="Cost in points, must be > 0")
    icon: str = Field(DEFAULT_REWARD_ICON, max_length=16)


class RewardUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    points_required: Optional[int] = None
    icon: Optional[str] = Field(None, max_length=16)
    order_number: Optional[int] = None
    is_active: Optional[bool] = None


class RewardResponse(BaseModel):
    id: UUID
    class_id: UUID
    name: str
    description: Optional[str] = None
    points_required: int
    icon: str
    order_number: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
