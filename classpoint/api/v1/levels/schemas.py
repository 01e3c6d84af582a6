from typing import List, Optional

from pydantic import BaseModel, Field

from classpoint.core.enums import Level


class LevelThresholds(BaseModel):
    """Minimum points for each level. hat is always 0."""

    hat: int = 0
    nay_mam: int
    cay_con: int
    cay_to: int

    class Config:
        frozen = True

    def threshold(self, level: Level) -> int:
        return getattr(self, Level(level).value)


class ThresholdUpdate(BaseModel):
    """Partial edit; omitted levels keep their current value."""

    hat: Optional[int] = Field(None, description="Must be 0 if given")
    nay_mam: Optional[int] = None
    cay_con: Optional[int] = None
    cay_to: Optional[int] = None


class ThresholdsResponse(BaseModel):
    hat: int
    nay_mam: int
    cay_con: int
    cay_to: int
    version: int


class LevelProgress(BaseModel):
    current: int
    span: int
    percentage: float
    points_needed: int


class LevelInfo(BaseModel):
    level: Level
    name: str
    icon: str
    color: str
    min_points: int
    next_level: Optional[Level] = None


class LevelListResponse(BaseModel):
    version: int
    levels: List[LevelInfo]
