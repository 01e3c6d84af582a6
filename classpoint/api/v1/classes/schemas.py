from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ClassCreate(BaseModel):
    name: str = Field(..., max_length=100)


class ClassUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)


class ClassResponse(BaseModel):
    id: UUID
    name: str
    student_count: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ClassStudentsDeleted(BaseModel):
    class_id: UUID
    deleted: int
