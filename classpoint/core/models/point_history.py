"""Point history: append-only audit trail of every balance change."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from classpoint.db.session import Base


class PointHistory(Base):
    """
    One balance change. `change` is the delta that was requested, `points_after`
    the balance actually stored (floored at 0). Rows are never updated; they go
    away only together with their student.
    """

    __tablename__ = "point_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    change = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=True)
    points_after = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)

    student = relationship("Student")
