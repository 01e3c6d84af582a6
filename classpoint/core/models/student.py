import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from classpoint.core.enums import Level
from classpoint.db.session import Base


class Student(Base):
    """
    A student and their running balance.

    `level` is a cache of level_for(total_points, thresholds). Both columns are
    written together by the ledger service and nowhere else.
    """

    __tablename__ = "students"
    __table_args__ = (
        CheckConstraint("total_points >= 0", name="ck_student_points_non_negative"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    class_id = Column(Uuid(as_uuid=True), ForeignKey("classes.id", ondelete="RESTRICT"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    order_number = Column(Integer, nullable=False, default=0)
    avatar = Column(String(500), nullable=True)
    total_points = Column(Integer, nullable=False, default=0)
    level = Column(String(20), nullable=False, default=Level.HAT.value)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    school_class = relationship("SchoolClass")
