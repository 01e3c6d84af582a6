import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from classpoint.core.enums import DEFAULT_REWARD_ICON
from classpoint.db.session import Base


class Reward(Base):
    """Class-scoped reward catalog item. Listed by order_number."""

    __tablename__ = "rewards"
    __table_args__ = (
        CheckConstraint("points_required > 0", name="ck_reward_cost_positive"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    class_id = Column(Uuid(as_uuid=True), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    points_required = Column(Integer, nullable=False)
    icon = Column(String(16), nullable=False, default=DEFAULT_REWARD_ICON)
    order_number = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    school_class = relationship("SchoolClass")
