"""Reward redemption: immutable record of points exchanged for a reward."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from classpoint.db.session import Base


class RewardRedemption(Base):
    """
    points_spent and reward_name are snapshots taken at redemption time, so later
    edits or deletion of the reward do not change what was spent.
    """

    __tablename__ = "reward_redemptions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    reward_id = Column(Uuid(as_uuid=True), ForeignKey("rewards.id", ondelete="SET NULL"), nullable=True)
    reward_name = Column(String(255), nullable=True)
    points_spent = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship("Student")
    reward = relationship("Reward")
