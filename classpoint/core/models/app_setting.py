"""Key/value application settings (e.g. level_thresholds). Versioned for compare-and-swap writes."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Uuid

from classpoint.db.session import Base


class AppSetting(Base):
    __tablename__ = "app_settings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    key = Column(String(100), nullable=False, unique=True)
    value = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
