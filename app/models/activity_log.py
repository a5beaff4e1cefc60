from sqlalchemy import Column, String, Text, DateTime, ForeignKey, func
from sqlalchemy.types import JSON
import uuid

from app.core.database import Base


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String(36), ForeignKey("businesses.id", ondelete="SET NULL"), nullable=True, index=True)
    type = Column(String, nullable=False, index=True)  # PHONE_BLOCKED, PHONE_UNBLOCKED, TRIAL_AUTO_DELETION
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
