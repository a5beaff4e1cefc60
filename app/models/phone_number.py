"""Telnyx phone numbers owned by a business."""

from sqlalchemy import Column, String, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.types import JSON
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from enum import Enum
from app.core.database import Base


class PhoneNumberStatus(str, Enum):
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    RELEASED = "RELEASED"


class PhoneNumber(Base):
    __tablename__ = "phone_numbers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String(36), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    phone_number = Column(String, nullable=False)  # E.164
    telnyx_number_id = Column(String, nullable=True, index=True)
    status = Column(
        SQLEnum(PhoneNumberStatus, name="phone_number_status_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PhoneNumberStatus.ACTIVE,
        index=True,
    )
    # "metadata" is reserved on declarative classes, hence the attribute name.
    # Holds webhook config plus blocked / blockReason / blockedAt / originalConfig.
    number_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    business = relationship("Business", back_populates="phone_numbers")
