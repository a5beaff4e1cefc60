"""Trial usage model: one row per trial identity.

Tracks call and day consumption plus the suspension lifecycle
(warned -> blocked -> pending_deletion -> deleted, or paid at any point).
Each *_email_sent flag flips to True once and is the only record that the
matching email went out; sweeps rely on it to never resend.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Integer, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from enum import Enum
from app.core.database import Base


class TrialStatus(str, Enum):
    ACTIVE = "active"
    WARNED = "warned"
    BLOCKED = "blocked"
    PENDING_DELETION = "pending_deletion"
    DELETED = "deleted"
    PAID = "paid"


ALLOWED_TRANSITIONS: dict[TrialStatus, frozenset[TrialStatus]] = {
    TrialStatus.ACTIVE: frozenset({TrialStatus.WARNED, TrialStatus.BLOCKED, TrialStatus.PAID}),
    TrialStatus.WARNED: frozenset({TrialStatus.BLOCKED, TrialStatus.PAID}),
    TrialStatus.BLOCKED: frozenset({TrialStatus.PENDING_DELETION, TrialStatus.DELETED, TrialStatus.PAID}),
    TrialStatus.PENDING_DELETION: frozenset({TrialStatus.DELETED, TrialStatus.PAID}),
    TrialStatus.DELETED: frozenset({TrialStatus.PAID}),
    TrialStatus.PAID: frozenset(),
}


BLOCK_REASON_CALL_LIMIT = "call limit reached"
BLOCK_REASON_EXPIRED = "trial expired"


def can_transition(current: TrialStatus, target: TrialStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[TrialStatus(current)]


def sources_for(target: TrialStatus) -> list[TrialStatus]:
    """Statuses allowed to move into `target`."""
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets]


class TrialUsage(Base):
    __tablename__ = "trial_usages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    identifier = Column(String, unique=True, index=True, nullable=False)
    identifier_type = Column(String, nullable=False, default="business_id")
    business_id = Column(String(36), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=True, index=True)

    # Call accounting; calls_remaining == calls_limit - calls_used
    calls_used = Column(Integer, nullable=False, default=0)
    calls_remaining = Column(Integer, nullable=False, default=10)
    calls_limit = Column(Integer, nullable=False, default=10)

    # Day accounting, recomputed from trial_end_date
    days_used = Column(Integer, nullable=False, default=0)
    days_remaining = Column(Integer, nullable=False, default=15)
    days_limit = Column(Integer, nullable=False, default=15)
    trial_end_date = Column(DateTime, nullable=True)

    status = Column(
        SQLEnum(TrialStatus, name="trial_status_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=TrialStatus.ACTIVE,
        index=True,
    )
    is_blocked = Column(Boolean, nullable=False, default=False)
    block_reason = Column(String, nullable=True)

    warning_email_sent = Column(Boolean, nullable=False, default=False)
    warning_email_date = Column(DateTime, nullable=True)
    blocked_email_sent = Column(Boolean, nullable=False, default=False)
    blocked_email_date = Column(DateTime, nullable=True)
    deletion_warning_email_sent = Column(Boolean, nullable=False, default=False)
    deletion_warning_email_date = Column(DateTime, nullable=True)
    deletion_email_sent = Column(Boolean, nullable=False, default=False)
    deletion_email_date = Column(DateTime, nullable=True)

    # Only meaningful while blocked / pending_deletion
    scheduled_deletion_date = Column(DateTime, nullable=True)

    last_call_date = Column(DateTime, nullable=True)
    last_activity_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    business = relationship("Business", back_populates="trial_usages")
