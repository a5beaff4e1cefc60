"""Business (tenant) model.

Only the fields the trial engine needs: who to email, the Stripe customer
that ends the trial, and the phone numbers that get blocked.
"""

from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from app.core.database import Base


class Business(Base):
    __tablename__ = "businesses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    owner_name = Column(String, nullable=True)
    owner_email = Column(String, nullable=True)
    owner_phone = Column(String, nullable=True)
    stripe_customer_id = Column(String, unique=True, nullable=True)
    subscription_status = Column(String, default="trial")  # trial, active, past_due, canceled
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    phone_numbers = relationship("PhoneNumber", back_populates="business")
    trial_usages = relationship("TrialUsage", back_populates="business")

    @property
    def owner_first_name(self) -> str:
        if not self.owner_name:
            return "Client"
        return self.owner_name.split(" ", 1)[0]

    @property
    def owner_last_name(self) -> str:
        if not self.owner_name or " " not in self.owner_name:
            return ""
        return self.owner_name.split(" ", 1)[1]
