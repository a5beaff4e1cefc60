"""Payloads for the transactional trial emails."""

from datetime import datetime
from pydantic import BaseModel


class WelcomeEmailData(BaseModel):
    first_name: str
    last_name: str = ""
    email: str
    company: str
    calls_limit: int
    days_limit: int
    trial_end_date: datetime | None = None


class TrialWarningEmailData(BaseModel):
    first_name: str
    last_name: str = ""
    email: str
    restaurant_name: str
    calls_used: int
    calls_remaining: int
    days_remaining: int


class TrialBlockedEmailData(BaseModel):
    first_name: str
    last_name: str = ""
    email: str
    restaurant_name: str
    total_calls_used: int


class TrialDeletionWarningEmailData(BaseModel):
    first_name: str
    last_name: str = ""
    email: str
    restaurant_name: str
    days_until_deletion: int


class AccountDeletedEmailData(BaseModel):
    first_name: str
    last_name: str = ""
    email: str
    restaurant_name: str
    deletion_date: str  # dd/mm/YYYY, already formatted for the French template
