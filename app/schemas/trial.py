"""Pydantic schemas for trial status, blocking results and sweep statistics."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from pydantic import BaseModel, Field

from app.models.trial_usage import TrialStatus


class ItemOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class ItemResult(BaseModel):
    """Outcome for one subject / phone number inside a batch."""
    id: str
    outcome: ItemOutcome
    error: str | None = None
    phase: str | None = None


class TrialStatusCheck(BaseModel):
    can_make_call: bool
    calls_remaining: int
    days_remaining: int
    status: TrialStatus
    block_reason: str | None = None


class ThresholdOutcome(BaseModel):
    """What a single threshold evaluation actually did."""
    warning_sent: bool = False
    blocked: bool = False
    numbers_blocked: int = 0
    block_error: str | None = None
    email_error: str | None = None


class PendingDeletionsResult(BaseModel):
    pending_deletion: int = 0
    deleted: int = 0
    errors: list[ItemResult] = Field(default_factory=list)


class TrialStatusCounts(BaseModel):
    active: int = 0
    warned: int = 0
    blocked: int = 0
    pending_deletion: int = 0
    deleted: int = 0
    paid: int = 0


class TrialUsageOut(BaseModel):
    id: str
    identifier: str
    business_id: str | None
    calls_used: int
    calls_remaining: int
    calls_limit: int
    days_remaining: int
    status: TrialStatus
    is_blocked: bool
    block_reason: str | None
    trial_end_date: datetime | None
    scheduled_deletion_date: datetime | None
    created_at: datetime | None

    class Config:
        from_attributes = True


class TrialStats(BaseModel):
    counts: TrialStatusCounts
    recent: list[TrialUsageOut]


class BlockingReason(str, Enum):
    TRIAL_EXPIRED = "trial_expired"
    TRIAL_CALLS_EXHAUSTED = "trial_calls_exhausted"


class BlockingResult(BaseModel):
    success: bool
    blocked_numbers: int = 0
    error: str | None = None
    results: list[ItemResult] = Field(default_factory=list)


class UnblockingResult(BaseModel):
    success: bool
    unblocked_numbers: int = 0
    error: str | None = None
    results: list[ItemResult] = Field(default_factory=list)


class PaidPlanResult(BaseModel):
    trials_upgraded: int = 0
    unblock: UnblockingResult


class PendingBlocksResult(BaseModel):
    processed: int = 0
    blocked: int = 0
    errors: list[ItemResult] = Field(default_factory=list)


class PendingUnblocksResult(BaseModel):
    processed: int = 0
    unblocked: int = 0
    errors: list[ItemResult] = Field(default_factory=list)


class NumberStatus(BaseModel):
    phone_number_id: str
    phone_number: str
    telnyx_number_id: str
    is_blocked: bool
    block_reason: str | None = None
    blocked_at: datetime | None = None
    business_id: str


class TrialLimitsResult(BaseModel):
    allowed: bool
    reason: str | None = None
    remaining_calls: int | None = None
    remaining_days: int | None = None


class AdmissionCheck(BaseModel):
    can_proceed: bool
    error: dict[str, Any] | None = None


class ExternalCallResult(BaseModel):
    success: bool
    data: Any = None
    error: dict[str, Any] | None = None


class AutomatedEmailStats(BaseModel):
    processed: int = 0
    warnings_sent: int = 0
    blockings_sent: int = 0
    deletion_warnings_sent: int = 0
    deletions_sent: int = 0
    numbers_blocked: int = 0
    numbers_unblocked: int = 0
    errors: list[ItemResult] = Field(default_factory=list)


class ProcessingSchedule(BaseModel):
    next_run: datetime
    delay_seconds: int
    priority: Literal["low", "medium", "high"]
    reason: str


class UpcomingAction(BaseModel):
    action: str
    count: int
    deadline: datetime


class ProcessingReportDetails(BaseModel):
    active_trials: int
    warned_trials: int
    blocked_trials: int
    pending_deletion: int
    blocked_numbers: int


class ProcessingReport(BaseModel):
    summary: AutomatedEmailStats
    details: ProcessingReportDetails
    next_actions: list[UpcomingAction]
