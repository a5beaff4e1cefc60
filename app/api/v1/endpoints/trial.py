"""Trial endpoints: start, status, admission, usage and upgrade."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from app.core.deps import get_trial_service, get_trial_limits, get_blocking_service
from app.schemas.trial import (
    TrialStatusCheck,
    TrialUsageOut,
    PaidPlanResult,
    NumberStatus,
)
from app.services.telnyx_blocking import TelnyxBlockingService
from app.services.trial_limits import (
    TrialLimitsMiddleware,
    limit_exceeded_response,
    create_limit_exceeded_response,
)
from app.services.trial_usage import TrialUsageService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/{business_id}/start", response_model=TrialUsageOut, status_code=201)
async def start_trial(
    business_id: str,
    trials: TrialUsageService = Depends(get_trial_service),
):
    """Start the business's trial. Sends the welcome email the first time only."""
    trial = await trials.start_trial(business_id)
    if trial is None:
        raise HTTPException(status_code=404, detail="Business not found")
    return trial


@router.get("/{business_id}/status", response_model=TrialStatusCheck)
async def get_trial_status(
    business_id: str,
    trials: TrialUsageService = Depends(get_trial_service),
):
    return await trials.check_status(business_id)


@router.get("/{business_id}/admission")
async def check_admission(
    business_id: str,
    limits: TrialLimitsMiddleware = Depends(get_trial_limits),
):
    """402 when the trial no longer allows calls, otherwise the remaining counters."""
    result = await limits.check_trial_limits(business_id)
    if not result.allowed:
        return limit_exceeded_response(result)

    return {
        "allowed": True,
        "remainingCalls": result.remaining_calls,
        "remainingDays": result.remaining_days,
    }


@router.get("/{business_id}/limits")
async def get_limit_notice(
    business_id: str,
    limits: TrialLimitsMiddleware = Depends(get_trial_limits),
):
    """Limits plus the banner shown to the owner when the trial is exhausted."""
    result = await limits.check_trial_limits(business_id)
    return {
        "limits": result,
        "notice": None if result.allowed else create_limit_exceeded_response(result),
    }


@router.post("/{business_id}/usage", response_model=TrialStatusCheck)
async def record_usage(
    business_id: str,
    trials: TrialUsageService = Depends(get_trial_service),
    limits: TrialLimitsMiddleware = Depends(get_trial_limits),
):
    """Charge one call to the trial."""
    recorded = await limits.record_successful_call(business_id)
    if not recorded:
        refusal = await limits.handle_request(business_id)
        if refusal is not None:
            return refusal
        raise HTTPException(status_code=503, detail="Usage could not be recorded")

    return await trials.check_status(business_id)


@router.post("/{business_id}/activate-paid", response_model=PaidPlanResult)
async def activate_paid_plan(
    business_id: str,
    trials: TrialUsageService = Depends(get_trial_service),
):
    return await trials.activate_paid_plan(business_id)


@router.get("/{business_id}/numbers", response_model=List[NumberStatus])
async def get_numbers_status(
    business_id: str,
    blocking: TelnyxBlockingService = Depends(get_blocking_service),
):
    return await blocking.get_numbers_status(business_id)
