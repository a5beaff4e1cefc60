"""Scheduler endpoints. Every route requires the X-Cron-Secret header."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.core.deps import verify_cron_secret, get_automated_email_service, get_trial_service
from app.schemas.trial import AutomatedEmailStats, ProcessingSchedule, ProcessingReport, TrialStats
from app.services.automated_emails import AutomatedEmailService
from app.services.trial_usage import TrialUsageService

router = APIRouter(dependencies=[Depends(verify_cron_secret)])
logger = logging.getLogger(__name__)


@router.post("/automated-emails", response_model=AutomatedEmailStats)
async def run_automated_emails(
    sweep: AutomatedEmailService = Depends(get_automated_email_service),
):
    """Run one trial sweep."""
    return await sweep.process_automated_emails()


@router.get("/schedule", response_model=ProcessingSchedule)
async def get_schedule(
    sweep: AutomatedEmailService = Depends(get_automated_email_service),
):
    return await sweep.get_processing_schedule()


@router.get("/trial-stats", response_model=TrialStats)
async def get_trial_stats(
    trials: TrialUsageService = Depends(get_trial_service),
):
    return await trials.get_trial_stats()


@router.post("/report", response_model=ProcessingReport)
async def run_report(
    sweep: AutomatedEmailService = Depends(get_automated_email_service),
):
    """Run a sweep and return it with the trial population summary."""
    try:
        return await sweep.generate_processing_report()
    except Exception as e:
        logger.error("Processing report failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to generate processing report")
