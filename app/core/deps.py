"""FastAPI dependencies: service wiring and the cron secret check."""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.database import get_db
from app.services.automated_emails import AutomatedEmailService
from app.services.email_service import EmailService, email_service
from app.services.telnyx_blocking import TelnyxBlockingService
from app.services.telnyx_client import TelnyxClient
from app.services.trial_limits import TrialLimitsMiddleware
from app.services.trial_usage import TrialUsageService

logger = logging.getLogger(__name__)


def get_clock() -> Clock:
    return system_clock


def get_email_service() -> EmailService:
    return email_service


def get_telnyx_client() -> TelnyxClient:
    return TelnyxClient()


async def get_blocking_service(
    db: AsyncSession = Depends(get_db),
    telnyx: TelnyxClient = Depends(get_telnyx_client),
    clock: Clock = Depends(get_clock),
) -> TelnyxBlockingService:
    return TelnyxBlockingService(db, telnyx=telnyx, clock=clock)


async def get_trial_service(
    db: AsyncSession = Depends(get_db),
    emails: EmailService = Depends(get_email_service),
    blocking: TelnyxBlockingService = Depends(get_blocking_service),
    clock: Clock = Depends(get_clock),
) -> TrialUsageService:
    return TrialUsageService(db, emails=emails, blocking=blocking, clock=clock)


async def get_trial_limits(
    trials: TrialUsageService = Depends(get_trial_service),
) -> TrialLimitsMiddleware:
    return TrialLimitsMiddleware(trials)


async def get_automated_email_service(
    trials: TrialUsageService = Depends(get_trial_service),
) -> AutomatedEmailService:
    return AutomatedEmailService(trials.db, trials=trials, blocking=trials.blocking, clock=trials.clock)


async def verify_cron_secret(
    x_cron_secret: Optional[str] = Header(None, alias="X-Cron-Secret"),
) -> None:
    """Guard for scheduler-only endpoints.

    Raises 503 when no secret is configured and 401 when the header does not match.
    """
    if not settings.CRON_SECRET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron endpoints are not configured",
        )

    if not x_cron_secret or not hmac.compare_digest(
        x_cron_secret.encode(), settings.CRON_SECRET.encode()
    ):
        logger.warning("Rejected cron request with invalid secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
        )
